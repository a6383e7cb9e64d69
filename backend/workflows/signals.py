"""
Signal Workflow.
Generates AI trading signals for strategies and turns them into trades.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import logging

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from workflows.backtest import FailedStrategy, is_active
from workflows.errors import IncompleteResultError, PersistenceError, ValidationError
from workflows.prompts import SIGNAL_SCHEMA, signal_prompt

logger = logging.getLogger(__name__)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SignalWorkflow:
    """Signal generation and execution against the gateway."""

    def __init__(self, gateway: Gateway):
        self.gateway = gateway

    def generate_signal(self, strategy: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ask the LLM for one signal and persist it as an active entry signal.

        Raises:
            RemoteCallError: LLM call failed
            IncompleteResultError: response lacks symbol or action
            PersistenceError: Signal record could not be created
        """
        name = strategy.get("name")
        logger.info("Generating signal for %s", name)
        result = self.gateway.integrations.core.invoke_llm(
            prompt=signal_prompt(strategy),
            add_context_from_internet=True,
            response_json_schema=SIGNAL_SCHEMA,
        )
        if not result.get("symbol") or not result.get("action"):
            raise IncompleteResultError("Incomplete signal received from AI. Missing symbol or action.")

        record = {
            "strategy_id": strategy.get("id"),
            "strategy_name": name,
            "symbol": result.get("symbol"),
            "asset_type": result.get("asset_type"),
            "action": result.get("action"),
            "signal_type": "entry",
            "confidence": result.get("confidence"),
            "entry_price": result.get("entry_price"),
            "stop_loss": result.get("stop_loss"),
            "take_profit": result.get("take_profit"),
            "quantity": result.get("quantity"),
            "rationale": result.get("rationale"),
            "status": "active",
            "signal_timestamp": _utc_iso(),
            "market_data": {"current_price": result.get("current_price")},
        }
        try:
            saved = self.gateway.entities.Signal.create(record)
        except RemoteCallError as exc:
            raise PersistenceError(f"Failed to save signal for {name}: {exc}", cause=exc) from exc
        logger.info("Signal %s %s created for %s", record["action"], record["symbol"], name)
        return saved

    def generate_signals(
        self,
        strategies: Sequence[Dict[str, Any]],
        limit: int = 2,
    ) -> Dict[str, List[Any]]:
        """
        Generate one signal for each of the first ``limit`` active strategies.

        Returns:
            ``{"signals": [...], "failed": [FailedStrategy, ...]}``
        """
        active = [s for s in strategies if is_active(s)]
        if not active:
            raise ValidationError("No active strategies found")

        signals: List[Dict[str, Any]] = []
        failed: List[FailedStrategy] = []
        for strategy in active[: max(0, int(limit))]:
            name = strategy.get("name") or str(strategy.get("id"))
            try:
                signals.append(self.generate_signal(strategy))
            except Exception as exc:
                logger.warning("Signal generation failed for %s: %s", name, exc)
                failed.append(FailedStrategy(name=name, error=str(exc)))
        return {"signals": signals, "failed": failed}

    def execute_signal(
        self,
        signal: Dict[str, Any],
        entry_price: Optional[float] = None,
        quantity: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record an open trade for a signal and mark the signal executed.

        Raises:
            ValidationError: signal is not active or price/quantity invalid
            PersistenceError: trade or signal update failed
        """
        if signal.get("status") != "active":
            raise ValidationError(f"Signal {signal.get('id')} is not active")
        price = entry_price if entry_price is not None else signal.get("entry_price")
        qty = quantity if quantity is not None else signal.get("quantity")
        if price is None or float(price) <= 0:
            raise ValidationError("Entry price must be positive")
        if qty is None or float(qty) <= 0:
            raise ValidationError("Quantity must be positive")

        trade = {
            "signal_id": signal.get("id"),
            "strategy_id": signal.get("strategy_id"),
            "symbol": signal.get("symbol"),
            "asset_type": signal.get("asset_type"),
            "action": signal.get("action"),
            "entry_price": float(price),
            "quantity": float(qty),
            "entry_date": _utc_iso(),
            "stop_loss_price": signal.get("stop_loss"),
            "take_profit_price": signal.get("take_profit"),
            "status": "open",
            "notes": notes or "",
        }
        try:
            saved = self.gateway.entities.Trade.create(trade)
            self.gateway.entities.Signal.update(signal["id"], {"status": "executed"})
        except RemoteCallError as exc:
            raise PersistenceError(f"Failed to execute signal {signal.get('id')}: {exc}", cause=exc) from exc
        logger.info("Signal %s executed as trade %s", signal.get("id"), saved.get("id"))
        return saved
