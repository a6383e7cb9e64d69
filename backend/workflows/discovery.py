"""
Strategy Discovery Workflow.
LLM-proposed strategies, optionally saved and backtested in one chain.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import logging

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from workflows.backtest import BacktestWorkflow
from workflows.errors import IncompleteResultError, PersistenceError, classify_failure
from workflows.prompts import DISCOVERY_SCHEMA, discovery_prompt

logger = logging.getLogger(__name__)

DEFAULT_SYMBOLS = ["SPY", "QQQ", "IWM"]
DEFAULT_PERIOD = ("2023-01-01", "2024-01-01")
DEFAULT_CAPITAL = 10000.0
INSIGHT_RETURN_THRESHOLD = 10.0
MAX_INSIGHTS = 5

_PERSISTED_FIELDS = (
    "name",
    "description",
    "asset_types",
    "strategy_type",
    "timeframe",
    "indicators",
    "rules",
)


@dataclass
class DiscoveryOutcome:
    """One discovered strategy and how far its save/backtest chain got."""
    draft: Dict[str, Any]
    strategy: Optional[Dict[str, Any]] = None
    backtest: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    failure_kind: Optional[str] = None

    @property
    def saved(self) -> bool:
        return self.strategy is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draft": self.draft,
            "strategy": self.strategy,
            "backtest": self.backtest,
            "saved": self.saved,
            "error": self.error,
            "failure_kind": self.failure_kind,
        }


def summarize_historical_backtests(backtests: Sequence[Dict[str, Any]]) -> str:
    """One line per strong completed backtest, at most five."""
    strong = [
        b for b in backtests
        if b.get("status") == "completed" and (b.get("total_return") or 0) > INSIGHT_RETURN_THRESHOLD
    ][:MAX_INSIGHTS]
    return "\n".join(
        f"- {b.get('strategy_name')}: {float(b.get('total_return') or 0):.1f}% return, "
        f"{float(b.get('win_rate') or 0):.1f}% win rate, Sharpe {float(b.get('sharpe_ratio') or 0):.2f}"
        for b in strong
    )


def to_draft(candidate: Dict[str, Any], focus_area: str) -> Dict[str, Any]:
    return {
        "name": candidate.get("name"),
        "description": candidate.get("description"),
        "asset_types": [focus_area],
        "strategy_type": candidate.get("strategy_type"),
        "timeframe": candidate.get("timeframe"),
        "indicators": candidate.get("indicators") or [],
        "rules": {
            "entry_conditions": candidate.get("entry_conditions"),
            "exit_conditions": candidate.get("exit_conditions"),
            "risk_per_trade": candidate.get("risk_per_trade"),
            "max_position_size": candidate.get("max_position_size"),
        },
        "is_active": False,
        "discovered": True,
        "discovery_date": datetime.now(timezone.utc).isoformat(),
        "expected_win_rate": candidate.get("expected_win_rate"),
        "expected_sharpe": candidate.get("expected_sharpe"),
        "rationale": candidate.get("rationale"),
    }


class StrategyDiscoveryWorkflow:
    """Discover, save and auto-backtest strategies."""

    def __init__(self, gateway: Gateway, backtests: Optional[BacktestWorkflow] = None):
        self.gateway = gateway
        self.backtests = backtests or BacktestWorkflow(gateway)

    def _historical_insights(self) -> str:
        try:
            history = self.gateway.entities.Backtest.list(sort="-created_date")
        except RemoteCallError as exc:
            logger.warning("Skipping historical insights: %s", exc)
            return ""
        return summarize_historical_backtests(history)

    def discover(
        self,
        analysis_type: str,
        focus_area: str,
        risk_tolerance: str,
        count: int = 3,
        historical: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Ask the LLM for new strategies and return them as unsaved drafts.

        Raises:
            RemoteCallError: LLM call failed
            IncompleteResultError: no strategies returned
        """
        insights = (
            summarize_historical_backtests(historical) if historical is not None else self._historical_insights()
        )
        result = self.gateway.integrations.core.invoke_llm(
            prompt=discovery_prompt(analysis_type, focus_area, risk_tolerance, count, insights),
            add_context_from_internet=True,
            response_json_schema=DISCOVERY_SCHEMA,
        )
        candidates = (result or {}).get("strategies") or []
        if not candidates:
            raise IncompleteResultError("AI did not return any strategies. Please try again.")
        logger.info("Discovered %d %s strategies for %s", len(candidates), analysis_type, focus_area)
        return [to_draft(c, focus_area) for c in candidates]

    def save_strategy(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a draft as an inactive strategy."""
        fields = {key: draft.get(key) for key in _PERSISTED_FIELDS}
        fields["is_active"] = False
        try:
            return self.gateway.entities.Strategy.create(fields)
        except RemoteCallError as exc:
            raise PersistenceError(f"Failed to save strategy {draft.get('name')}: {exc}", cause=exc) from exc

    def discover_and_backtest(
        self,
        analysis_type: str,
        focus_area: str,
        risk_tolerance: str,
        auto_backtest: bool = True,
        count: int = 3,
        symbols: Optional[List[str]] = None,
        period: Optional[tuple] = None,
        initial_capital: float = DEFAULT_CAPITAL,
    ) -> List[DiscoveryOutcome]:
        """
        Discover strategies; with ``auto_backtest`` save and backtest each.

        A failing chain is recorded on its outcome and never aborts the others.
        """
        drafts = self.discover(analysis_type, focus_area, risk_tolerance, count=count)
        outcomes = [DiscoveryOutcome(draft=d) for d in drafts]
        if not auto_backtest:
            return outcomes

        for outcome in outcomes:
            try:
                outcome.strategy = self.save_strategy(outcome.draft)
                outcome.backtest = self.backtests.generate_backtest(
                    outcome.strategy,
                    symbols or DEFAULT_SYMBOLS,
                    period or DEFAULT_PERIOD,
                    initial_capital,
                )
            except Exception as exc:
                logger.warning("Discovery chain for %s failed: %s", outcome.draft.get("name"), exc)
                outcome.error = str(exc)
                outcome.failure_kind = classify_failure(exc).value
        return outcomes
