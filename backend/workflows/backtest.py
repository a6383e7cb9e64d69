"""
Backtest Workflow.
Runs LLM-simulated backtests for one strategy or a batch of strategies.

Steps per strategy:
1. Validate rules, symbols, period and capital
2. Ask the LLM for a structured performance record
3. Reject incomplete responses
4. Clamp the record into a realistic envelope
5. Persist a completed Backtest entity
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging
import secrets

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.normalizer import normalize_backtest_result
from workflows.errors import (
    BatchBacktestError,
    IncompleteResultError,
    PersistenceError,
    ValidationError,
)
from workflows.prompts import BACKTEST_SCHEMA, backtest_prompt

logger = logging.getLogger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

ProgressCallback = Callable[[int, int, str], None]
DateLike = Union[str, date]


def generate_run_id(now: Optional[datetime] = None) -> str:
    """``BT-{YYYYMMDD}-{6 base36 chars}``."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"BT-{now.strftime('%Y%m%d')}-{suffix}"


def parse_symbols(symbols: Union[str, Iterable[str]]) -> List[str]:
    """Accept ``"SPY, QQQ"`` or a list; trim, upper-case and drop blanks."""
    if isinstance(symbols, str):
        symbols = symbols.split(",")
    return [s.strip().upper() for s in symbols if s and s.strip()]


def _parse_date(value: DateLike, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid {label}: {value!r}") from exc


def is_active(strategy: Dict[str, Any]) -> bool:
    # Records created before the flag existed count as active.
    return strategy.get("is_active") is not False


@dataclass
class FailedStrategy:
    """One strategy that failed inside a batch run."""
    name: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "error": self.error}


@dataclass
class BatchBacktestResult:
    """Outcome of a batch run with at least one success."""
    backtests: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[FailedStrategy] = field(default_factory=list)

    @property
    def warning(self) -> Optional[str]:
        if not self.failed:
            return None
        noun = "strategy" if len(self.failed) == 1 else "strategies"
        return f"{len(self.failed)} {noun} failed to backtest. See details below."


def missing_result_fields(result: Dict[str, Any]) -> List[str]:
    """Required keys absent, null or of the wrong shape in an LLM backtest response."""
    missing = [key for key in ("total_trades", "equity_curve", "trade_log") if result.get(key) is None]
    for key in ("equity_curve", "trade_log"):
        if key not in missing and not isinstance(result.get(key), list):
            missing.append(key)
    if "equity_curve" not in missing and len(result["equity_curve"]) == 0:
        missing.append("equity_curve")
    return missing


class BacktestWorkflow:
    """
    Generates and persists backtests through the gateway.

    Batch runs are sequential so per-strategy progress can be reported
    and one failure never hides another's result.
    """

    def __init__(self, gateway: Gateway):
        self.gateway = gateway

    @staticmethod
    def _check_rules(strategy: Dict[str, Any]) -> None:
        rules = strategy.get("rules") or {}
        if not str(rules.get("entry_conditions") or "").strip() or not str(rules.get("exit_conditions") or "").strip():
            raise ValidationError(
                f"Strategy '{strategy.get('name')}' needs entry and exit conditions before it can be backtested"
            )

    @staticmethod
    def _check_run_inputs(
        symbols: Union[str, Iterable[str]],
        period: Tuple[DateLike, DateLike],
        initial_capital: Any,
    ) -> Tuple[List[str], date, date, float]:
        """Parse the inputs shared by every strategy in a run."""
        symbol_list = parse_symbols(symbols)
        if not symbol_list:
            raise ValidationError("At least one symbol is required")
        start, end = _parse_date(period[0], "start date"), _parse_date(period[1], "end date")
        if start >= end:
            raise ValidationError("Start date must be before end date")
        try:
            capital = float(initial_capital)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Initial capital must be a number") from exc
        if capital <= 0:
            raise ValidationError("Initial capital must be positive")
        return symbol_list, start, end, capital

    def generate_backtest(
        self,
        strategy: Dict[str, Any],
        symbols: Union[str, Iterable[str]],
        period: Tuple[DateLike, DateLike],
        initial_capital: float,
    ) -> Dict[str, Any]:
        """
        Run one backtest and persist it.

        Args:
            strategy: Strategy record (needs ``rules.entry_conditions``/``exit_conditions``)
            symbols: Symbols to test, list or comma-separated string
            period: ``(start_date, end_date)``
            initial_capital: Starting capital, must be positive

        Returns:
            The persisted Backtest record

        Raises:
            ValidationError: bad input, no remote call made
            RemoteCallError: LLM call failed
            IncompleteResultError: LLM response missing required data
            PersistenceError: Backtest record could not be created
        """
        self._check_rules(strategy)
        symbol_list, start, end, capital = self._check_run_inputs(symbols, period, initial_capital)

        run_id = generate_run_id()
        name = strategy.get("name") or strategy.get("id") or "strategy"
        logger.info("Backtest %s started for %s on %s", run_id, name, ",".join(symbol_list))

        result = self.gateway.integrations.core.invoke_llm(
            prompt=backtest_prompt(strategy, symbol_list, start.isoformat(), end.isoformat(), capital),
            add_context_from_internet=False,
            response_json_schema=BACKTEST_SCHEMA,
        )

        missing = missing_result_fields(result)
        if missing:
            logger.warning("Backtest %s: incomplete response, missing %s", run_id, ", ".join(missing))
            raise IncompleteResultError(
                "Incomplete backtest results received from AI. Missing required data."
            )

        try:
            performance = normalize_backtest_result(result, capital)
        except (TypeError, ValueError) as exc:
            logger.warning("Backtest %s: malformed numeric field in response: %s", run_id, exc)
            raise IncompleteResultError(
                "Malformed backtest results received from AI. Performance values must be numeric."
            ) from exc
        record = {
            "backtest_run_id": run_id,
            "strategy_id": strategy.get("id"),
            "strategy_name": strategy.get("name"),
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "symbols_tested": symbol_list,
            "initial_capital": performance.initial_capital,
            "final_capital": performance.final_capital,
            "total_return": performance.total_return,
            "total_trades": result.get("total_trades"),
            "winning_trades": result.get("winning_trades"),
            "losing_trades": result.get("losing_trades"),
            "win_rate": result.get("win_rate"),
            "avg_win": result.get("avg_win") or 0,
            "avg_loss": result.get("avg_loss") or 0,
            "max_drawdown": performance.max_drawdown,
            "sharpe_ratio": performance.sharpe_ratio,
            "profit_factor": result.get("profit_factor"),
            "equity_curve": result.get("equity_curve"),
            "trade_log": result.get("trade_log"),
            "status": "completed",
        }

        try:
            saved = self.gateway.entities.Backtest.create(record)
        except RemoteCallError as exc:
            logger.error("Backtest %s could not be saved: %s", run_id, exc)
            raise PersistenceError(f"Failed to save backtest {run_id}: {exc}", cause=exc) from exc

        logger.info(
            "Backtest %s completed: return=%s%% sharpe=%s",
            run_id,
            performance.total_return,
            performance.sharpe_ratio,
        )
        return saved

    def run_batch(
        self,
        strategies: Sequence[Dict[str, Any]],
        symbols: Union[str, Iterable[str]],
        period: Tuple[DateLike, DateLike],
        initial_capital: float,
        progress: Optional[ProgressCallback] = None,
    ) -> BatchBacktestResult:
        """
        Backtest every active strategy in list order.

        Raises:
            ValidationError: no active strategies, or bad symbols, period or capital
            BatchBacktestError: every strategy failed
        """
        active = [s for s in strategies if is_active(s)]
        if not active:
            raise ValidationError("No active strategies found")

        symbol_list, start, end, capital = self._check_run_inputs(symbols, period, initial_capital)
        outcome = BatchBacktestResult()
        total = len(active)
        for index, strategy in enumerate(active, start=1):
            name = strategy.get("name") or str(strategy.get("id"))
            if progress is not None:
                try:
                    progress(index, total, name)
                except Exception:
                    logger.exception("Backtest progress callback failed")
            try:
                outcome.backtests.append(
                    self.generate_backtest(strategy, symbol_list, (start, end), capital)
                )
            except Exception as exc:
                logger.warning("Batch backtest: %s failed: %s", name, exc)
                outcome.failed.append(FailedStrategy(name=name, error=str(exc)))

        if not outcome.backtests:
            raise BatchBacktestError("All strategies failed to backtest", outcome.failed)
        if outcome.failed:
            logger.warning(outcome.warning)
        logger.info("Batch backtest finished: %d succeeded, %d failed", len(outcome.backtests), len(outcome.failed))
        return outcome
