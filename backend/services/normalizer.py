"""
Backtest result normalizer.

Pure functions that bound an LLM-produced performance record into a
realistic envelope before it is persisted. The persisted final capital is
always derived from the clamped return.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

RETURN_LIMIT = 100.0
RETURN_CAP_POSITIVE = 50.0
RETURN_CAP_NEGATIVE = -30.0
DRAWDOWN_FLOOR = -50.0
DRAWDOWN_CAP = -35.0
SHARPE_LIMIT = 3.5
SHARPE_CAP = 2.5


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("boolean is not a numeric performance value")
    return float(value)


def clamp_total_return(value: Any) -> Optional[float]:
    """Cap |return| above 100% to +50% or -30% by sign."""
    total_return = _as_float(value)
    if total_return is None:
        return None
    if abs(total_return) > RETURN_LIMIT:
        return RETURN_CAP_POSITIVE if total_return > 0 else RETURN_CAP_NEGATIVE
    return total_return


def clamp_max_drawdown(value: Any) -> Optional[float]:
    """Floor drawdowns below -50% to -35% and force the sign negative."""
    drawdown = _as_float(value)
    if drawdown is None:
        return None
    if drawdown < DRAWDOWN_FLOOR:
        return DRAWDOWN_CAP
    if drawdown > 0:
        return -abs(drawdown)
    return drawdown


def clamp_sharpe_ratio(value: Any) -> Optional[float]:
    """Cap Sharpe ratios above 3.5 to 2.5."""
    sharpe = _as_float(value)
    if sharpe is None:
        return None
    if sharpe > SHARPE_LIMIT:
        return SHARPE_CAP
    return sharpe


def derive_final_capital(initial_capital: float, total_return: Optional[float]) -> float:
    """Final capital implied by a percentage return."""
    return float(initial_capital) * (1 + (total_return or 0.0) / 100)


@dataclass(frozen=True)
class NormalizedPerformance:
    """Clamped aggregate statistics of one backtest."""
    initial_capital: float
    final_capital: float
    total_return: Optional[float]
    max_drawdown: Optional[float]
    sharpe_ratio: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_backtest_result(raw: Mapping[str, Any], initial_capital: float) -> NormalizedPerformance:
    """
    Clamp return, drawdown and Sharpe and recompute final capital.

    Args:
        raw: LLM-produced performance record
        initial_capital: Capital the backtest started with

    Returns:
        NormalizedPerformance; the raw ``final_capital`` is ignored
    """
    total_return = clamp_total_return(raw.get("total_return"))
    return NormalizedPerformance(
        initial_capital=float(initial_capital),
        final_capital=derive_final_capital(initial_capital, total_return),
        total_return=total_return,
        max_drawdown=clamp_max_drawdown(raw.get("max_drawdown")),
        sharpe_ratio=clamp_sharpe_ratio(raw.get("sharpe_ratio")),
    )
