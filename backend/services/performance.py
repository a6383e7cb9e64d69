"""
Performance Analytics Service.
Aggregates over completed backtests and closed live trades.
"""
from typing import Any, Dict, List, Optional, Sequence


def _num(value: Any) -> float:
    return float(value or 0.0)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _best_by(records: Sequence[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    best: Optional[Dict[str, Any]] = None
    for record in records:
        if best is None or _num(record.get(key)) > _num(best.get(key)):
            best = record
    return best


def completed_backtests(backtests: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [b for b in backtests if b.get("status") == "completed"]


def strategy_rollup(backtests: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per-strategy average return, total simulated trades and best Sharpe."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for backtest in completed_backtests(backtests):
        grouped.setdefault(str(backtest.get("strategy_name") or "unknown"), []).append(backtest)
    rollup = []
    for name, runs in grouped.items():
        rollup.append({
            "strategy": name,
            "runs": len(runs),
            "avg_return": _mean([_num(r.get("total_return")) for r in runs]),
            "trades": int(sum(_num(r.get("total_trades")) for r in runs)),
            "sharpe": max(_num(r.get("sharpe_ratio")) for r in runs),
        })
    rollup.sort(key=lambda item: item["avg_return"], reverse=True)
    return rollup


def backtest_summary(backtests: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Averages over completed backtests.

    Returns:
        count, avg_win_rate, avg_sharpe, avg_return, best_backtest, by_strategy
    """
    completed = completed_backtests(backtests)
    return {
        "count": len(completed),
        "avg_win_rate": _mean([_num(b.get("win_rate")) for b in completed]),
        "avg_sharpe": _mean([_num(b.get("sharpe_ratio")) for b in completed]),
        "avg_return": _mean([_num(b.get("total_return")) for b in completed]),
        "best_backtest": _best_by(completed, "total_return"),
        "by_strategy": strategy_rollup(completed),
    }


def live_trade_summary(trades: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """P&L, win rate and average win/loss over closed trades."""
    closed = [t for t in trades if t.get("status") == "closed"]
    open_count = sum(1 for t in trades if t.get("status") == "open")
    winners = [_num(t.get("pnl")) for t in closed if _num(t.get("pnl")) > 0]
    losers = [_num(t.get("pnl")) for t in closed if _num(t.get("pnl")) < 0]
    return {
        "open_trades": open_count,
        "closed_trades": len(closed),
        "total_pnl": sum(_num(t.get("pnl")) for t in closed),
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": (len(winners) / len(closed) * 100) if closed else 0.0,
        "avg_win": _mean(winners),
        "avg_loss": _mean(losers),
    }


def overall_score(backtest: Dict[str, Any]) -> float:
    """Weighted ranking score used when comparing a batch."""
    return round(
        _num(backtest.get("total_return")) * 0.4
        + _num(backtest.get("sharpe_ratio")) * 20
        + _num(backtest.get("win_rate")) * 0.3
        + _num(backtest.get("profit_factor")) * 10,
        1,
    )


def compare_backtests(results: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Best return, best Sharpe and best win rate across a batch, plus a ranked table."""
    ranked = sorted(results, key=lambda r: _num(r.get("total_return")), reverse=True)
    return {
        "best_return": _best_by(results, "total_return"),
        "best_sharpe": _best_by(results, "sharpe_ratio"),
        "best_win_rate": _best_by(results, "win_rate"),
        "ranking": [
            {
                "backtest_run_id": r.get("backtest_run_id"),
                "strategy_name": r.get("strategy_name"),
                "total_return": r.get("total_return"),
                "score": overall_score(r),
            }
            for r in ranked
        ],
    }


def performance_overview(backtests: Sequence[Dict[str, Any]], trades: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "backtests": backtest_summary(backtests),
        "live": live_trade_summary(trades),
    }
