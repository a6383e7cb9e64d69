"""
Tests for the trade journal and performance aggregates.
"""
import pytest

from services.performance import (
    backtest_summary,
    compare_backtests,
    live_trade_summary,
    overall_score,
    strategy_rollup,
)
from workflows.errors import ValidationError
from workflows.journal import close_trade, journal_summary, realized_pnl, record_trade


@pytest.mark.parametrize("action,expected", [
    ("buy", 95.0),
    ("buy_to_open", 95.0),
    ("sell", -105.0),
    ("sell_short", -105.0),
])
def test_realized_pnl_direction(action, expected):
    assert realized_pnl(action, 100.0, 110.0, 10, commission=5.0) == pytest.approx(expected)


def test_close_trade_persists_pnl(gateway):
    trade = record_trade(gateway, {"symbol": "MSFT", "action": "buy", "entry_price": 400.0, "quantity": 5})
    assert trade["status"] == "open"

    closed = close_trade(gateway, trade, exit_price=420.0, commission=2.0, notes="target hit")

    assert closed["status"] == "closed"
    assert closed["pnl"] == pytest.approx(98.0)
    assert closed["pnl_percentage"] == pytest.approx(5.0)
    assert closed["notes"] == "target hit"
    assert gateway.entities.Trade.get(trade["id"])["exit_price"] == 420.0


def test_closing_twice_is_rejected(gateway):
    trade = record_trade(gateway, {"symbol": "MSFT", "action": "buy", "entry_price": 400.0, "quantity": 5})
    closed = close_trade(gateway, trade, exit_price=390.0)
    with pytest.raises(ValidationError):
        close_trade(gateway, closed, exit_price=391.0)


def test_record_trade_requires_fields(gateway):
    with pytest.raises(ValidationError, match="entry_price"):
        record_trade(gateway, {"symbol": "MSFT", "action": "buy", "quantity": 1})


TRADES = [
    {"status": "closed", "pnl": 120.0},
    {"status": "closed", "pnl": -40.0},
    {"status": "closed", "pnl": 80.0},
    {"status": "open", "pnl": None},
]


def test_live_trade_summary():
    stats = live_trade_summary(TRADES)
    assert stats["open_trades"] == 1
    assert stats["closed_trades"] == 3
    assert stats["total_pnl"] == pytest.approx(160.0)
    assert stats["winning_trades"] == 2
    assert stats["losing_trades"] == 1
    assert stats["win_rate"] == pytest.approx(200 / 3)
    assert stats["avg_win"] == pytest.approx(100.0)
    assert stats["avg_loss"] == pytest.approx(-40.0)


def test_journal_summary_of_empty_journal():
    assert journal_summary([]) == {
        "open_trades": 0,
        "closed_trades": 0,
        "total_pnl": 0,
        "winning_trades": 0,
        "win_rate": 0.0,
        "avg_win": 0.0,
    }


BACKTESTS = [
    {"strategy_name": "Alpha", "status": "completed", "total_return": 10.0, "win_rate": 50, "sharpe_ratio": 1.0,
     "total_trades": 20, "profit_factor": 1.5, "backtest_run_id": "BT-1"},
    {"strategy_name": "Alpha", "status": "completed", "total_return": 30.0, "win_rate": 60, "sharpe_ratio": 2.0,
     "total_trades": 10, "profit_factor": 2.0, "backtest_run_id": "BT-2"},
    {"strategy_name": "Beta", "status": "completed", "total_return": 15.0, "win_rate": 70, "sharpe_ratio": 0.5,
     "total_trades": 8, "profit_factor": 1.2, "backtest_run_id": "BT-3"},
    {"strategy_name": "Gamma", "status": "failed", "total_return": 99.0},
]


def test_strategy_rollup_uses_true_mean():
    rollup = strategy_rollup(BACKTESTS)
    assert [r["strategy"] for r in rollup] == ["Alpha", "Beta"]
    assert rollup[0] == {"strategy": "Alpha", "runs": 2, "avg_return": 20.0, "trades": 30, "sharpe": 2.0}


def test_backtest_summary_ignores_failed_runs():
    summary = backtest_summary(BACKTESTS)
    assert summary["count"] == 3
    assert summary["avg_return"] == pytest.approx(55 / 3)
    assert summary["avg_win_rate"] == pytest.approx(60.0)
    assert summary["best_backtest"]["backtest_run_id"] == "BT-2"


def test_overall_score_weights():
    assert overall_score(BACKTESTS[1]) == pytest.approx(30 * 0.4 + 2.0 * 20 + 60 * 0.3 + 2.0 * 10)


def test_compare_backtests():
    comparison = compare_backtests(BACKTESTS[:3])
    assert comparison["best_return"]["backtest_run_id"] == "BT-2"
    assert comparison["best_sharpe"]["backtest_run_id"] == "BT-2"
    assert comparison["best_win_rate"]["backtest_run_id"] == "BT-3"
    assert [r["backtest_run_id"] for r in comparison["ranking"]] == ["BT-2", "BT-3", "BT-1"]
