"""
Tests for single and batch backtests.
"""
import re
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conftest import ScriptedLLM, backtest_response, strategy_record
from gateway.errors import RemoteCallError
from workflows.backtest import BacktestWorkflow, generate_run_id, missing_result_fields
from workflows.errors import (
    BatchBacktestError,
    FailureKind,
    IncompleteResultError,
    PersistenceError,
    ValidationError,
    classify_failure,
)

PERIOD = ("2023-01-01", "2024-01-01")


@pytest.fixture
def workflow(gateway):
    return BacktestWorkflow(gateway)


def _saved_strategy(gateway, name="RSI Reversion", **overrides):
    return gateway.entities.Strategy.create(strategy_record(name, **overrides))


def test_run_id_format():
    run_id = generate_run_id(datetime(2024, 3, 9, tzinfo=timezone.utc))
    assert re.fullmatch(r"BT-20240309-[0-9A-Z]{6}", run_id)


def test_generate_backtest_persists_completed_record(gateway, llm, workflow):
    strategy = _saved_strategy(gateway)
    llm.push(backtest_response(avg_win=None, avg_loss=None))

    saved = workflow.generate_backtest(strategy, "spy, qqq", PERIOD, 10_000)

    assert saved["status"] == "completed"
    assert saved["strategy_id"] == strategy["id"]
    assert saved["symbols_tested"] == ["SPY", "QQQ"]
    assert saved["avg_win"] == 0
    assert saved["avg_loss"] == 0
    assert saved["final_capital"] == pytest.approx(11_250.0)
    assert re.fullmatch(r"BT-\d{8}-[0-9A-Z]{6}", saved["backtest_run_id"])
    assert gateway.entities.Backtest.list()[0]["id"] == saved["id"]
    assert llm.calls[0]["add_context_from_internet"] is False
    assert "equity_curve" in llm.calls[0]["schema"]["properties"]


def test_generate_backtest_clamps_unrealistic_values(gateway, llm, workflow):
    strategy = _saved_strategy(gateway)
    llm.push(backtest_response(total_return=137, final_capital=23_700, max_drawdown=-72, sharpe_ratio=4.1))

    saved = workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)

    assert saved["total_return"] == 50
    assert saved["final_capital"] == pytest.approx(15_000.0)
    assert saved["max_drawdown"] == -35
    assert saved["sharpe_ratio"] == 2.5


@pytest.mark.parametrize("missing", ["total_trades", "equity_curve", "trade_log"])
def test_incomplete_response_is_rejected(gateway, llm, workflow, missing):
    strategy = _saved_strategy(gateway)
    llm.push(backtest_response(**{missing: None}))

    with pytest.raises(IncompleteResultError):
        workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)
    assert gateway.entities.Backtest.list() == []


def test_zero_trades_is_not_incomplete():
    assert missing_result_fields(backtest_response(total_trades=0)) == []


def test_empty_equity_curve_is_incomplete():
    assert missing_result_fields(backtest_response(equity_curve=[])) == ["equity_curve"]


def test_non_list_series_are_incomplete():
    assert missing_result_fields(backtest_response(equity_curve="see chart", trade_log={})) == [
        "equity_curve",
        "trade_log",
    ]


@pytest.mark.parametrize("field,value", [
    ("total_return", "12.5%"),
    ("sharpe_ratio", "high"),
    ("max_drawdown", ["-8"]),
])
def test_non_numeric_performance_is_incomplete(gateway, llm, workflow, field, value):
    strategy = _saved_strategy(gateway)
    llm.push(backtest_response(**{field: value}))

    with pytest.raises(IncompleteResultError) as exc_info:
        workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)
    assert classify_failure(exc_info.value) is FailureKind.INCOMPLETE_RESPONSE
    assert gateway.entities.Backtest.list() == []


@pytest.mark.parametrize("kwargs,message", [
    ({"symbols": "  , "}, "symbol"),
    ({"period": ("2024-01-01", "2023-01-01")}, "Start date"),
    ({"initial_capital": 0}, "capital"),
])
def test_validation_happens_before_llm(gateway, llm, workflow, kwargs, message):
    strategy = _saved_strategy(gateway)
    args = {"symbols": ["SPY"], "period": PERIOD, "initial_capital": 10_000}
    args.update(kwargs)

    with pytest.raises(ValidationError, match=message):
        workflow.generate_backtest(strategy, **args)
    assert llm.calls == []


def test_strategy_without_rules_is_rejected(gateway, llm, workflow):
    strategy = _saved_strategy(gateway, rules={"entry_conditions": "", "exit_conditions": "x"})
    with pytest.raises(ValidationError):
        workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)
    assert llm.calls == []


def test_persistence_failure_is_typed(gateway, llm, workflow):
    strategy = _saved_strategy(gateway)
    llm.push(backtest_response())
    with patch.object(
        gateway.entities.Backtest, "create", side_effect=RemoteCallError("Backtest.create", "disk full")
    ):
        with pytest.raises(PersistenceError) as exc_info:
            workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)
    assert classify_failure(exc_info.value) is FailureKind.PERSISTENCE


def test_llm_outage_propagates_as_remote_call_error(gateway, llm, workflow):
    strategy = _saved_strategy(gateway)
    llm.push(RemoteCallError("integrations.Core.InvokeLLM", "timeout"))
    with pytest.raises(RemoteCallError) as exc_info:
        workflow.generate_backtest(strategy, ["SPY"], PERIOD, 10_000)
    assert classify_failure(exc_info.value) is FailureKind.REMOTE_CALL


# ============================================================================
# Batch
# ============================================================================

def test_batch_isolates_failures_and_keeps_order(gateway, llm, workflow):
    strategies = [
        _saved_strategy(gateway, "Alpha"),
        _saved_strategy(gateway, "Beta"),
        _saved_strategy(gateway, "Gamma"),
    ]
    llm.push(backtest_response(), backtest_response(trade_log=None), backtest_response())
    progress = []

    result = workflow.run_batch(strategies, ["SPY"], PERIOD, 10_000, progress=lambda *args: progress.append(args))

    assert [b["strategy_name"] for b in result.backtests] == ["Alpha", "Gamma"]
    assert [f.name for f in result.failed] == ["Beta"]
    assert "Incomplete backtest results" in result.failed[0].error
    assert result.warning == "1 strategy failed to backtest. See details below."
    assert progress == [(1, 3, "Alpha"), (2, 3, "Beta"), (3, 3, "Gamma")]


def test_batch_skips_inactive_strategies(gateway, llm, workflow):
    strategies = [
        _saved_strategy(gateway, "On"),
        _saved_strategy(gateway, "Off", is_active=False),
        {k: v for k, v in strategy_record("Legacy").items() if k != "is_active"},
    ]
    llm.push(backtest_response(), backtest_response())

    result = workflow.run_batch(strategies, ["SPY"], PERIOD, 10_000)

    assert [b["strategy_name"] for b in result.backtests] == ["On", "Legacy"]
    assert result.warning is None


def test_batch_with_no_active_strategies(gateway, workflow):
    with pytest.raises(ValidationError, match="No active strategies found"):
        workflow.run_batch([strategy_record(is_active=False)], ["SPY"], PERIOD, 10_000)


def test_batch_total_failure_carries_failed_list(gateway, llm, workflow):
    strategies = [_saved_strategy(gateway, "Alpha"), _saved_strategy(gateway, "Beta")]
    llm.push(backtest_response(total_trades=None), RemoteCallError("integrations.Core.InvokeLLM", "503"))

    with pytest.raises(BatchBacktestError) as exc_info:
        workflow.run_batch(strategies, ["SPY"], PERIOD, 10_000)

    assert [f["name"] for f in exc_info.value.failed_as_dicts()] == ["Alpha", "Beta"]
    assert gateway.entities.Backtest.list() == []
    assert classify_failure(exc_info.value) is FailureKind.BATCH


@pytest.mark.parametrize("symbols,period,message", [
    (["SPY"], ("2024-01-01", "2023-01-01"), "Start date"),
    ([" ", ""], PERIOD, "symbol"),
])
def test_batch_checks_shared_inputs_once(gateway, llm, workflow, symbols, period, message):
    strategies = [_saved_strategy(gateway, "Alpha"), _saved_strategy(gateway, "Beta")]
    progress = []

    with pytest.raises(ValidationError, match=message):
        workflow.run_batch(strategies, symbols, period, 10_000, progress=lambda *args: progress.append(args))
    assert progress == []
    assert llm.calls == []


def test_batch_warning_pluralizes():
    from workflows.backtest import BatchBacktestResult, FailedStrategy
    result = BatchBacktestResult(backtests=[{}], failed=[FailedStrategy("a", "x"), FailedStrategy("b", "y")])
    assert result.warning == "2 strategies failed to backtest. See details below."


def test_scripted_llm_records_prompts():
    llm = ScriptedLLM({"ok": True})
    assert llm("p", True, None) == {"ok": True}
    assert llm.calls[0]["prompt"] == "p"
