"""
Shared fixtures: in-memory entity store, scripted LLM, manual scheduler.
"""
import threading

import pytest

from gateway.local_gateway import LocalGateway
from gateway.paper_brokerage import PaperBrokerage
from services.polling import TaskHandle
from storage.database import build_engine, build_session_factory, init_db


class ScriptedLLM:
    """LLM stand-in returning queued responses (or raising queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def push(self, *responses):
        self.responses.extend(responses)

    def __call__(self, prompt, add_context_from_internet=False, response_json_schema=None):
        self.calls.append({
            "prompt": prompt,
            "add_context_from_internet": add_context_from_internet,
            "schema": response_json_schema,
        })
        if not self.responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ManualScheduler:
    """Records delayed callbacks; tests run them explicitly."""

    def __init__(self):
        self.pending = []

    def __call__(self, delay, fn):
        event = threading.Event()
        handle = TaskHandle("manual", event)
        self.pending.append((delay, fn, handle))
        return handle

    def run_pending(self):
        ran = 0
        pending, self.pending = self.pending, []
        for _delay, fn, handle in pending:
            if not handle.cancelled:
                fn()
                handle.cancel()
                ran += 1
        return ran


PERSONAL_INFO = {
    "given_name": "Ada",
    "family_name": "Lovelace",
    "date_of_birth": "1990-12-10",
    "phone_number": "555-0100",
    "street_address": "1 Analytical Way",
    "city": "London",
    "state": "NY",
    "postal_code": "10001",
    "tax_id": "123-45-6789",
}


def backtest_response(**overrides):
    """A complete, realistic LLM backtest payload."""
    payload = {
        "total_trades": 24,
        "winning_trades": 14,
        "losing_trades": 10,
        "final_capital": 11250.0,
        "total_return": 12.5,
        "win_rate": 58.3,
        "avg_win": 210.0,
        "avg_loss": -140.0,
        "max_drawdown": -8.4,
        "sharpe_ratio": 1.35,
        "profit_factor": 1.6,
        "equity_curve": [
            {"date": "2023-01-03", "equity": 10000.0},
            {"date": "2023-06-30", "equity": 10700.0},
            {"date": "2023-12-29", "equity": 11250.0},
        ],
        "trade_log": [
            {
                "symbol": "SPY",
                "entry_date": "2023-02-01",
                "exit_date": "2023-02-15",
                "action": "buy",
                "entry_price": 405.1,
                "exit_price": 412.3,
                "quantity": 10,
                "pnl": 72.0,
                "pnl_percentage": 1.78,
                "reason": "take profit",
            }
        ],
    }
    payload.update(overrides)
    return payload


def strategy_record(name="RSI Reversion", **overrides):
    record = {
        "name": name,
        "strategy_type": "mean_reversion",
        "timeframe": "daily",
        "asset_types": ["stock"],
        "indicators": ["RSI", "SMA"],
        "rules": {
            "entry_conditions": "RSI(14) < 30 and close above SMA(200)",
            "exit_conditions": "RSI(14) > 55 or 5% stop loss",
            "risk_per_trade": 1.0,
            "max_position_size": 2000,
        },
        "is_active": True,
    }
    record.update(overrides)
    return record


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    factory = build_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def brokerage():
    return PaperBrokerage(starting_cash=0.0, auto_approve=True)


@pytest.fixture
def gateway(session_factory, llm, brokerage):
    return LocalGateway(session_factory=session_factory, llm=llm, brokerage=brokerage)


@pytest.fixture
def scheduler():
    return ManualScheduler()
