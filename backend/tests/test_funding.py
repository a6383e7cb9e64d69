"""
Tests for ACH funding and the live trading desk.
"""
from unittest.mock import patch

import pytest

from gateway.errors import RemoteCallError
from workflows.errors import ValidationError
from workflows.funding import FundingFlow
from workflows.trading import LiveTradingDesk, order_side
from conftest import PERSONAL_INFO


@pytest.fixture
def account(brokerage):
    brokerage.handle_brokerage({"action": "createAccount", **PERSONAL_INFO})
    return brokerage.account


@pytest.fixture
def funding(gateway, scheduler, account):
    return FundingFlow(gateway, scheduler=scheduler)


def _link(funding):
    return funding.link_bank("Ada Lovelace", "000123456789", "121000358", nickname="Main")


def test_link_bank_sets_message_and_schedules_reload(funding, scheduler):
    relationship = _link(funding)
    assert relationship["bank_account_number"] == "****6789"
    assert funding.success == "Bank account linked successfully! Approval typically takes about 1 minute."
    assert funding.relationships == []

    scheduler.run_pending()
    assert [r["id"] for r in funding.relationships] == [relationship["id"]]
    assert funding.can_transfer()


def test_only_approved_relationships_can_transfer(funding, brokerage):
    brokerage.auto_approve = False
    queued = _link(funding)
    funding.load()
    assert funding.approved_relationships() == []
    assert funding.snapshot()["can_transfer"] is False
    with pytest.raises(ValidationError, match="approved"):
        funding.request_transfer(queued["id"], 100, "INCOMING")


@pytest.mark.parametrize("amount,direction,message", [
    ("abc", "INCOMING", "number"),
    (0, "INCOMING", "positive"),
    (-5, "OUTGOING", "positive"),
    (10, "SIDEWAYS", "direction"),
])
def test_transfer_validation(funding, amount, direction, message):
    with pytest.raises(ValidationError, match=message):
        funding.request_transfer("ach-1", amount, direction)


def test_deposit_success_message(funding, scheduler):
    relationship = _link(funding)
    funding.load()

    transfer = funding.request_transfer(relationship["id"], "500", "incoming")

    assert transfer["status"] == "COMPLETE"
    assert funding.success == "Deposit of $500 initiated successfully! Status: COMPLETE"
    scheduler.run_pending()
    assert funding.transfers[0]["id"] == transfer["id"]


def test_withdrawal_failure_is_recorded(funding):
    relationship = _link(funding)
    funding.load()
    assert funding.request_transfer(relationship["id"], 12.5, "OUTGOING") is None
    assert funding.error == "Insufficient cash for withdrawal"
    assert funding.success is None


def test_load_failure_keeps_previous_data(funding, gateway):
    _link(funding)
    funding.load()
    before = list(funding.relationships)
    with patch.object(gateway.functions, "invoke", side_effect=RemoteCallError("functions.alpacaBrokerage", "503")):
        assert funding.load() is False
    assert funding.relationships == before
    assert "503" in funding.error


def test_unlink_unknown_relationship(funding):
    assert funding.unlink_bank("ach-missing") is False
    assert funding.error == "Failed to remove bank account"


def test_close_cancels_pending_reloads(funding, scheduler):
    _link(funding)
    assert funding.close() == 1
    assert scheduler.run_pending() == 0


def test_close_discards_load_in_flight(funding, gateway):
    _link(funding)
    real_invoke = gateway.functions.invoke

    def close_mid_load(name, payload=None):
        result = real_invoke(name, payload)
        if (payload or {}).get("action") == "getTransfers":
            funding.close()
        return result

    with patch.object(gateway.functions, "invoke", side_effect=close_mid_load):
        assert funding.load() is False
    assert funding.relationships == []

    assert funding.load() is True
    assert len(funding.relationships) == 1


# ============================================================================
# Live trading
# ============================================================================

def test_order_side():
    assert order_side("buy") == "buy"
    assert order_side("buy_to_open") == "buy"
    assert order_side("sell_short") == "sell"
    assert order_side(None) == "sell"


def test_desk_without_account(gateway):
    desk = LiveTradingDesk(gateway)
    assert desk.check_account() is False
    assert desk.snapshot()["has_account"] is False


def test_order_from_signal_marks_signal_executed(gateway, brokerage, account):
    brokerage.cash = 1_000_000.0
    signal = gateway.entities.Signal.create({"symbol": "AAPL", "action": "buy", "status": "active"})
    desk = LiveTradingDesk(gateway)
    assert desk.check_account() is True

    order = desk.place_order_from_signal(signal, quantity=3)

    assert order["side"] == "buy"
    assert order["time_in_force"] == "day"
    assert order["status"] == "filled"
    assert gateway.entities.Signal.get(signal["id"])["status"] == "executed"
    assert [p["symbol"] for p in desk.positions] == ["AAPL"]
    assert desk.orders[0]["id"] == order["id"]

    assert desk.close_position("AAPL") is True
    assert desk.positions == []


def test_rejected_order_records_error(gateway, account):
    signal = gateway.entities.Signal.create({"symbol": "AAPL", "action": "buy", "status": "active"})
    desk = LiveTradingDesk(gateway)
    assert desk.place_order_from_signal(signal, quantity=5) is None
    assert "Insufficient buying power" in desk.error
    assert gateway.entities.Signal.get(signal["id"])["status"] == "active"
