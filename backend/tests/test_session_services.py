"""
Tests for the session context, admin console, watchlist monitor and email delivery.
"""
import threading
from unittest.mock import MagicMock, patch

import pytest

from config.settings import Settings
from gateway.base import FunctionResult
from gateway.errors import RemoteCallError
from services.market_watch import WatchlistMonitor
from services.notification_delivery import EmailDeliveryService, build_welcome_body
from services.polling import TaskHandle
from services.session import SessionContext
from workflows.admin import AdminConsole
from workflows.errors import PermissionDeniedError, ValidationError


# ============================================================================
# Session
# ============================================================================

def test_session_start_resolves_user(gateway):
    session = SessionContext(gateway)
    assert session.start() is True
    assert session.user["email"] == "trader@localhost"
    assert session.require_admin()["role"] == "admin"


def test_session_start_failure_is_unauthenticated(gateway):
    session = SessionContext(gateway)
    with patch.object(gateway.auth, "is_authenticated", side_effect=RemoteCallError("auth.me", "offline")):
        assert session.start() is False
    with pytest.raises(PermissionDeniedError):
        session.require_admin()


def test_session_stop_cancels_tasks_and_logs_out(gateway):
    session = SessionContext(gateway)
    session.start()
    handle = session.register_task(TaskHandle("poll", threading.Event()))
    assert session.pending_tasks == 1

    assert session.stop() == 1
    assert handle.cancelled
    assert session.authenticated is False
    assert gateway.auth.is_authenticated() is False


# ============================================================================
# Admin
# ============================================================================

@pytest.fixture
def admin(gateway):
    session = SessionContext(gateway)
    session.start()
    return AdminConsole(session)


def test_non_admin_is_denied(gateway):
    session = SessionContext(gateway)
    session.user = {"email": "viewer@localhost", "role": "user"}
    with pytest.raises(PermissionDeniedError, match="Admin access required"):
        AdminConsole(session).list_users()


def test_welcome_emails_report_each_recipient(gateway, admin):
    ok = gateway.entities.User.create({"email": "ok@example.com", "full_name": "Ok"})
    bad = gateway.entities.User.create({"email": "bad@example.com", "full_name": "Bad"})
    gone = gateway.entities.User.create({"email": "gone@example.com", "full_name": "Gone"})

    def handler(payload):
        if payload["to_email"] == "bad@example.com":
            return {"success": False, "details": "Mailbox full"}
        if payload["to_email"] == "gone@example.com":
            return {}
        return {"success": True, "message": "Email sent"}

    gateway.functions.register("sendWelcomeEmail", handler)
    results = admin.send_welcome_emails([ok["id"], "unknown", bad["id"], gone["id"]])

    assert [r["email"] for r in results] == ["ok@example.com", "bad@example.com", "gone@example.com"]
    assert results[0] == {"email": "ok@example.com", "name": "Ok", "success": True, "message": "Email sent"}
    assert results[1]["message"] == "Mailbox full"
    assert results[2]["message"] == "Unknown error occurred"


def test_welcome_email_transport_error(gateway, admin):
    user = gateway.entities.User.create({"email": "ok@example.com", "full_name": "Ok"})
    with patch.object(gateway.functions, "invoke", side_effect=RemoteCallError("functions.sendWelcomeEmail", "502")):
        results = admin.send_welcome_emails([user["id"]])
    assert results[0]["success"] is False


# ============================================================================
# Watchlist
# ============================================================================

def test_add_asset_validates(gateway):
    monitor = WatchlistMonitor(gateway)
    with pytest.raises(ValidationError):
        monitor.add_asset("  ")
    with pytest.raises(ValidationError):
        monitor.add_asset("SPY", asset_type="bond")
    asset = monitor.add_asset("spy", asset_type="etf")
    assert asset["symbol"] == "SPY"
    assert asset["name"] == "SPY"


def test_refresh_with_empty_watchlist_makes_no_call(gateway):
    monitor = WatchlistMonitor(gateway)
    with patch.object(gateway.functions, "invoke") as invoke:
        assert monitor.refresh() == {}
    invoke.assert_not_called()


def test_refresh_keys_quotes_by_symbol(gateway):
    monitor = WatchlistMonitor(gateway)
    monitor.add_asset("SPY")
    monitor.add_asset("BTCUSD", asset_type="crypto")
    quotes = monitor.refresh()
    assert set(quotes) == {"SPY", "BTCUSD"}
    assert quotes["SPY"]["symbol"] == "SPY"


def test_failed_refresh_keeps_previous_quotes(gateway):
    monitor = WatchlistMonitor(gateway)
    monitor.add_asset("SPY")
    first = monitor.refresh()
    failed = FunctionResult(data={"success": False, "error": "rate limited"})
    with patch.object(gateway.functions, "invoke", return_value=failed):
        assert monitor.refresh() == first
    with patch.object(gateway.functions, "invoke", side_effect=RemoteCallError("functions.getMarketData", "down")):
        assert monitor.refresh() == first


def test_monitor_start_and_stop(gateway):
    monitor = WatchlistMonitor(gateway, poll_interval=60.0)
    monitor.start()
    try:
        assert monitor.is_running()
    finally:
        assert monitor.stop(wait=True) is True
    assert not monitor.is_running()


# ============================================================================
# Email delivery
# ============================================================================

def _smtp_settings(**overrides):
    values = {
        "smtp_host": "smtp.example.com",
        "smtp_username": "mailer",
        "smtp_password": "pw",
        "smtp_from_email": "noreply@example.com",
    }
    values.update(overrides)
    return Settings(**values)


def test_welcome_body_falls_back_to_generic_name():
    assert build_welcome_body("  ").startswith("Hi trader,")


def test_invalid_recipient_is_a_failed_envelope():
    service = EmailDeliveryService(_smtp_settings())
    assert service.handle_welcome_email({"to_email": "not-an-email"}) == {
        "success": False,
        "error": "Invalid recipient email address: 'not-an-email'",
    }


def test_missing_smtp_host_is_reported():
    service = EmailDeliveryService(_smtp_settings(smtp_host=None))
    result = service.handle_welcome_email({"to_email": "ada@example.com", "to_name": "Ada"})
    assert result["success"] is False
    assert "QUANTPILOT_SMTP_HOST" in result["error"]


def test_email_sent_over_starttls():
    client = MagicMock()
    with patch("services.notification_delivery.smtplib.SMTP", return_value=client) as smtp:
        result = EmailDeliveryService(_smtp_settings()).handle_welcome_email(
            {"to_email": "ada@example.com", "to_name": "Ada"}
        )
    assert result == {"success": True, "message": "Email sent to ada@example.com"}
    smtp.assert_called_once_with("smtp.example.com", 587, timeout=15)
    client.starttls.assert_called_once()
    client.login.assert_called_once_with("mailer", "pw")
    sent = client.send_message.call_args.args[0]
    assert sent["To"] == "ada@example.com"
    client.quit.assert_called_once()
