"""
Tests for the HTTP and local gateways.
"""
import json

import httpx
import pytest

from config.settings import Settings
from gateway import build_gateway
from gateway.errors import RemoteCallError
from gateway.http_gateway import HttpGateway
from gateway.local_gateway import LocalGateway
from storage.repositories import parse_sort


def _http_gateway(handler):
    return HttpGateway(
        base_url="https://platform.test/api/",
        app_id="app-123",
        token="secret-token",
        login_url="https://platform.test/login",
        transport=httpx.MockTransport(handler),
    )


# ============================================================================
# HTTP gateway
# ============================================================================

def test_http_entity_list_sends_sort_and_limit():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=[{"id": "s1", "name": "Alpha"}])

    gateway = _http_gateway(handler)
    records = gateway.entities.Strategy.list(sort="-created_date", limit=5)

    assert records == [{"id": "s1", "name": "Alpha"}]
    assert seen["url"].path == "/api/apps/app-123/entities/Strategy"
    assert seen["url"].params["sort"] == "-created_date"
    assert seen["url"].params["limit"] == "5"
    assert seen["auth"] == "Bearer secret-token"


def test_http_error_status_becomes_remote_call_error():
    gateway = _http_gateway(lambda request: httpx.Response(404, text="not found"))
    with pytest.raises(RemoteCallError) as exc_info:
        gateway.entities.Signal.get("missing")
    assert exc_info.value.status_code == 404
    assert exc_info.value.operation == "Signal.get"


def test_http_transport_failure_becomes_remote_call_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _http_gateway(handler)
    with pytest.raises(RemoteCallError) as exc_info:
        gateway.functions.invoke("getMarketData", {"symbols": ["SPY"]})
    assert exc_info.value.status_code is None
    assert gateway.ping() is False


def test_http_llm_posts_prompt_and_schema():
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"symbol": "SPY"})

    gateway = _http_gateway(handler)
    result = gateway.integrations.core.invoke_llm("hello", True, {"type": "object"})

    assert result == {"symbol": "SPY"}
    assert captured["path"].endswith("/integration-endpoints/Core/InvokeLLM")
    assert captured["body"] == {
        "prompt": "hello",
        "add_context_from_internet": True,
        "response_json_schema": {"type": "object"},
    }


def test_http_auth_unauthenticated_on_401():
    gateway = _http_gateway(lambda request: httpx.Response(401, json={"detail": "expired"}))
    assert gateway.auth.is_authenticated() is False
    url = gateway.auth.redirect_to_login("http://localhost:5173/dashboard")
    assert url.startswith("https://platform.test/login?app_id=app-123&from_url=")


def test_build_gateway_remote_requires_credentials():
    with pytest.raises(RuntimeError):
        build_gateway(Settings(gateway_mode="remote", gateway_app_id=None, gateway_token=None))


# ============================================================================
# Local gateway and entity store
# ============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("-created_date", ("created_date", True)),
    ("total_return", ("total_return", False)),
    ("+name", ("name", False)),
    ("", (None, False)),
    (None, (None, False)),
])
def test_parse_sort(raw, expected):
    assert parse_sort(raw) == expected


def test_local_list_sorts_and_limits(gateway):
    for name, total_return in (("A", 5.0), ("B", 20.0), ("C", None), ("D", 12.0)):
        gateway.entities.Backtest.create({"strategy_name": name, "total_return": total_return})

    ranked = gateway.entities.Backtest.list(sort="-total_return")
    assert [b["strategy_name"] for b in ranked] == ["B", "D", "A", "C"]
    assert [b["strategy_name"] for b in gateway.entities.Backtest.list(limit=2)] == ["A", "B"]


def test_local_entity_types_are_isolated(gateway):
    gateway.entities.Strategy.create({"name": "Alpha"})
    assert gateway.entities.Signal.list() == []


def test_local_update_merges_and_ignores_reserved_keys(gateway):
    created = gateway.entities.Strategy.create({"name": "Alpha", "is_active": True, "id": "forged"})
    assert created["id"] != "forged"

    updated = gateway.entities.Strategy.update(created["id"], {"is_active": False, "created_date": "1999"})
    assert updated["name"] == "Alpha"
    assert updated["is_active"] is False
    assert updated["created_date"] == created["created_date"]


@pytest.mark.parametrize("operation", ["get", "update", "delete"])
def test_local_missing_record_is_404(gateway, operation):
    collection = gateway.entities.Trade
    call = {
        "get": lambda: collection.get("nope"),
        "update": lambda: collection.update("nope", {"status": "closed"}),
        "delete": lambda: collection.delete("nope"),
    }[operation]
    with pytest.raises(RemoteCallError) as exc_info:
        call()
    assert exc_info.value.status_code == 404


def test_unknown_entity_type(gateway):
    with pytest.raises(AttributeError):
        gateway.entities.Portfolio


def test_unknown_function_is_404(gateway):
    with pytest.raises(RemoteCallError) as exc_info:
        gateway.functions.invoke("doesNotExist")
    assert exc_info.value.status_code == 404


def test_local_llm_unconfigured(session_factory):
    gateway = LocalGateway(session_factory)
    with pytest.raises(RemoteCallError, match="not configured"):
        gateway.integrations.core.invoke_llm("prompt")


def test_local_auth_logout_and_login(gateway):
    assert gateway.auth.me()["role"] == "admin"
    gateway.auth.logout()
    assert gateway.auth.is_authenticated() is False
    with pytest.raises(RemoteCallError):
        gateway.auth.me()
    assert gateway.auth.redirect_to_login("/dashboard") == "/login?from_url=/dashboard"
    assert gateway.auth.is_authenticated() is True


def test_paper_market_data_envelope(gateway):
    result = gateway.functions.invoke("getMarketData", {"symbols": ["spy", " qqq ", ""]})
    assert result.success
    assert [q["symbol"] for q in result.data["data"]] == ["SPY", "QQQ"]
    assert all(q["price"] >= 1.0 for q in result.data["data"])


def test_paper_trading_requires_account(gateway):
    result = gateway.functions.invoke("alpacaTrading", {"action": "getAccount"})
    assert result.success is False
    assert "not approved" in result.error


def test_ping(gateway):
    assert gateway.ping() is True
