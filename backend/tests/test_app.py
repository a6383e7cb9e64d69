"""
Tests for QuantPilot backend app wiring: health, auth, middleware, logging.
"""

import json
import logging
import os
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

import app as app_module
from app import app
from api import routes as api_routes
from api.middleware import REDACTED, StructuredFormatter, redact_payload
from config.paths import DATA_DIR_ENV, default_database_url, resolve_app_data_dir
from config.settings import reset_settings
from services.logging_service import LOG_FILE_NAME, cleanup_old_logs, configure_file_logging
from storage.database import build_engine

client = TestClient(app)


@pytest.fixture(autouse=True)
def local_runtime(gateway):
    api_routes.set_gateway(gateway)
    yield
    api_routes.set_gateway(None)


def test_root():
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "QuantPilot API"}


def test_status():
    """Test status endpoint."""
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] in {"healthy", "degraded", "unhealthy"}
    assert data["service"] == "QuantPilot Backend"
    assert data["checks"]["gateway"]["status"] == "up"
    assert data["checks"]["market_watch"]["status"] == "stopped"
    assert "version" in data


def test_request_id_is_echoed():
    response = client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert client.get("/").headers["X-Request-ID"]


def test_api_key_auth(monkeypatch):
    monkeypatch.setenv("QUANTPILOT_API_KEY", "s3cret")
    reset_settings()
    try:
        assert client.get("/strategies").status_code == 401
        assert client.get("/strategies", headers={"X-API-Key": "s3cret"}).status_code == 200
        assert client.get("/strategies", headers={"Authorization": "Bearer s3cret"}).status_code == 200
        assert client.get("/status").status_code == 200
    finally:
        monkeypatch.delenv("QUANTPILOT_API_KEY")
        reset_settings()


def test_writes_rejected_during_shutdown():
    app_module._shutdown_event.set()
    try:
        response = client.post("/strategies", json={"name": "Late"})
        assert response.status_code == 503
        assert client.get("/strategies").status_code == 200
    finally:
        app_module._shutdown_event.clear()


def test_redact_payload_masks_nested_banking_fields():
    payload = {
        "given_name": "Ada",
        "tax_id": "123-45-6789",
        "bank": {"bank_account_number": "000123", "Bank_Routing_Number": "121000358"},
        "items": [{"password": "pw"}],
    }
    redacted = redact_payload(payload)
    assert redacted["given_name"] == "Ada"
    assert redacted["tax_id"] == REDACTED
    assert redacted["bank"] == {"bank_account_number": REDACTED, "Bank_Routing_Number": REDACTED}
    assert redacted["items"] == [{"password": REDACTED}]


def test_structured_formatter_emits_json():
    record = logging.LogRecord("quantpilot.test", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
    data = json.loads(StructuredFormatter().format(record))
    assert data["level"] == "WARNING"
    assert data["message"] == "hello world"
    assert data["logger"] == "quantpilot.test"


def test_file_logging_and_retention(tmp_path):
    log_file = configure_file_logging(str(tmp_path))
    root = logging.getLogger()
    try:
        assert log_file.name == LOG_FILE_NAME
        old = tmp_path / "quantpilot.log.1"
        old.write_text("old", encoding="utf-8")
        stale = time.time() - 30 * 86400
        os.utime(old, (stale, stale))
        os.utime(log_file, (stale, stale))

        assert cleanup_old_logs(str(tmp_path), retention_days=14) == 1
        assert not old.exists()
        assert log_file.exists()
    finally:
        for handler in [h for h in root.handlers if getattr(h, "name", "") == "quantpilot_file_handler"]:
            root.removeHandler(handler)
            handler.close()


def test_app_data_dir_override(monkeypatch, tmp_path):
    target = tmp_path / "data"
    monkeypatch.setenv(DATA_DIR_ENV, str(target))
    assert resolve_app_data_dir() == target.resolve()
    assert default_database_url() == f"sqlite:///{target.resolve() / 'quantpilot.db'}"


def test_file_engine_enables_wal(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    try:
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar().lower() == "wal"
    finally:
        engine.dispose()
