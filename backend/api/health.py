"""
Health check payload.

Reports real subsystem status instead of a static response:
- Local entity store connectivity
- Gateway reachability
- Market data poller status
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from config.settings import get_settings
from storage.database import check_db_connection

logger = logging.getLogger(__name__)

_startup_time: float = time.monotonic()
_startup_utc: str = datetime.now(timezone.utc).isoformat()

APP_VERSION = "0.1.0"


def mark_startup() -> None:
    """Call once at startup to record the process start time."""
    global _startup_time, _startup_utc
    _startup_time = time.monotonic()
    _startup_utc = datetime.now(timezone.utc).isoformat()


def build_health_response() -> Dict[str, Any]:
    """
    Build the health check payload.

    Returns a dict with:
      status: "healthy" | "degraded" | "unhealthy"
      checks: per-subsystem status
      uptime_seconds: process uptime
      version: app version
    """
    settings = get_settings()
    checks: Dict[str, Dict[str, Any]] = {}
    unhealthy = False
    degraded = False

    # The local store is only the system of record in local gateway mode.
    if settings.gateway_mode == "local":
        db_ok = check_db_connection()
        checks["database"] = {"status": "up" if db_ok else "down"}
        unhealthy = not db_ok

    gateway_ok = False
    gateway_error = ""
    try:
        from api.routes import get_gateway
        gateway_ok = bool(get_gateway().ping())
    except Exception as exc:
        gateway_error = str(exc)[:200]
    if not gateway_ok:
        degraded = True
    checks["gateway"] = {
        "status": "up" if gateway_ok else "degraded",
        "mode": settings.gateway_mode,
        "error": gateway_error or None,
    }

    market_watch_running = False
    try:
        from api.routes import is_market_watch_running
        market_watch_running = is_market_watch_running()
    except ImportError:
        logger.debug("Routes not loaded; market watch status unknown")
    checks["market_watch"] = {"status": "running" if market_watch_running else "stopped"}

    if unhealthy:
        status = "unhealthy"
    elif degraded:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "service": "QuantPilot Backend",
        "version": APP_VERSION,
        "uptime_seconds": round(time.monotonic() - _startup_time, 1),
        "started_at": _startup_utc,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
