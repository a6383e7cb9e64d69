"""
QuantPilot FastAPI Backend
Main application entry point.

Production features:
- Health check with subsystem status
- Request correlation IDs for log tracing
- Structured JSON logging
- Rate limiting on LLM-backed endpoints
- Graceful shutdown that stops pollers and rejects new writes
"""
import asyncio
import secrets
import threading
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
import logging
import uvicorn

from api.routes import (
    router as api_router,
    ERROR_HANDLERS,
    get_session,
    shutdown_runtime,
    start_market_watch,
)
from api.middleware import (
    correlation_id_middleware,
    configure_structured_logging,
    limiter,
    rate_limit_exceeded_handler,
    redact_payload,
)
from api.health import APP_VERSION, build_health_response, mark_startup
from config.paths import default_log_directory
from config.settings import get_settings
from services.logging_service import cleanup_old_logs, configure_file_logging
from storage.database import init_db

logger = logging.getLogger(__name__)
AUTH_SKIP_PATHS = {
    "/",
    "/status",
    "/openapi.json",
    "/docs",
    "/docs/oauth2-redirect",
    "/redoc",
}

_shutdown_event = threading.Event()


def _is_shutting_down() -> bool:
    return _shutdown_event.is_set()


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    """Initialize storage and the session; stop every poller on shutdown."""
    settings = get_settings()
    formatter = configure_structured_logging(settings.log_level)
    log_dir = settings.log_directory or default_log_directory()
    try:
        configure_file_logging(log_dir, formatter)
        removed = cleanup_old_logs(log_dir, settings.log_retention_days)
        if removed:
            logger.info("Removed %d expired log file(s)", removed)
    except OSError:
        logger.warning("File logging unavailable at %s", log_dir, exc_info=True)
    mark_startup()
    _shutdown_event.clear()
    logger.info("QuantPilot backend starting up (env=%s, gateway=%s)", settings.environment, settings.gateway_mode)

    if settings.gateway_mode == "local":
        try:
            init_db()
        except (RuntimeError, ValueError, TypeError):
            logger.exception("Failed to initialize entity store")
            raise

    if settings.environment == "production" and not settings.api_auth_key:
        logger.warning(
            "Production environment detected but QUANTPILOT_API_KEY is not set. "
            "API authentication is disabled."
        )

    try:
        session = get_session()
        if session.authenticated:
            start_market_watch()
            logger.info("Market data polling started (every %.0fs)", settings.market_data_poll_seconds)
        else:
            logger.warning("Gateway session is not authenticated; market data polling not started")
    except RuntimeError:
        logger.exception("Failed to initialize gateway session")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown...")
        _shutdown_event.set()
        try:
            shutdown_runtime()
            logger.info("Pollers stopped and gateway closed")
        except Exception:
            logger.exception("Error stopping runtime during shutdown")
        # Allow in-flight requests to drain
        await asyncio.sleep(0.5)
        logger.info("Graceful shutdown complete")


app = FastAPI(
    title="QuantPilot API",
    description="AI-assisted strategy research, backtesting and brokerage workflows",
    version=APP_VERSION,
    lifespan=_lifespan,
    openapi_tags=[
        {"name": "Strategies", "description": "Strategy CRUD and activation"},
        {"name": "Signals", "description": "AI signal generation and execution"},
        {"name": "Backtesting", "description": "Simulated backtests and batch comparison"},
        {"name": "Discovery", "description": "AI strategy discovery"},
        {"name": "Brokerage", "description": "Account onboarding, funding and live trading"},
        {"name": "Journal", "description": "Trade journal and performance"},
        {"name": "Admin", "description": "User administration"},
    ],
)

app.state.limiter = limiter
app.add_exception_handler(429, rate_limit_exceeded_handler)
for _error_type, _handler in ERROR_HANDLERS.items():
    app.add_exception_handler(_error_type, _handler)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in get_settings().cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _auth_required() -> bool:
    """Return whether API-key auth must be enforced for requests."""
    settings = get_settings()
    if settings.api_auth_enabled:
        return True
    return bool(settings.api_auth_key and settings.api_auth_key.strip())


def _extract_api_key(request: Request) -> str:
    """Extract API key from X-API-Key or Bearer token header."""
    direct_key = request.headers.get("x-api-key", "").strip()
    if direct_key:
        return direct_key
    auth_header = request.headers.get("authorization", "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


def _should_skip_auth(path: str) -> bool:
    if path in AUTH_SKIP_PATHS:
        return True
    return path.startswith("/docs") or path.startswith("/redoc") or path.startswith("/openapi")


@app.middleware("http")
async def _correlation_id(request: Request, call_next):
    return await correlation_id_middleware(request, call_next)


@app.middleware("http")
async def api_auth_middleware(request: Request, call_next):
    """
    Optionally enforce API key auth for non-public endpoints.
    """
    if request.method == "OPTIONS" or _should_skip_auth(request.url.path):
        return await call_next(request)

    if not _auth_required():
        return await call_next(request)

    expected_key = (get_settings().api_auth_key or "").strip()
    if not expected_key:
        return JSONResponse(
            status_code=503,
            content={"detail": "API auth is enabled but QUANTPILOT_API_KEY is not configured"},
        )

    provided_key = _extract_api_key(request)
    if not provided_key or not secrets.compare_digest(provided_key, expected_key):
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    return await call_next(request)


@app.middleware("http")
async def security_logging_middleware(request: Request, call_next):
    """
    Log write operations with redacted query parameters.
    """
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        logger.info(
            "HTTP %s %s query=%s",
            request.method,
            request.url.path,
            redact_payload(dict(request.query_params.items())),
        )
    response: Response = await call_next(request)
    return response


@app.middleware("http")
async def shutdown_rejection_middleware(request: Request, call_next):
    """Reject new write requests during graceful shutdown."""
    if _is_shutting_down() and request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        if request.url.path not in {"/", "/status"}:
            return JSONResponse(
                status_code=503,
                content={"detail": "Server is shutting down. Please retry shortly."},
            )
    return await call_next(request)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "QuantPilot API"}


@app.get("/status")
def status():
    """
    Health check endpoint.
    Reports entity store, gateway and poller status.
    """
    return build_health_response()


app.include_router(api_router)


if __name__ == "__main__":
    settings = get_settings()
    logger.info("Backend bootstrap: uvicorn reload=%s", settings.backend_reload)
    uvicorn.run(
        "app:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.backend_reload,
    )
