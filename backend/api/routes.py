"""
API Routes.
Defines all REST API endpoints for QuantPilot.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from config.settings import get_settings
from gateway import Gateway, RemoteCallError, build_gateway
from services.market_watch import WatchlistMonitor
from services.performance import compare_backtests, performance_overview
from services.session import SessionContext
from workflows.admin import AdminConsole
from workflows.backtest import BacktestWorkflow
from workflows.discovery import StrategyDiscoveryWorkflow
from workflows.errors import (
    BatchBacktestError,
    BrokerageError,
    IncompleteResultError,
    InvalidTransitionError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
    WorkflowError,
    classify_failure,
)
from workflows.funding import FundingFlow
from workflows.journal import close_trade, journal_summary, record_trade
from workflows.onboarding import OnboardingFlow
from workflows.signals import SignalWorkflow
from workflows.trading import LiveTradingDesk

from .middleware import LLM_RATE_LIMIT, limiter
from .models import (
    BacktestRunRequest,
    BacktestRunResponse,
    BankLinkRequest,
    DisclosuresRequest,
    DiscoveryRequest,
    DiscoveryResponse,
    DiscoverySaveRequest,
    FundingResponse,
    LiveOrderRequest,
    LiveTradingResponse,
    MessageResponse,
    OnboardingStatusResponse,
    PersonalInfoRequest,
    QuotesResponse,
    SignalExecuteRequest,
    SignalGenerateRequest,
    SignalGenerateResponse,
    StrategyCreateRequest,
    StrategyUpdateRequest,
    TradeCloseRequest,
    TradeCreateRequest,
    TransferRequest,
    WatchlistAssetRequest,
    WelcomeEmailRequest,
    WelcomeEmailResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# Runtime State
# ============================================================================

_state_lock = threading.RLock()
_gateway: Optional[Gateway] = None
_session: Optional[SessionContext] = None
_watchlist: Optional[WatchlistMonitor] = None
_onboarding: Optional[OnboardingFlow] = None
_funding: Optional[FundingFlow] = None
_desk: Optional[LiveTradingDesk] = None


def get_gateway() -> Gateway:
    """Get or build the configured gateway."""
    global _gateway
    with _state_lock:
        if _gateway is None:
            _gateway = build_gateway(get_settings())
            logger.info("Gateway initialized (%s)", _gateway.name)
        return _gateway


def set_gateway(gateway: Optional[Gateway]) -> None:
    """Swap the gateway and drop every flow bound to the previous one."""
    global _gateway
    shutdown_runtime(close_gateway=False)
    with _state_lock:
        _gateway = gateway


def get_session() -> SessionContext:
    global _session
    with _state_lock:
        if _session is None:
            _session = SessionContext(get_gateway())
            _session.start()
        return _session


def get_watchlist_monitor() -> WatchlistMonitor:
    global _watchlist
    with _state_lock:
        if _watchlist is None:
            _watchlist = WatchlistMonitor(get_gateway(), poll_interval=get_settings().market_data_poll_seconds)
        return _watchlist


def get_funding_flow() -> FundingFlow:
    global _funding
    with _state_lock:
        if _funding is None:
            settings = get_settings()
            _funding = FundingFlow(
                get_gateway(),
                settle_delay=settings.settle_delay_seconds,
                poll_interval=settings.funding_poll_seconds,
            )
        return _funding


def get_trading_desk() -> LiveTradingDesk:
    global _desk
    with _state_lock:
        if _desk is None:
            _desk = LiveTradingDesk(get_gateway())
        return _desk


def _current_onboarding() -> OnboardingFlow:
    with _state_lock:
        if _onboarding is None:
            raise InvalidTransitionError("Onboarding has not started; fetch the onboarding status first")
        return _onboarding


def start_market_watch() -> bool:
    """Start watchlist quote polling under the session's task group."""
    monitor = get_watchlist_monitor()
    get_session().register_task(monitor.start())
    return True


def is_market_watch_running() -> bool:
    with _state_lock:
        monitor = _watchlist
    return monitor is not None and monitor.is_running()


def shutdown_runtime(close_gateway: bool = True) -> None:
    """Cancel every poller and pending reload, then release the gateway."""
    global _gateway, _session, _watchlist, _onboarding, _funding, _desk
    with _state_lock:
        session, watchlist, onboarding, funding = _session, _watchlist, _onboarding, _funding
        gateway = _gateway
        _session = _watchlist = _onboarding = _funding = _desk = None
        if close_gateway:
            _gateway = None
    if watchlist is not None:
        watchlist.stop()
    if onboarding is not None:
        onboarding.close()
    if funding is not None:
        funding.close()
    if session is not None:
        session.stop(logout=False)
    if close_gateway and gateway is not None:
        gateway.close()


# ============================================================================
# Error Mapping
# ============================================================================

def workflow_error_status(exc: Exception) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, RemoteCallError):
        if exc.status_code in (401, 404):
            return exc.status_code
        return 502
    if isinstance(exc, (IncompleteResultError, PersistenceError, BrokerageError, BatchBacktestError)):
        return 502
    return 500


def workflow_error_response(_request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for WorkflowError and RemoteCallError."""
    status_code = workflow_error_status(exc)
    content: Dict[str, Any] = {"detail": str(exc), "kind": classify_failure(exc).value}
    if isinstance(exc, BatchBacktestError):
        content["failed"] = exc.failed_as_dicts()
    if status_code >= 500:
        logger.error("Workflow failure: %s", exc)
    return JSONResponse(status_code=status_code, content=content)


ERROR_HANDLERS = {
    WorkflowError: workflow_error_response,
    RemoteCallError: workflow_error_response,
}


def _fetch(entity_type: str, entity_id: str) -> Dict[str, Any]:
    try:
        return get_gateway().entities.get(entity_type).get(entity_id)
    except RemoteCallError as exc:
        if exc.status_code == 404:
            raise HTTPException(status_code=404, detail=f"{entity_type} not found")
        raise


# ============================================================================
# Auth Endpoints
# ============================================================================

@router.get("/auth/me")
def auth_me():
    """Current user."""
    return get_session().refresh_user()


@router.get("/auth/login-url")
def auth_login_url(return_url: str = Query("/", max_length=500)):
    return {"login_url": get_session().login_url(return_url)}


@router.post("/auth/logout", response_model=MessageResponse)
def auth_logout():
    global _session
    with _state_lock:
        session, _session = _session, None
    if session is None:
        get_gateway().auth.logout()
    else:
        session.stop(logout=True)
    return MessageResponse(message="Logged out")


# ============================================================================
# Strategy Endpoints
# ============================================================================

@router.get("/strategies")
def list_strategies(active_only: bool = False):
    strategies = get_gateway().entities.Strategy.list(sort="-created_date")
    if active_only:
        strategies = [s for s in strategies if s.get("is_active") is not False]
    return {"strategies": strategies, "total_count": len(strategies)}


@router.post("/strategies", status_code=201)
def create_strategy(request: StrategyCreateRequest):
    fields = request.model_dump(mode="json")
    strategy = get_gateway().entities.Strategy.create(fields)
    logger.info("Strategy created: %s", strategy.get("name"))
    return strategy


@router.get("/strategies/{strategy_id}")
def get_strategy(strategy_id: str):
    return _fetch("Strategy", strategy_id)


@router.put("/strategies/{strategy_id}")
def update_strategy(strategy_id: str, request: StrategyUpdateRequest):
    _fetch("Strategy", strategy_id)
    fields = request.model_dump(mode="json", exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    return get_gateway().entities.Strategy.update(strategy_id, fields)


@router.post("/strategies/{strategy_id}/toggle")
def toggle_strategy(strategy_id: str):
    strategy = _fetch("Strategy", strategy_id)
    active = strategy.get("is_active") is not False
    return get_gateway().entities.Strategy.update(strategy_id, {"is_active": not active})


@router.delete("/strategies/{strategy_id}", response_model=MessageResponse)
def delete_strategy(strategy_id: str):
    _fetch("Strategy", strategy_id)
    get_gateway().entities.Strategy.delete(strategy_id)
    return MessageResponse(message=f"Strategy {strategy_id} deleted")


# ============================================================================
# Signal Endpoints
# ============================================================================

@router.get("/signals")
def list_signals(status: Optional[str] = Query(None, max_length=20), limit: int = Query(100, ge=1, le=500)):
    signals = get_gateway().entities.Signal.list(sort="-created_date", limit=None if status else limit)
    if status:
        signals = [s for s in signals if s.get("status") == status][:limit]
    return {"signals": signals, "total_count": len(signals)}


@router.post("/signals/generate", response_model=SignalGenerateResponse)
@limiter.limit(LLM_RATE_LIMIT)
def generate_signals(request: Request, body: SignalGenerateRequest):
    gateway = get_gateway()
    strategies = gateway.entities.Strategy.list(sort="-created_date")
    if body.strategy_ids:
        wanted = set(body.strategy_ids)
        strategies = [s for s in strategies if s.get("id") in wanted]
    limit = body.limit or get_settings().signal_batch_limit
    outcome = SignalWorkflow(gateway).generate_signals(strategies, limit=limit)
    return SignalGenerateResponse(
        signals=outcome["signals"],
        failed=[f.to_dict() for f in outcome["failed"]],
    )


@router.post("/signals/{signal_id}/execute", status_code=201)
def execute_signal(signal_id: str, body: SignalExecuteRequest):
    signal = _fetch("Signal", signal_id)
    return SignalWorkflow(get_gateway()).execute_signal(
        signal,
        entry_price=body.entry_price,
        quantity=body.quantity,
        notes=body.notes,
    )


# ============================================================================
# Backtest Endpoints
# ============================================================================

@router.get("/backtests")
def list_backtests(strategy_id: Optional[str] = None, limit: int = Query(100, ge=1, le=500)):
    backtests = get_gateway().entities.Backtest.list(sort="-created_date")
    if strategy_id:
        backtests = [b for b in backtests if b.get("strategy_id") == strategy_id]
    return {"backtests": backtests[:limit], "total_count": len(backtests)}


@router.get("/backtests/{backtest_id}")
def get_backtest(backtest_id: str):
    return _fetch("Backtest", backtest_id)


@router.post("/backtests/run", response_model=BacktestRunResponse)
@limiter.limit(LLM_RATE_LIMIT)
def run_backtest(request: Request, body: BacktestRunRequest):
    """
    Run a backtest for one strategy, or every active strategy when
    ``strategy_id`` is ``ALL``.
    """
    gateway = get_gateway()
    workflow = BacktestWorkflow(gateway)
    period = (body.start_date, body.end_date)
    if body.run_all:
        strategies = gateway.entities.Strategy.list(sort="created_date")
        batch = workflow.run_batch(strategies, body.symbols, period, body.initial_capital)
        return BacktestRunResponse(
            backtests=batch.backtests,
            failed=[f.to_dict() for f in batch.failed],
            warning=batch.warning,
            comparison=compare_backtests(batch.backtests) if len(batch.backtests) > 1 else None,
        )

    strategy = _fetch("Strategy", body.strategy_id)
    backtest = workflow.generate_backtest(strategy, body.symbols, period, body.initial_capital)
    return BacktestRunResponse(backtests=[backtest])


# ============================================================================
# Discovery Endpoints
# ============================================================================

@router.post("/discovery", response_model=DiscoveryResponse)
@limiter.limit(LLM_RATE_LIMIT)
def discover_strategies(request: Request, body: DiscoveryRequest):
    outcomes = StrategyDiscoveryWorkflow(get_gateway()).discover_and_backtest(
        analysis_type=body.analysis_type,
        focus_area=body.focus_area.value,
        risk_tolerance=body.risk_tolerance.value,
        auto_backtest=body.auto_backtest,
    )
    return DiscoveryResponse(outcomes=[o.to_dict() for o in outcomes])


@router.post("/discovery/save", status_code=201)
def save_discovered_strategy(body: DiscoverySaveRequest):
    return StrategyDiscoveryWorkflow(get_gateway()).save_strategy(body.draft)


# ============================================================================
# Onboarding Endpoints
# ============================================================================

@router.get("/onboarding/status", response_model=OnboardingStatusResponse)
def onboarding_status():
    """Fresh account status check; restarts the onboarding flow."""
    global _onboarding
    settings = get_settings()
    flow = OnboardingFlow(get_gateway(), redirect_delay=settings.onboarding_redirect_delay_seconds)
    with _state_lock:
        previous, _onboarding = _onboarding, flow
    if previous is not None:
        previous.close()
    flow.check_status()
    return flow.snapshot()


@router.post("/onboarding/personal-info", response_model=OnboardingStatusResponse)
def onboarding_personal_info(body: PersonalInfoRequest):
    flow = _current_onboarding()
    flow.submit_personal_info(body.to_flow_payload())
    return flow.snapshot()


@router.post("/onboarding/back", response_model=OnboardingStatusResponse)
def onboarding_back():
    flow = _current_onboarding()
    flow.back_to_personal_info()
    return flow.snapshot()


@router.post("/onboarding/disclosures", response_model=OnboardingStatusResponse)
def onboarding_disclosures(body: DisclosuresRequest):
    flow = _current_onboarding()
    flow.submit_disclosures(body.model_dump())
    snapshot = flow.snapshot()
    if snapshot["error"]:
        raise HTTPException(status_code=502, detail=snapshot["error"])
    return snapshot


@router.post("/onboarding/dismiss-error", response_model=OnboardingStatusResponse)
def onboarding_dismiss_error():
    flow = _current_onboarding()
    flow.dismiss_error()
    return flow.snapshot()


# ============================================================================
# Funding Endpoints
# ============================================================================

@router.get("/funding", response_model=FundingResponse)
def funding_overview():
    flow = get_funding_flow()
    flow.load()
    return flow.snapshot()


@router.post("/funding/relationships", response_model=FundingResponse, status_code=201)
def link_bank_account(body: BankLinkRequest):
    flow = get_funding_flow()
    if flow.link_bank(
        account_owner_name=body.account_owner_name,
        bank_account_number=body.bank_account_number,
        bank_routing_number=body.bank_routing_number,
        bank_account_type=body.bank_account_type,
        nickname=body.nickname or "",
    ) is None:
        raise HTTPException(status_code=502, detail=flow.error or "Failed to link bank account")
    return flow.snapshot()


@router.delete("/funding/relationships/{relationship_id}", response_model=FundingResponse)
def unlink_bank_account(relationship_id: str):
    flow = get_funding_flow()
    if not flow.unlink_bank(relationship_id):
        raise HTTPException(status_code=502, detail=flow.error or "Failed to remove bank account")
    return flow.snapshot()


@router.post("/funding/transfers", response_model=FundingResponse, status_code=201)
def create_transfer(body: TransferRequest):
    flow = get_funding_flow()
    if not flow.relationships:
        flow.load()
    if flow.request_transfer(body.relationship_id, body.amount, body.direction) is None:
        raise HTTPException(status_code=502, detail=flow.error or "Transfer failed")
    return flow.snapshot()


@router.post("/funding/watch", response_model=MessageResponse)
def start_funding_watch():
    flow = get_funding_flow()
    get_session().register_task(flow.start_polling())
    return MessageResponse(message=f"Funding refresh every {flow.poll_interval:g}s")


@router.delete("/funding/watch", response_model=MessageResponse)
def stop_funding_watch():
    cancelled = get_funding_flow().close()
    return MessageResponse(message=f"Cancelled {cancelled} funding task(s)")


# ============================================================================
# Live Trading Endpoints
# ============================================================================

@router.get("/live", response_model=LiveTradingResponse)
def live_trading_overview():
    desk = get_trading_desk()
    desk.check_account()
    return desk.snapshot()


@router.post("/live/orders", status_code=201)
def place_live_order(body: LiveOrderRequest):
    signal = _fetch("Signal", body.signal_id)
    desk = get_trading_desk()
    order = desk.place_order_from_signal(
        signal,
        quantity=body.quantity,
        order_type=body.order_type,
        limit_price=body.limit_price,
    )
    if order is None:
        raise HTTPException(status_code=502, detail=desk.error or "Failed to place order")
    return {"order": order, **desk.snapshot()}


@router.post("/live/positions/{symbol}/close", response_model=LiveTradingResponse)
def close_live_position(symbol: str):
    desk = get_trading_desk()
    if not desk.close_position(symbol.upper()):
        raise HTTPException(status_code=502, detail=desk.error or "Failed to close position")
    return desk.snapshot()


# ============================================================================
# Trade Journal Endpoints
# ============================================================================

@router.get("/trades")
def list_trades(status: Optional[str] = Query(None, pattern="^(open|closed)$")):
    trades = get_gateway().entities.Trade.list(sort="-created_date")
    if status:
        trades = [t for t in trades if t.get("status") == status]
    return {"trades": trades, "total_count": len(trades)}


@router.get("/trades/summary")
def trades_summary():
    return journal_summary(get_gateway().entities.Trade.list())


@router.post("/trades", status_code=201)
def create_trade(body: TradeCreateRequest):
    return record_trade(get_gateway(), body.model_dump(mode="json", exclude_none=True))


@router.post("/trades/{trade_id}/close")
def close_trade_endpoint(trade_id: str, body: TradeCloseRequest):
    trade = _fetch("Trade", trade_id)
    return close_trade(get_gateway(), trade, body.exit_price, commission=body.commission, notes=body.notes)


# ============================================================================
# Watchlist Endpoints
# ============================================================================

@router.get("/watchlist")
def list_watchlist():
    assets = get_watchlist_monitor().list_assets()
    return {"assets": assets, "total_count": len(assets)}


@router.post("/watchlist", status_code=201)
def add_watchlist_asset(body: WatchlistAssetRequest):
    return get_watchlist_monitor().add_asset(body.symbol, body.asset_type.value, body.name)


@router.delete("/watchlist/{asset_id}", response_model=MessageResponse)
def remove_watchlist_asset(asset_id: str):
    _fetch("WatchlistAsset", asset_id)
    get_watchlist_monitor().remove_asset(asset_id)
    return MessageResponse(message=f"Asset {asset_id} removed")


@router.get("/watchlist/quotes", response_model=QuotesResponse)
def watchlist_quotes(refresh: bool = True):
    monitor = get_watchlist_monitor()
    return QuotesResponse(quotes=monitor.refresh() if refresh else monitor.snapshot())


# ============================================================================
# Performance Endpoints
# ============================================================================

@router.get("/performance")
def performance_summary():
    gateway = get_gateway()
    return performance_overview(gateway.entities.Backtest.list(), gateway.entities.Trade.list())


# ============================================================================
# Admin Endpoints
# ============================================================================

@router.get("/admin/users")
def admin_list_users():
    users: List[Dict[str, Any]] = AdminConsole(get_session()).list_users()
    return {"users": users, "total_count": len(users)}


@router.post("/admin/welcome-emails", response_model=WelcomeEmailResponse)
def admin_send_welcome_emails(body: WelcomeEmailRequest):
    results = AdminConsole(get_session()).send_welcome_emails(body.user_ids)
    return WelcomeEmailResponse(results=results)
