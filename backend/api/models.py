"""
API Data Models and Contracts.
Defines Pydantic models for request/response validation.
"""
from typing import Optional, List, Dict, Any, Literal, Union
from datetime import date
from enum import Enum
import re
from pydantic import BaseModel, Field, field_validator, model_validator


_SYMBOL_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")


def _clean_symbols(symbols: List[str]) -> List[str]:
    cleaned = []
    for symbol in symbols:
        clean = (symbol or "").strip().upper()
        if not clean:
            continue
        if not _SYMBOL_RE.match(clean):
            raise ValueError(f"Invalid symbol format: {symbol}")
        cleaned.append(clean)
    return cleaned


# ============================================================================
# Enums
# ============================================================================

class StrategyType(str, Enum):
    """Strategy family."""
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    BREAKOUT = "breakout"
    TREND_FOLLOWING = "trend_following"
    VOLATILITY = "volatility"
    CUSTOM = "custom"


class AssetType(str, Enum):
    """Tradable asset class."""
    STOCK = "stock"
    OPTION = "option"
    FUTURE = "future"
    CRYPTO = "crypto"
    ETF = "etf"


class TradeAction(str, Enum):
    """Signal/trade action."""
    BUY = "buy"
    SELL = "sell"
    BUY_TO_OPEN = "buy_to_open"
    SELL_TO_CLOSE = "sell_to_close"


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


# ============================================================================
# Strategy Models
# ============================================================================

class StrategyRules(BaseModel):
    """Entry/exit rules and sizing."""
    entry_conditions: str = Field("", description="Entry conditions", max_length=2000)
    exit_conditions: str = Field("", description="Exit conditions", max_length=2000)
    risk_per_trade: Optional[float] = Field(None, ge=0, le=100, description="Risk per trade (%)")
    max_position_size: Optional[float] = Field(None, ge=0, description="Max position size")


class StrategyCreateRequest(BaseModel):
    """Strategy creation request."""
    name: str = Field(..., description="Strategy name", min_length=1, max_length=100)
    description: Optional[str] = Field(None, description="Strategy description", max_length=1000)
    strategy_type: StrategyType = Field(StrategyType.CUSTOM, description="Strategy family")
    timeframe: Optional[str] = Field(None, description="Bar timeframe, e.g. 1hour or daily", max_length=20)
    asset_types: List[AssetType] = Field(default_factory=lambda: [AssetType.STOCK])
    indicators: List[str] = Field(default_factory=list)
    rules: StrategyRules = Field(default_factory=StrategyRules)
    is_active: bool = Field(True, description="Whether the strategy takes part in batch runs")


class StrategyUpdateRequest(BaseModel):
    """Strategy update request; only provided fields change."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    strategy_type: Optional[StrategyType] = None
    timeframe: Optional[str] = Field(None, max_length=20)
    asset_types: Optional[List[AssetType]] = None
    indicators: Optional[List[str]] = None
    rules: Optional[StrategyRules] = None
    is_active: Optional[bool] = None


# ============================================================================
# Backtest Models
# ============================================================================

class BacktestRunRequest(BaseModel):
    """Run a backtest for one strategy id or ``ALL`` active strategies."""
    strategy_id: str = Field(..., description="Strategy id or ALL", min_length=1)
    symbols: List[str] = Field(..., description="Symbols to test")
    start_date: date
    end_date: date
    initial_capital: float = Field(10000.0, gt=0, description="Starting capital")

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, symbols: List[str]) -> List[str]:
        if len(symbols) > 50:
            raise ValueError("symbols cannot exceed 50 entries")
        return _clean_symbols(symbols)

    @property
    def run_all(self) -> bool:
        return self.strategy_id.strip().upper() == "ALL"


class FailedStrategyItem(BaseModel):
    name: str
    error: str


class BacktestRunResponse(BaseModel):
    """Single or batch backtest outcome."""
    backtests: List[Dict[str, Any]]
    failed: List[FailedStrategyItem] = Field(default_factory=list)
    warning: Optional[str] = None
    comparison: Optional[Dict[str, Any]] = None


# ============================================================================
# Signal Models
# ============================================================================

class SignalGenerateRequest(BaseModel):
    """Generate signals for the given strategies (default: active ones)."""
    strategy_ids: Optional[List[str]] = Field(None, description="Restrict to these strategies")
    limit: Optional[int] = Field(None, ge=1, le=10, description="Max strategies to use")


class SignalGenerateResponse(BaseModel):
    signals: List[Dict[str, Any]]
    failed: List[FailedStrategyItem] = Field(default_factory=list)


class SignalExecuteRequest(BaseModel):
    """Record a trade for a signal at the given price/quantity."""
    entry_price: Optional[float] = Field(None, gt=0)
    quantity: Optional[float] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# Discovery Models
# ============================================================================

class DiscoveryRequest(BaseModel):
    analysis_type: str = Field("momentum", min_length=1, max_length=100)
    focus_area: AssetType = AssetType.STOCK
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    auto_backtest: bool = True


class DiscoveryResponse(BaseModel):
    outcomes: List[Dict[str, Any]]


class DiscoverySaveRequest(BaseModel):
    """Persist one discovered draft."""
    draft: Dict[str, Any]

    @field_validator("draft")
    @classmethod
    def validate_draft(cls, draft: Dict[str, Any]) -> Dict[str, Any]:
        if not str(draft.get("name") or "").strip():
            raise ValueError("draft.name is required")
        return draft


# ============================================================================
# Onboarding / Funding Models
# ============================================================================

class PersonalInfoRequest(BaseModel):
    """Identity, contact and tax fields for account opening."""
    given_name: str = Field(..., min_length=1, max_length=100)
    family_name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: date
    phone_number: str = Field(..., min_length=7, max_length=20)
    street_address: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=50)
    postal_code: str = Field(..., min_length=3, max_length=12)
    tax_id: str = Field(..., min_length=4, max_length=20)
    tax_id_type: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, min_length=3, max_length=3)
    funding_source: Optional[str] = Field(None, max_length=50)

    def to_flow_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        payload["date_of_birth"] = self.date_of_birth.isoformat()
        return payload


class DisclosuresRequest(BaseModel):
    is_control_person: bool = False
    is_affiliated_exchange_or_finra: bool = False
    is_politically_exposed: bool = False
    immediate_family_exposed: bool = False


class OnboardingStatusResponse(BaseModel):
    state: str
    step: Optional[str] = None
    account_status: Optional[str] = None
    account_id: Optional[str] = None
    error: Optional[str] = None
    redirect_to: Optional[str] = None


class BankLinkRequest(BaseModel):
    account_owner_name: str = Field(..., min_length=1, max_length=100)
    bank_account_type: Literal["CHECKING", "SAVINGS"] = "CHECKING"
    bank_account_number: str = Field(..., min_length=4, max_length=17)
    bank_routing_number: str = Field(..., min_length=9, max_length=9)
    nickname: Optional[str] = Field(None, max_length=50)

    @field_validator("bank_account_number", "bank_routing_number")
    @classmethod
    def digits_only(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("must contain digits only")
        return value


class TransferRequest(BaseModel):
    relationship_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    direction: Literal["INCOMING", "OUTGOING"]


class FundingResponse(BaseModel):
    relationships: List[Dict[str, Any]]
    transfers: List[Dict[str, Any]]
    can_transfer: bool
    error: Optional[str] = None
    success: Optional[str] = None


# ============================================================================
# Live Trading Models
# ============================================================================

class LiveOrderRequest(BaseModel):
    """Place an order for a signal."""
    signal_id: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    order_type: Literal["market", "limit"] = "market"
    limit_price: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def require_limit_price(self) -> "LiveOrderRequest":
        if self.order_type == "limit" and self.limit_price is None:
            raise ValueError("limit_price is required for limit orders")
        return self


class LiveTradingResponse(BaseModel):
    has_account: bool
    account: Optional[Dict[str, Any]] = None
    positions: List[Dict[str, Any]] = Field(default_factory=list)
    orders: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


# ============================================================================
# Trade Journal Models
# ============================================================================

class TradeCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=10)
    asset_type: AssetType = AssetType.STOCK
    action: TradeAction
    entry_price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)
    strategy_id: Optional[str] = None
    stop_loss_price: Optional[float] = Field(None, gt=0)
    take_profit_price: Optional[float] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, symbol: str) -> str:
        cleaned = _clean_symbols([symbol])
        if not cleaned:
            raise ValueError("symbol is required")
        return cleaned[0]


class TradeCloseRequest(BaseModel):
    exit_price: float = Field(..., gt=0)
    commission: float = Field(0.0, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# Watchlist Models
# ============================================================================

class WatchlistAssetRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=10)
    asset_type: AssetType = AssetType.STOCK
    name: Optional[str] = Field(None, max_length=100)


class QuotesResponse(BaseModel):
    quotes: Dict[str, Dict[str, Any]]


# ============================================================================
# Admin Models
# ============================================================================

class WelcomeEmailRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


class WelcomeEmailResult(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    success: bool
    message: str


class WelcomeEmailResponse(BaseModel):
    results: List[WelcomeEmailResult]


class MessageResponse(BaseModel):
    """Generic acknowledgement."""
    success: bool = True
    message: Union[str, None] = None
