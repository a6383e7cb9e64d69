"""
Live trading desk.
Account snapshot, signal-driven order placement and position closing.
"""

from typing import Any, Dict, List, Optional
import logging
import threading

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from workflows.brokerage import TRADABLE_STATUSES, brokerage, trading
from workflows.errors import BrokerageError

logger = logging.getLogger(__name__)

RECENT_ORDER_LIMIT = 20


def order_side(action: Optional[str]) -> str:
    """``buy`` for any buy-side action (``buy``, ``buy_to_open``), else ``sell``."""
    return "buy" if "buy" in str(action or "").lower() else "sell"


class LiveTradingDesk:
    """
    Live execution screen state.

    Errors are recorded on ``error`` and never raised to the caller.
    """

    def __init__(self, gateway: Gateway):
        self.gateway = gateway
        self._lock = threading.RLock()
        self.has_account = False
        self.account: Optional[Dict[str, Any]] = None
        self.positions: List[Dict[str, Any]] = []
        self.orders: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    def _fail(self, message: str) -> None:
        logger.error(message)
        with self._lock:
            self.error = message

    def check_account(self) -> bool:
        """Gate on an approved/active brokerage account, loading data when present."""
        try:
            response = brokerage(self.gateway, "getAccountStatus")
        except (RemoteCallError, BrokerageError) as exc:
            self._fail(f"Failed to check brokerage account: {exc}")
            return False
        has_account = bool(response.get("has_account")) and response.get("status") in TRADABLE_STATUSES
        with self._lock:
            self.has_account = has_account
        if has_account:
            self.load()
        return has_account

    def load(self) -> bool:
        try:
            account = trading(self.gateway, "getAccount").get("data")
            positions = trading(self.gateway, "getPositions").get("data") or []
            orders = trading(self.gateway, "getOrders", status="all", limit=RECENT_ORDER_LIMIT).get("data") or []
        except (RemoteCallError, BrokerageError) as exc:
            self._fail(f"Failed to load brokerage account data: {exc}")
            return False
        with self._lock:
            self.account = account
            self.positions = list(positions)
            self.orders = list(orders)
        return True

    def place_order_from_signal(
        self,
        signal: Dict[str, Any],
        quantity: float,
        order_type: str = "market",
        limit_price: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Submit a day order for a signal.

        On success the signal is marked executed and account data reloads.
        """
        order = {
            "symbol": signal.get("symbol"),
            "quantity": quantity,
            "side": order_side(signal.get("action")),
            "type": order_type,
            "time_in_force": "day",
        }
        if order_type == "limit":
            order["limit_price"] = limit_price

        with self._lock:
            self.error = None
        try:
            placed = trading(self.gateway, "placeOrder", **order).get("data") or {}
        except (RemoteCallError, BrokerageError) as exc:
            self._fail(f"Failed to place order: {exc}")
            return None
        logger.info("Order %s placed: %s %s x%s", placed.get("id"), order["side"], order["symbol"], quantity)

        if signal.get("id"):
            try:
                self.gateway.entities.Signal.update(signal["id"], {"status": "executed"})
            except RemoteCallError as exc:
                self._fail(f"Order placed but signal could not be updated: {exc}")
        self.load()
        return placed

    def close_position(self, symbol: str) -> bool:
        try:
            trading(self.gateway, "closePosition", symbol=symbol)
        except (RemoteCallError, BrokerageError) as exc:
            self._fail(f"Failed to close position: {exc}")
            return False
        self.load()
        return True

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "has_account": self.has_account,
                "account": self.account,
                "positions": list(self.positions),
                "orders": list(self.orders),
                "error": self.error,
            }
