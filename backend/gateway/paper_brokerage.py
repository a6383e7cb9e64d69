"""
Paper Brokerage.

In-memory stand-in for the brokerage, market-data functions reached through
``functions.invoke`` when the gateway runs in local mode. Simulates account
opening, ACH funding and order fills without real money.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import logging
import threading

logger = logging.getLogger(__name__)

ACCOUNT_REQUIRED_FIELDS = (
    "given_name",
    "family_name",
    "date_of_birth",
    "phone_number",
    "street_address",
    "city",
    "state",
    "postal_code",
    "tax_id",
)
TRADABLE_ACCOUNT_STATUSES = {"APPROVED", "ACTIVE"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ok(data: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    return payload


def _fail(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}


class PaperBrokerage:
    """
    Paper brokerage implementation.

    Handlers return the ``{success, data, error}`` envelope the remote
    brokerage functions use, so workflows cannot tell the two apart.
    """

    def __init__(self, starting_cash: float = 0.0, auto_approve: bool = True):
        """
        Initialize paper brokerage.

        Args:
            starting_cash: Cash credited when an account is opened
            auto_approve: Approve accounts and bank links immediately
        """
        self.starting_cash = float(starting_cash)
        self.auto_approve = auto_approve
        self.account: Optional[Dict[str, Any]] = None
        self.cash = 0.0
        self.ach_relationships: Dict[str, Dict[str, Any]] = {}
        self.transfers: List[Dict[str, Any]] = []
        self.positions: Dict[str, Dict[str, Any]] = {}
        self.orders: List[Dict[str, Any]] = []
        self._counter = 0
        self._lock = threading.RLock()

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    # ------------------------------------------------------------------
    # Function entry points
    # ------------------------------------------------------------------

    def handle_brokerage(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """``alpacaBrokerage`` function: account opening and funding."""
        action = str(payload.get("action") or "")
        handlers = {
            "getAccountStatus": self._get_account_status,
            "createAccount": self._create_account,
            "getACHRelationships": self._get_ach_relationships,
            "createACHRelationship": self._create_ach_relationship,
            "deleteACHRelationship": self._delete_ach_relationship,
            "getTransfers": self._get_transfers,
            "createTransfer": self._create_transfer,
        }
        handler = handlers.get(action)
        if handler is None:
            return _fail(f"Unknown brokerage action: {action or '<missing>'}")
        with self._lock:
            return handler(payload)

    def handle_trading(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """``alpacaTrading`` function: account, positions and orders."""
        action = str(payload.get("action") or "")
        handlers = {
            "getAccount": self._get_account,
            "getPositions": self._get_positions,
            "getOrders": self._get_orders,
            "placeOrder": self._place_order,
            "closePosition": self._close_position,
        }
        handler = handlers.get(action)
        if handler is None:
            return _fail(f"Unknown trading action: {action or '<missing>'}")
        with self._lock:
            if not self._is_tradable():
                return _fail("Brokerage account is not approved for trading")
            return handler(payload)

    def handle_market_data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """``getMarketData`` function."""
        symbols = payload.get("symbols") or []
        if isinstance(symbols, str):
            symbols = [symbols]
        quotes = []
        for raw in symbols:
            symbol = str(raw).strip().upper()
            if symbol:
                quotes.append(self.quote(symbol))
        return _ok(quotes)

    # ------------------------------------------------------------------
    # Account opening and funding
    # ------------------------------------------------------------------

    def _get_account_status(self, _payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.account is None:
            return {"success": True, "has_account": False}
        return {
            "success": True,
            "has_account": True,
            "status": self.account["status"],
            "account_id": self.account["id"],
        }

    def _create_account(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        missing = [name for name in ACCOUNT_REQUIRED_FIELDS if not str(payload.get(name) or "").strip()]
        if missing:
            return _fail(f"Missing required fields: {', '.join(missing)}")
        if self.account is not None:
            return _ok({"id": self.account["id"], "status": self.account["status"]})

        self.account = {
            "id": self._next_id("acct"),
            "status": "APPROVED" if self.auto_approve else "SUBMITTED",
            "given_name": payload.get("given_name"),
            "family_name": payload.get("family_name"),
            "created_at": _now_iso(),
        }
        self.cash = self.starting_cash
        logger.info("Paper brokerage account %s opened (%s)", self.account["id"], self.account["status"])
        return _ok({"id": self.account["id"], "status": self.account["status"]})

    def _get_ach_relationships(self, _payload: Dict[str, Any]) -> Dict[str, Any]:
        return _ok(list(self.ach_relationships.values()))

    def _create_ach_relationship(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.account is None:
            return _fail("Open a brokerage account before linking a bank")
        account_number = str(payload.get("bank_account_number") or "").strip()
        routing_number = str(payload.get("bank_routing_number") or "").strip()
        owner = str(payload.get("account_owner_name") or "").strip()
        if not owner or not account_number or not routing_number:
            return _fail("Account owner, account number and routing number are required")
        relationship = {
            "id": self._next_id("ach"),
            "account_owner_name": owner,
            "bank_account_type": payload.get("bank_account_type") or "CHECKING",
            "bank_account_number": f"****{account_number[-4:]}",
            "bank_routing_number": routing_number,
            "nickname": payload.get("nickname") or "",
            "status": "APPROVED" if self.auto_approve else "QUEUED",
            "created_at": _now_iso(),
        }
        self.ach_relationships[relationship["id"]] = relationship
        return _ok(relationship)

    def _delete_ach_relationship(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        relationship_id = str(payload.get("relationship_id") or "")
        if self.ach_relationships.pop(relationship_id, None) is None:
            return _fail(f"ACH relationship not found: {relationship_id}")
        return _ok({"id": relationship_id})

    def _get_transfers(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        limit = int(payload.get("limit") or 50)
        newest_first = list(reversed(self.transfers))
        return _ok(newest_first[:max(0, limit)])

    def _create_transfer(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        relationship = self.ach_relationships.get(str(payload.get("relationship_id") or ""))
        if relationship is None:
            return _fail("ACH relationship not found")
        if relationship["status"] != "APPROVED":
            return _fail("ACH relationship is not approved")
        try:
            amount = float(payload.get("amount"))
        except (TypeError, ValueError):
            return _fail("Transfer amount must be a number")
        if amount <= 0:
            return _fail("Transfer amount must be positive")
        direction = str(payload.get("direction") or "").upper()
        if direction not in {"INCOMING", "OUTGOING"}:
            return _fail("Transfer direction must be INCOMING or OUTGOING")
        if direction == "OUTGOING" and amount > self.cash:
            return _fail("Insufficient cash for withdrawal")

        status = "COMPLETE" if self.auto_approve else "QUEUED"
        if status == "COMPLETE":
            self.cash += amount if direction == "INCOMING" else -amount
        transfer = {
            "id": self._next_id("xfer"),
            "relationship_id": relationship["id"],
            "amount": amount,
            "direction": direction,
            "status": status,
            "created_at": _now_iso(),
        }
        self.transfers.append(transfer)
        return _ok(transfer)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def _is_tradable(self) -> bool:
        return self.account is not None and self.account["status"] in TRADABLE_ACCOUNT_STATUSES

    def _get_account(self, _payload: Dict[str, Any]) -> Dict[str, Any]:
        positions_value = 0.0
        for symbol, position in self.positions.items():
            price = self.quote(symbol)["price"]
            self._mark_position(position, price)
            positions_value += position["market_value"]
        return _ok({
            "id": self.account["id"],
            "status": self.account["status"],
            "cash": self.cash,
            "equity": self.cash + positions_value,
            "buying_power": max(0.0, self.cash),
            "portfolio_value": self.cash + positions_value,
        })

    def _get_positions(self, _payload: Dict[str, Any]) -> Dict[str, Any]:
        for symbol, position in self.positions.items():
            self._mark_position(position, self.quote(symbol)["price"])
        return _ok(list(self.positions.values()))

    def _get_orders(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        status = str(payload.get("status") or "all").lower()
        limit = int(payload.get("limit") or 50)
        orders = list(reversed(self.orders))
        if status not in {"", "all"}:
            if status == "open":
                orders = [o for o in orders if o["status"] in {"new", "accepted"}]
            elif status == "closed":
                orders = [o for o in orders if o["status"] not in {"new", "accepted"}]
            else:
                orders = [o for o in orders if o["status"] == status]
        return _ok(orders[:max(0, limit)])

    def _place_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        symbol = str(payload.get("symbol") or "").strip().upper()
        side = str(payload.get("side") or "").lower()
        order_type = str(payload.get("type") or "market").lower()
        try:
            quantity = float(payload.get("quantity"))
        except (TypeError, ValueError):
            return _fail("Order quantity must be a number")
        if not symbol:
            return _fail("Order symbol is required")
        if side not in {"buy", "sell"}:
            return _fail("Order side must be buy or sell")
        if quantity <= 0:
            return _fail("Order quantity must be positive")
        if order_type not in {"market", "limit"}:
            return _fail(f"Unsupported order type: {order_type}")

        price = self.quote(symbol)["price"]
        limit_price = payload.get("limit_price")
        fill = order_type == "market"
        if order_type == "limit":
            try:
                limit_price = float(limit_price)
            except (TypeError, ValueError):
                return _fail("Limit orders require a numeric limit_price")
            fill = (side == "buy" and price <= limit_price) or (side == "sell" and price >= limit_price)

        if fill and side == "buy" and quantity * price > self.cash:
            return _fail("Insufficient buying power")
        if fill and side == "sell":
            held = float(self.positions.get(symbol, {}).get("qty", 0.0))
            if quantity > held:
                return _fail(f"Insufficient position in {symbol}")

        order = {
            "id": self._next_id("order"),
            "symbol": symbol,
            "side": side,
            "type": order_type,
            "qty": quantity,
            "limit_price": limit_price,
            "time_in_force": payload.get("time_in_force") or "day",
            "status": "filled" if fill else "new",
            "filled_avg_price": price if fill else None,
            "submitted_at": _now_iso(),
        }
        if fill:
            self._apply_fill(symbol, side, quantity, price)
        self.orders.append(order)
        return _ok(order)

    def _close_position(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        symbol = str(payload.get("symbol") or "").strip().upper()
        position = self.positions.get(symbol)
        if position is None:
            return _fail(f"No open position in {symbol}")
        return self._place_order({"symbol": symbol, "side": "sell", "type": "market", "quantity": position["qty"]})

    def _apply_fill(self, symbol: str, side: str, quantity: float, price: float) -> None:
        existing = self.positions.get(symbol)
        existing_qty = float(existing["qty"]) if existing else 0.0
        existing_avg = float(existing["avg_entry_price"]) if existing else price
        if side == "buy":
            self.cash -= quantity * price
            new_qty = existing_qty + quantity
            new_avg = ((existing_qty * existing_avg) + (quantity * price)) / new_qty
            position = {"symbol": symbol, "qty": new_qty, "side": "long", "avg_entry_price": new_avg}
            self._mark_position(position, price)
            self.positions[symbol] = position
        else:
            self.cash += quantity * price
            new_qty = existing_qty - quantity
            if new_qty <= 0:
                self.positions.pop(symbol, None)
            else:
                existing["qty"] = new_qty
                self._mark_position(existing, price)

    @staticmethod
    def _mark_position(position: Dict[str, Any], current_price: float) -> None:
        quantity = float(position.get("qty", 0.0))
        avg_entry_price = float(position.get("avg_entry_price", 0.0))
        market_value = quantity * current_price
        cost_basis = quantity * avg_entry_price
        position.update({
            "current_price": current_price,
            "market_value": market_value,
            "cost_basis": cost_basis,
            "unrealized_pl": market_value - cost_basis,
            "unrealized_plpc": ((current_price - avg_entry_price) / avg_entry_price) if avg_entry_price > 0 else 0.0,
        })

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def quote(self, symbol: str) -> Dict[str, Any]:
        """Simulated quote with a deterministic baseline and a slow drift."""
        symbol = symbol.upper()
        base = self._baseline_price(symbol)
        bucket = int(datetime.now(timezone.utc).timestamp() // 30)
        drift_seed = (sum(ord(ch) for ch in symbol) + bucket) % 17 - 8
        price = max(1.0, round(base * (1.0 + drift_seed / 1000.0), 2))
        change = round(price - base, 2)
        return {
            "symbol": symbol,
            "price": price,
            "change": change,
            "changePercent": round(change / base * 100.0, 2) if base else 0.0,
            "volume": self._simulated_volume(symbol),
        }

    @staticmethod
    def _baseline_price(symbol: str) -> float:
        """Deterministic baseline from ticker string."""
        seed = sum((idx + 1) * ord(ch) for idx, ch in enumerate(symbol))
        # 25..425 baseline.
        return float((seed % 400) + 25)

    @staticmethod
    def _simulated_volume(symbol: str) -> int:
        return int(200_000 + (sum(ord(ch) for ch in symbol) % 2_500_000))
