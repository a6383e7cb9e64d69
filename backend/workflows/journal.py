"""
Trade journal.
Manual trade entry, closing with realized P&L, and journal totals.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence
import logging

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.performance import live_trade_summary
from workflows.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)


def realized_pnl(action: Optional[str], entry_price: float, exit_price: float, quantity: float, commission: float = 0.0) -> float:
    """Buy-side actions profit when price rises; everything else when it falls."""
    if "buy" in str(action or "").lower():
        return (exit_price - entry_price) * quantity - commission
    return (entry_price - exit_price) * quantity - commission


def pnl_percentage(entry_price: float, exit_price: float) -> float:
    return (exit_price - entry_price) / entry_price * 100


def close_trade(
    gateway: Gateway,
    trade: Dict[str, Any],
    exit_price: float,
    commission: float = 0.0,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Close an open trade and persist its realized P&L.

    Raises:
        ValidationError: trade already closed or prices invalid
        PersistenceError: update failed
    """
    if trade.get("status") == "closed":
        raise ValidationError(f"Trade {trade.get('id')} is already closed")
    entry = float(trade.get("entry_price") or 0)
    if entry <= 0:
        raise ValidationError("Trade has no valid entry price")
    if exit_price is None or float(exit_price) <= 0:
        raise ValidationError("Exit price must be positive")

    exit_value = float(exit_price)
    fee = float(commission or 0)
    fields = {
        "exit_price": exit_value,
        "exit_date": datetime.now(timezone.utc).isoformat(),
        "commission": fee,
        "pnl": realized_pnl(trade.get("action"), entry, exit_value, float(trade.get("quantity") or 0), fee),
        "pnl_percentage": pnl_percentage(entry, exit_value),
        "status": "closed",
    }
    if notes is not None:
        fields["notes"] = notes
    try:
        updated = gateway.entities.Trade.update(trade["id"], fields)
    except RemoteCallError as exc:
        raise PersistenceError(f"Failed to close trade {trade.get('id')}: {exc}", cause=exc) from exc
    logger.info("Trade %s closed, pnl=%.2f", trade.get("id"), fields["pnl"])
    return updated


def record_trade(gateway: Gateway, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Create a manually entered open trade."""
    for name in ("symbol", "action", "entry_price", "quantity"):
        if fields.get(name) in (None, ""):
            raise ValidationError(f"Missing required field: {name}")
    record = dict(fields)
    record.setdefault("status", "open")
    record.setdefault("entry_date", datetime.now(timezone.utc).isoformat())
    try:
        return gateway.entities.Trade.create(record)
    except RemoteCallError as exc:
        raise PersistenceError(f"Failed to record trade: {exc}", cause=exc) from exc


def journal_summary(trades: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    stats = live_trade_summary(trades)
    return {
        "open_trades": stats["open_trades"],
        "closed_trades": stats["closed_trades"],
        "total_pnl": stats["total_pnl"],
        "winning_trades": stats["winning_trades"],
        "win_rate": stats["win_rate"],
        "avg_win": stats["avg_win"],
    }
