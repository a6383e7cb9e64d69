"""
Watchlist and market data monitor.
"""
from typing import Any, Dict, List, Optional
import logging
import threading

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.polling import PeriodicTask, TaskHandle
from workflows.errors import ValidationError

logger = logging.getLogger(__name__)

MARKET_DATA_FUNCTION = "getMarketData"
ASSET_TYPES = ("stock", "option", "future", "crypto", "etf")


class WatchlistMonitor:
    """
    Watchlist CRUD plus a polled quote map keyed by symbol.

    Failed refreshes are logged and keep the previous quotes.
    """

    def __init__(self, gateway: Gateway, poll_interval: float = 60.0):
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.quotes: Dict[str, Dict[str, Any]] = {}
        self._poller: Optional[PeriodicTask] = None
        self._lock = threading.Lock()

    def list_assets(self) -> List[Dict[str, Any]]:
        return self.gateway.entities.WatchlistAsset.list(sort="-created_date")

    def add_asset(self, symbol: str, asset_type: str = "stock", name: Optional[str] = None) -> Dict[str, Any]:
        ticker = (symbol or "").strip().upper()
        if not ticker:
            raise ValidationError("Symbol is required")
        if asset_type not in ASSET_TYPES:
            raise ValidationError(f"Unsupported asset type: {asset_type}")
        return self.gateway.entities.WatchlistAsset.create({
            "symbol": ticker,
            "asset_type": asset_type,
            "name": name or ticker,
        })

    def remove_asset(self, asset_id: str) -> None:
        self.gateway.entities.WatchlistAsset.delete(asset_id)

    def refresh(self) -> Dict[str, Dict[str, Any]]:
        """Fetch quotes for every watched symbol; returns the current map."""
        try:
            symbols = [a.get("symbol") for a in self.list_assets() if a.get("symbol")]
        except RemoteCallError as exc:
            logger.error("Error loading watchlist: %s", exc)
            return self.snapshot()
        if not symbols:
            with self._lock:
                self.quotes = {}
            return {}

        try:
            result = self.gateway.functions.invoke(MARKET_DATA_FUNCTION, {"symbols": symbols})
        except RemoteCallError as exc:
            logger.error("Error fetching market data: %s", exc)
            return self.snapshot()
        if not result.success or not isinstance(result.data.get("data"), list):
            logger.error("Market data request failed: %s", result.error or "no data")
            return self.snapshot()

        quotes = {item["symbol"]: item for item in result.data["data"] if item.get("symbol")}
        with self._lock:
            self.quotes = quotes
        return dict(quotes)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return dict(self.quotes)

    def start(self) -> TaskHandle:
        if self._poller is None:
            self._poller = PeriodicTask("market-data", self.poll_interval, self.refresh)
        return self._poller.start()

    def is_running(self) -> bool:
        return self._poller is not None and self._poller.is_running()

    def stop(self, wait: bool = False) -> bool:
        if self._poller is None:
            return False
        return self._poller.cancel(wait=wait)
