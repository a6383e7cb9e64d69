"""
Funding flow.
ACH bank relationships and deposit/withdrawal transfers.
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.polling import PeriodicTask, TaskGroup, TaskHandle, schedule_once
from workflows.brokerage import brokerage
from workflows.errors import BrokerageError, ValidationError

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], TaskHandle]

TRANSFER_DIRECTIONS = ("INCOMING", "OUTGOING")
TRANSFER_HISTORY_LIMIT = 50


def _format_amount(amount: float) -> str:
    return f"{amount:g}" if float(amount).is_integer() else f"{amount:.2f}"


class FundingFlow:
    """
    Funding screen state.

    Remote errors are recorded on ``error`` and leave the loaded data as it
    was. Mutations schedule a reload after ``settle_delay`` so the brokerage
    has time to reflect them.
    """

    def __init__(
        self,
        gateway: Gateway,
        settle_delay: float = 2.0,
        poll_interval: float = 30.0,
        scheduler: Scheduler = schedule_once,
    ):
        self.gateway = gateway
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self._scheduler = scheduler
        self._tasks = TaskGroup()
        self._poller: Optional[PeriodicTask] = None
        self._lock = threading.RLock()

        self.relationships: List[Dict[str, Any]] = []
        self.transfers: List[Dict[str, Any]] = []
        self.error: Optional[str] = None
        self.success: Optional[str] = None
        self.loading = False
        # Bumped by close(); loads started before it discard their results.
        self._generation = 0

    def _record_error(self, message: str) -> None:
        with self._lock:
            self.error = message

    def load(self) -> bool:
        """Fetch relationships then transfers; returns False on failure."""
        with self._lock:
            self.loading = True
            generation = self._generation
        try:
            relationships = brokerage(self.gateway, "getACHRelationships").get("data") or []
            transfers = brokerage(self.gateway, "getTransfers", limit=TRANSFER_HISTORY_LIMIT).get("data") or []
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Error loading funding data: %s", exc)
            with self._lock:
                if generation == self._generation:
                    self.error = str(exc)
            return False
        finally:
            with self._lock:
                self.loading = False
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding funding data fetched before close")
                return False
            self.relationships = list(relationships)
            self.transfers = list(transfers)
        return True

    def approved_relationships(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [r for r in self.relationships if r.get("status") == "APPROVED"]

    def can_transfer(self) -> bool:
        return len(self.approved_relationships()) > 0

    def _schedule_reload(self) -> None:
        self._tasks.add(self._scheduler(self.settle_delay, self.load))

    def request_transfer(self, relationship_id: str, amount: Any, direction: str) -> Optional[Dict[str, Any]]:
        """
        Start a deposit (INCOMING) or withdrawal (OUTGOING).

        Raises:
            ValidationError: bad amount, direction or relationship
        """
        try:
            value = float(amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Transfer amount must be a number") from exc
        if value <= 0:
            raise ValidationError("Transfer amount must be positive")
        direction = str(direction or "").upper()
        if direction not in TRANSFER_DIRECTIONS:
            raise ValidationError("Transfer direction must be INCOMING or OUTGOING")
        if relationship_id not in {r.get("id") for r in self.approved_relationships()}:
            raise ValidationError("Transfers require an approved bank account")

        with self._lock:
            self.error = None
            self.success = None
        try:
            response = brokerage(
                self.gateway,
                "createTransfer",
                relationship_id=relationship_id,
                amount=value,
                direction=direction,
            )
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Transfer error: %s", exc)
            self._record_error(str(exc) or "Transfer failed")
            return None

        transfer = response.get("data") or {}
        kind = "Deposit" if direction == "INCOMING" else "Withdrawal"
        with self._lock:
            self.success = (
                f"{kind} of ${_format_amount(value)} initiated successfully! Status: {transfer.get('status')}"
            )
        logger.info("%s %s of %.2f submitted (%s)", kind, transfer.get("id"), value, transfer.get("status"))
        self._schedule_reload()
        return transfer

    def link_bank(
        self,
        account_owner_name: str,
        bank_account_number: str,
        bank_routing_number: str,
        bank_account_type: str = "CHECKING",
        nickname: str = "",
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            self.error = None
            self.success = None
        try:
            response = brokerage(
                self.gateway,
                "createACHRelationship",
                account_owner_name=account_owner_name,
                bank_account_type=bank_account_type or "CHECKING",
                bank_account_number=bank_account_number,
                bank_routing_number=bank_routing_number,
                nickname=nickname,
            )
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Error linking bank account: %s", exc)
            self._record_error(str(exc) or "Failed to link bank account")
            return None
        with self._lock:
            self.success = "Bank account linked successfully! Approval typically takes about 1 minute."
        self._schedule_reload()
        return response.get("data")

    def unlink_bank(self, relationship_id: str) -> bool:
        try:
            brokerage(self.gateway, "deleteACHRelationship", relationship_id=relationship_id)
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Error removing bank account: %s", exc)
            self._record_error("Failed to remove bank account")
            return False
        self._schedule_reload()
        return True

    def dismiss_error(self) -> None:
        with self._lock:
            self.error = None

    def start_polling(self) -> TaskHandle:
        if self._poller is None:
            self._poller = PeriodicTask("funding-refresh", self.poll_interval, self.load)
        return self._tasks.add(self._poller.start())

    def close(self) -> int:
        """Cancel polling and pending reloads; loads already in flight are discarded."""
        with self._lock:
            self._generation += 1
        return self._tasks.cancel_all()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "relationships": list(self.relationships),
                "transfers": list(self.transfers),
                "can_transfer": any(r.get("status") == "APPROVED" for r in self.relationships),
                "error": self.error,
                "success": self.success,
            }
