"""
Session context.

Explicit object carrying the gateway and current user into workflows.
Owns the scheduled tasks started on the session's behalf so logout and
shutdown can cancel them together.
"""
from typing import Any, Dict, Optional
import logging
import threading

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.polling import TaskGroup, TaskHandle
from workflows.errors import PermissionDeniedError

logger = logging.getLogger(__name__)


class SessionContext:
    """Authenticated session over one gateway."""

    def __init__(self, gateway: Gateway):
        self.gateway = gateway
        self.user: Optional[Dict[str, Any]] = None
        self.authenticated = False
        self._tasks = TaskGroup()
        self._lock = threading.Lock()

    def start(self) -> bool:
        """Resolve authentication state and the current user."""
        try:
            authenticated = self.gateway.auth.is_authenticated()
            user = self.gateway.auth.me() if authenticated else None
        except RemoteCallError as exc:
            logger.warning("Session start failed: %s", exc)
            authenticated, user = False, None
        with self._lock:
            self.authenticated = authenticated
            self.user = user
        if authenticated:
            logger.info("Session started for %s", (user or {}).get("email"))
        return authenticated

    def refresh_user(self) -> Optional[Dict[str, Any]]:
        user = self.gateway.auth.me()
        with self._lock:
            self.user = user
            self.authenticated = True
        return user

    def login_url(self, return_url: str) -> str:
        return self.gateway.auth.redirect_to_login(return_url)

    def register_task(self, handle: TaskHandle) -> TaskHandle:
        return self._tasks.add(handle)

    @property
    def pending_tasks(self) -> int:
        return self._tasks.pending()

    def require_admin(self) -> Dict[str, Any]:
        with self._lock:
            user = self.user
        if not user or user.get("role") != "admin":
            raise PermissionDeniedError("Admin access required")
        return user

    def stop(self, logout: bool = True) -> int:
        """Cancel registered tasks and optionally log out; returns cancelled count."""
        cancelled = self._tasks.cancel_all()
        if logout:
            try:
                self.gateway.auth.logout()
            except RemoteCallError as exc:
                logger.warning("Logout failed: %s", exc)
        with self._lock:
            self.authenticated = False
            self.user = None
        return cancelled
