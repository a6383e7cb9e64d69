"""
Admin console.
"""
from typing import Any, Dict, Iterable, List
import logging

from gateway.errors import RemoteCallError

logger = logging.getLogger(__name__)

WELCOME_EMAIL_FUNCTION = "sendWelcomeEmail"


class AdminConsole:
    """Admin-only operations; every call checks the ``SessionContext`` role first."""

    def __init__(self, session):
        self.session = session

    @property
    def gateway(self):
        return self.session.gateway

    def list_users(self) -> List[Dict[str, Any]]:
        self.session.require_admin()
        return self.gateway.entities.User.list(sort="-created_date")

    def send_welcome_emails(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Send welcome emails one at a time.

        Unknown ids are skipped. Each result is
        ``{email, name, success, message}``.
        """
        self.session.require_admin()
        users = {u.get("id"): u for u in self.gateway.entities.User.list()}
        results: List[Dict[str, Any]] = []
        for user_id in user_ids:
            user = users.get(user_id)
            if user is None:
                continue
            email, name = user.get("email"), user.get("full_name")
            try:
                response = self.gateway.functions.invoke(
                    WELCOME_EMAIL_FUNCTION, {"to_email": email, "to_name": name}
                ).data
            except RemoteCallError as exc:
                logger.error("Error sending email to %s: %s", email, exc)
                results.append({"email": email, "name": name, "success": False, "message": str(exc)})
                continue
            if response.get("error") or not response.get("success"):
                message = (
                    response.get("error") or response.get("details") or response.get("message")
                    or "Unknown error occurred"
                )
                results.append({"email": email, "name": name, "success": False, "message": message})
            else:
                results.append({
                    "email": email,
                    "name": name,
                    "success": True,
                    "message": response.get("message") or "Email sent successfully",
                })
        logger.info("Welcome emails: %d sent, %d failed",
                    sum(1 for r in results if r["success"]), sum(1 for r in results if not r["success"]))
        return results
