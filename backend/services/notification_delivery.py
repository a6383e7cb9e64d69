"""
Notification delivery service.
SMTP transport behind the ``sendWelcomeEmail`` function in local gateway mode.
"""

from __future__ import annotations

import re
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

from config.settings import Settings, get_settings

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

WELCOME_SUBJECT = "Welcome to QuantPilot"


def build_welcome_body(to_name: str) -> str:
    name = (to_name or "").strip() or "trader"
    return (
        f"Hi {name},\n\n"
        "Your QuantPilot account is ready. Create a strategy, run a backtest, "
        "and review AI-generated signals from your dashboard.\n\n"
        "Happy trading,\nThe QuantPilot team\n"
    )


class EmailDeliveryService:
    """Sends transactional email over SMTP."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def send_welcome_email(self, to_email: str, to_name: str = "") -> str:
        """Send the welcome email and return a confirmation message."""
        recipient = (to_email or "").strip()
        if not _EMAIL_RE.match(recipient):
            raise RuntimeError(f"Invalid recipient email address: {to_email!r}")
        self._send_email(recipient=recipient, subject=WELCOME_SUBJECT, body=build_welcome_body(to_name))
        return f"Email sent to {recipient}"

    def handle_welcome_email(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """``sendWelcomeEmail`` function handler."""
        try:
            message = self.send_welcome_email(
                to_email=str(payload.get("to_email") or ""),
                to_name=str(payload.get("to_name") or ""),
            )
        except RuntimeError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "message": message}

    def _send_email(self, recipient: str, subject: str, body: str) -> None:
        """Send via SMTP."""
        smtp_host = (self.settings.smtp_host or "").strip()
        smtp_username = (self.settings.smtp_username or "").strip()
        smtp_password = (self.settings.smtp_password or "").strip()
        from_email = (self.settings.smtp_from_email or "").strip()

        if not smtp_host:
            raise RuntimeError("SMTP host is not configured (QUANTPILOT_SMTP_HOST)")
        if not from_email:
            raise RuntimeError("SMTP from address is not configured (QUANTPILOT_SMTP_FROM_EMAIL)")
        if not smtp_username or not smtp_password:
            raise RuntimeError("SMTP credentials are not configured (QUANTPILOT_SMTP_USERNAME/PASSWORD)")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = from_email
        message["To"] = recipient
        message.set_content(body)

        timeout = max(1, int(self.settings.smtp_timeout_seconds))
        port = int(self.settings.smtp_port)
        use_ssl = bool(self.settings.smtp_use_ssl)
        use_tls = bool(self.settings.smtp_use_tls)

        smtp_client: Optional[smtplib.SMTP] = None
        try:
            if use_ssl:
                smtp_client = smtplib.SMTP_SSL(smtp_host, port, timeout=timeout)
            else:
                smtp_client = smtplib.SMTP(smtp_host, port, timeout=timeout)
            smtp_client.ehlo()
            if (not use_ssl) and use_tls:
                smtp_client.starttls()
                smtp_client.ehlo()
            smtp_client.login(smtp_username, smtp_password)
            smtp_client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise RuntimeError(f"SMTP delivery failed: {exc}") from exc
        finally:
            if smtp_client is not None:
                try:
                    smtp_client.quit()
                except (smtplib.SMTPException, OSError):
                    pass
