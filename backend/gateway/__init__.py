"""
Remote gateway module.

Core components:
- Capability interfaces (entities, auth, functions, LLM)
- HTTP gateway for the remote platform
- Local gateway backed by the entity store and a paper brokerage
"""

from typing import Optional

from config.settings import Settings, get_settings
from gateway.base import Gateway, FunctionResult, EntityCollection, ENTITY_TYPES
from gateway.errors import RemoteCallError
from gateway.http_gateway import HttpGateway
from gateway.local_gateway import LocalGateway
from gateway.paper_brokerage import PaperBrokerage

__all__ = [
    "Gateway",
    "FunctionResult",
    "EntityCollection",
    "ENTITY_TYPES",
    "RemoteCallError",
    "HttpGateway",
    "LocalGateway",
    "PaperBrokerage",
    "build_gateway",
]


def build_gateway(settings: Optional[Settings] = None) -> Gateway:
    """
    Build the gateway selected by configuration.

    Raises:
        RuntimeError: remote mode without app id/token configured
    """
    settings = settings or get_settings()
    if settings.gateway_mode == "remote":
        if not (settings.gateway_app_id and settings.gateway_token):
            raise RuntimeError(
                "Remote gateway mode requires QUANTPILOT_APP_ID and QUANTPILOT_GATEWAY_TOKEN"
            )
        return HttpGateway(
            base_url=settings.gateway_base_url,
            app_id=settings.gateway_app_id,
            token=settings.gateway_token,
            timeout=settings.gateway_timeout_seconds,
            login_url=settings.login_url,
        )

    from storage.database import SessionLocal
    from services.notification_delivery import EmailDeliveryService

    return LocalGateway(
        session_factory=SessionLocal,
        brokerage=PaperBrokerage(
            starting_cash=settings.paper_starting_cash,
            auto_approve=settings.paper_auto_approve,
        ),
        email_handler=EmailDeliveryService(settings).handle_welcome_email,
    )
