"""
Local Gateway.

In-process implementation of the Gateway interface for development and
tests:
- entities persist in the SQLAlchemy entity store
- functions dispatch to a registry (paper brokerage, market data, email)
- the LLM capability delegates to an injectable callable
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from gateway.base import (
    AuthCapability,
    EntityCollection,
    EntityNamespace,
    FunctionResult,
    FunctionsCapability,
    Gateway,
    IntegrationsNamespace,
    LLMCapability,
)
from gateway.errors import RemoteCallError
from gateway.paper_brokerage import PaperBrokerage
from storage.database import Base
from storage.repositories import EntityRepository

logger = logging.getLogger(__name__)

FunctionHandler = Callable[[Dict[str, Any]], Dict[str, Any]]
LLMHandler = Callable[[str, bool, Optional[Dict[str, Any]]], Dict[str, Any]]

DEFAULT_LOCAL_USER = {
    "id": "local-user",
    "email": "trader@localhost",
    "full_name": "Local Trader",
    "role": "admin",
}


class LocalEntityCollection(EntityCollection):
    """Entity CRUD against the SQLAlchemy entity store."""

    def __init__(self, session_factory: Callable[[], Session], entity_type: str):
        self._session_factory = session_factory
        self.entity_type = entity_type

    def _run(self, operation: str, fn: Callable[[EntityRepository], Any]) -> Any:
        db = self._session_factory()
        try:
            return fn(EntityRepository(db, self.entity_type))
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Entity store %s.%s failed", self.entity_type, operation)
            raise RemoteCallError(f"{self.entity_type}.{operation}", str(exc)) from exc
        finally:
            db.close()

    def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._run("list", lambda repo: repo.list(sort=sort, limit=limit))

    def get(self, entity_id: str) -> Dict[str, Any]:
        def fetch(repo: EntityRepository) -> Dict[str, Any]:
            record = repo.get_by_id(entity_id)
            if record is None:
                raise RemoteCallError(f"{self.entity_type}.get", f"record {entity_id} not found", status_code=404)
            return record.to_dict()
        return self._run("get", fetch)

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._run("create", lambda repo: repo.create(fields).to_dict())

    def update(self, entity_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        def apply(repo: EntityRepository) -> Dict[str, Any]:
            record = repo.update(entity_id, fields)
            if record is None:
                raise RemoteCallError(f"{self.entity_type}.update", f"record {entity_id} not found", status_code=404)
            return record.to_dict()
        return self._run("update", apply)

    def delete(self, entity_id: str) -> None:
        def remove(repo: EntityRepository) -> None:
            if not repo.delete(entity_id):
                raise RemoteCallError(f"{self.entity_type}.delete", f"record {entity_id} not found", status_code=404)
        self._run("delete", remove)


class LocalAuth(AuthCapability):
    """Single-user session; always the configured local user until logout."""

    def __init__(self, user: Dict[str, Any], login_url: str = "/login"):
        self._user = dict(user)
        self._login_url = login_url
        self._authenticated = True
        self._lock = threading.Lock()

    def me(self) -> Dict[str, Any]:
        with self._lock:
            if not self._authenticated:
                raise RemoteCallError("auth.me", "not authenticated", status_code=401)
            return dict(self._user)

    def is_authenticated(self) -> bool:
        with self._lock:
            return self._authenticated

    def redirect_to_login(self, return_url: str) -> str:
        with self._lock:
            self._authenticated = True
        return f"{self._login_url}?from_url={return_url}"

    def logout(self) -> None:
        with self._lock:
            self._authenticated = False


class LocalFunctions(FunctionsCapability):
    """Registry of named function handlers."""

    def __init__(self):
        self._handlers: Dict[str, FunctionHandler] = {}

    def register(self, name: str, handler: FunctionHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None) -> FunctionResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise RemoteCallError(f"functions.{name}", "function is not registered", status_code=404)
        data = handler(dict(payload or {}))
        return FunctionResult(data=data or {})


class LocalLLM(LLMCapability):
    """Delegates to an injected callable; unconfigured calls fail like a remote outage."""

    def __init__(self, handler: Optional[LLMHandler] = None):
        self.handler = handler

    def invoke_llm(
        self,
        prompt: str,
        add_context_from_internet: bool = False,
        response_json_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self.handler is None:
            raise RemoteCallError("integrations.Core.InvokeLLM", "LLM integration is not configured in local mode")
        result = self.handler(prompt, add_context_from_internet, response_json_schema)
        if not isinstance(result, dict):
            raise RemoteCallError("integrations.Core.InvokeLLM", "LLM handler returned a non-object response")
        return result


class LocalGateway(Gateway):
    """
    In-process gateway.

    Configuration:
        - session_factory: SQLAlchemy session factory for the entity store
        - llm: Optional LLM callable ``(prompt, add_context, schema) -> dict``
        - brokerage: Paper brokerage backing the brokerage/trading functions
        - email_handler: Optional ``sendWelcomeEmail`` handler
    """

    name = "local"

    def __init__(
        self,
        session_factory: sessionmaker,
        llm: Optional[LLMHandler] = None,
        brokerage: Optional[PaperBrokerage] = None,
        email_handler: Optional[FunctionHandler] = None,
        user: Optional[Dict[str, Any]] = None,
        login_url: str = "/login",
        create_schema: bool = True,
    ):
        self._session_factory = session_factory
        if create_schema:
            bind = session_factory.kw.get("bind")
            if bind is not None:
                Base.metadata.create_all(bind=bind)
        self.brokerage = brokerage or PaperBrokerage()
        self.entities = EntityNamespace(lambda entity_type: LocalEntityCollection(session_factory, entity_type))
        self.auth = LocalAuth(user or DEFAULT_LOCAL_USER, login_url=login_url)
        self.functions = LocalFunctions()
        self.functions.register("alpacaBrokerage", self.brokerage.handle_brokerage)
        self.functions.register("alpacaTrading", self.brokerage.handle_trading)
        self.functions.register("getMarketData", self.brokerage.handle_market_data)
        if email_handler is not None:
            self.functions.register("sendWelcomeEmail", email_handler)
        self.integrations = IntegrationsNamespace(LocalLLM(llm))

    def ping(self) -> bool:
        try:
            self.entities.Strategy.list(limit=1)
            return True
        except RemoteCallError:
            return False
