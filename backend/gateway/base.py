"""
Remote Gateway Interface.
Abstract capabilities every gateway implementation exposes.

All business workflows are built by sequencing calls into these
capabilities:
- entities: typed record CRUD
- auth: current user and session
- functions: generic RPC (brokerage, market data, email)
- integrations: LLM invocation with a structured output schema
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

ENTITY_TYPES = ("Strategy", "Signal", "Trade", "Backtest", "WatchlistAsset", "User")


@dataclass
class FunctionResult:
    """Result of ``functions.invoke``; mirrors the ``{data}`` envelope."""
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.data.get("success"))

    @property
    def error(self) -> Optional[str]:
        value = self.data.get("error")
        return str(value) if value else None


class EntityCollection(ABC):
    """CRUD operations on one entity type."""

    entity_type: str

    @abstractmethod
    def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List records.

        Args:
            sort: Field name, ``-`` prefix for descending (e.g. ``-created_date``)
            limit: Maximum number of records

        Returns:
            List of record dicts
        """
        pass

    @abstractmethod
    def get(self, entity_id: str) -> Dict[str, Any]:
        """Fetch one record by id."""
        pass

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record and return it with its assigned id."""
        pass

    @abstractmethod
    def update(self, entity_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into a record and return the updated record."""
        pass

    @abstractmethod
    def delete(self, entity_id: str) -> None:
        """Delete a record."""
        pass


class AuthCapability(ABC):
    """Authentication capability."""

    @abstractmethod
    def me(self) -> Dict[str, Any]:
        """Return the current user record."""
        pass

    @abstractmethod
    def is_authenticated(self) -> bool:
        """Whether the current session is authenticated."""
        pass

    @abstractmethod
    def redirect_to_login(self, return_url: str) -> str:
        """Return the login URL the caller should redirect to."""
        pass

    @abstractmethod
    def logout(self) -> None:
        """End the current session."""
        pass


class FunctionsCapability(ABC):
    """Generic RPC capability."""

    @abstractmethod
    def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None) -> FunctionResult:
        """Invoke a named remote function."""
        pass


class LLMCapability(ABC):
    """Structured LLM invocation."""

    @abstractmethod
    def invoke_llm(
        self,
        prompt: str,
        add_context_from_internet: bool = False,
        response_json_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Return a JSON object matching ``response_json_schema``."""
        pass


class EntityNamespace:
    """Attribute access to entity collections: ``gateway.entities.Strategy``."""

    def __init__(self, factory: Callable[[str], EntityCollection]):
        self._factory = factory
        self._collections: Dict[str, EntityCollection] = {}

    def __getattr__(self, name: str) -> EntityCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in ENTITY_TYPES:
            raise AttributeError(f"Unknown entity type: {name}")
        collection = self._collections.get(name)
        if collection is None:
            collection = self._factory(name)
            self._collections[name] = collection
        return collection

    def get(self, name: str) -> EntityCollection:
        return getattr(self, name)


class IntegrationsNamespace:
    """``gateway.integrations.core.invoke_llm(...)``."""

    def __init__(self, core: LLMCapability):
        self.core = core


class Gateway(ABC):
    """
    Capability-based client over all remote calls.

    Concrete gateways assign ``entities``, ``auth``, ``functions`` and
    ``integrations`` in their constructor.
    """

    name: str = "gateway"
    entities: EntityNamespace
    auth: AuthCapability
    functions: FunctionsCapability
    integrations: IntegrationsNamespace

    @abstractmethod
    def ping(self) -> bool:
        """Lightweight reachability check used by the health endpoint."""
        pass

    def close(self) -> None:
        """Release transport resources."""
        return None
