"""
Workflow error taxonomy.

Every workflow failure is a ``WorkflowError`` subclass, except gateway
transport failures which surface as ``RemoteCallError``.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from gateway.errors import RemoteCallError


class WorkflowError(Exception):
    """Base class for workflow failures."""


class ValidationError(WorkflowError):
    """Input rejected before any remote call."""


class IncompleteResultError(WorkflowError):
    """LLM response is missing required fields."""


# Name used in user-facing messages for the same condition.
IncompleteAIResponseError = IncompleteResultError


class PersistenceError(WorkflowError):
    """Entity create/update failed after the result was produced."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class BrokerageError(WorkflowError):
    """Brokerage function answered with ``success: false``."""

    def __init__(self, action: str, message: str):
        super().__init__(message)
        self.action = action


class InvalidTransitionError(WorkflowError):
    """State machine action not allowed in the current state."""


class PermissionDeniedError(WorkflowError):
    """Caller lacks the required role."""


class BatchBacktestError(WorkflowError):
    """Every strategy in a batch backtest failed."""

    def __init__(self, message: str, failed: List[Any]):
        super().__init__(message)
        self.failed = list(failed)

    def failed_as_dicts(self) -> List[Dict[str, str]]:
        return [item.to_dict() if hasattr(item, "to_dict") else dict(item) for item in self.failed]


class FailureKind(str, Enum):
    """Coarse failure category shown next to a failed run."""
    INCOMPLETE_RESPONSE = "incomplete_response"
    PERSISTENCE = "persistence"
    REMOTE_CALL = "remote_call"
    VALIDATION = "validation"
    BATCH = "batch"
    UNKNOWN = "unknown"


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, IncompleteResultError):
        return FailureKind.INCOMPLETE_RESPONSE
    if isinstance(exc, PersistenceError):
        return FailureKind.PERSISTENCE
    if isinstance(exc, (RemoteCallError, BrokerageError)):
        return FailureKind.REMOTE_CALL
    if isinstance(exc, ValidationError):
        return FailureKind.VALIDATION
    if isinstance(exc, BatchBacktestError):
        return FailureKind.BATCH
    return FailureKind.UNKNOWN


__all__ = [
    "WorkflowError",
    "ValidationError",
    "IncompleteResultError",
    "IncompleteAIResponseError",
    "PersistenceError",
    "BrokerageError",
    "InvalidTransitionError",
    "PermissionDeniedError",
    "BatchBacktestError",
    "RemoteCallError",
    "FailureKind",
    "classify_failure",
]
