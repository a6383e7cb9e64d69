"""
Workflow module.

Core components:
- Backtest, signal and strategy discovery workflows
- Brokerage onboarding and funding flows
- Live trading desk and trade journal
- Admin console
"""

from workflows.errors import (
    WorkflowError,
    ValidationError,
    IncompleteResultError,
    PersistenceError,
    BrokerageError,
    BatchBacktestError,
    InvalidTransitionError,
    PermissionDeniedError,
    FailureKind,
    classify_failure,
)
from workflows.backtest import BacktestWorkflow, BatchBacktestResult, FailedStrategy, generate_run_id
from workflows.signals import SignalWorkflow
from workflows.discovery import StrategyDiscoveryWorkflow, DiscoveryOutcome
from workflows.onboarding import OnboardingFlow, OnboardingState, OnboardingStep
from workflows.funding import FundingFlow
from workflows.trading import LiveTradingDesk
from workflows.journal import close_trade, journal_summary, record_trade
from workflows.admin import AdminConsole

__all__ = [
    "WorkflowError",
    "ValidationError",
    "IncompleteResultError",
    "PersistenceError",
    "BrokerageError",
    "BatchBacktestError",
    "InvalidTransitionError",
    "PermissionDeniedError",
    "FailureKind",
    "classify_failure",
    "BacktestWorkflow",
    "BatchBacktestResult",
    "FailedStrategy",
    "generate_run_id",
    "SignalWorkflow",
    "StrategyDiscoveryWorkflow",
    "DiscoveryOutcome",
    "OnboardingFlow",
    "OnboardingState",
    "OnboardingStep",
    "FundingFlow",
    "LiveTradingDesk",
    "close_trade",
    "journal_summary",
    "record_trade",
    "AdminConsole",
]
