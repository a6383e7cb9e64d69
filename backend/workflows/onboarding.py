"""
Brokerage onboarding flow.

State machine for opening a brokerage account:

    CHECKING_STATUS -> NO_ACCOUNT (PERSONAL_INFO -> DISCLOSURES -> SUBMITTED)
                    -> PENDING_APPROVAL
                    -> APPROVED_ACTIVE (redirect to live trading)

Remote failures are recorded on ``error`` and never leave the flow in
a state it did not reach.
"""

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional
import logging
import threading

from gateway.base import Gateway
from gateway.errors import RemoteCallError
from services.polling import TaskGroup, TaskHandle, schedule_once
from workflows.brokerage import TRADABLE_STATUSES, brokerage
from workflows.errors import BrokerageError, InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], TaskHandle]

PERSONAL_INFO_FIELDS = (
    "given_name",
    "family_name",
    "date_of_birth",
    "phone_number",
    "street_address",
    "city",
    "state",
    "postal_code",
    "tax_id",
)

DISCLOSURE_FIELDS = (
    "is_control_person",
    "is_affiliated_exchange_or_finra",
    "is_politically_exposed",
    "immediate_family_exposed",
)

REDIRECT_LIVE_TRADING = "live_trading"
REDIRECT_FUNDING = "funding"


class OnboardingState(str, Enum):
    CHECKING_STATUS = "checking_status"
    NO_ACCOUNT = "no_account"
    PENDING_APPROVAL = "pending_approval"
    APPROVED_ACTIVE = "approved_active"


class OnboardingStep(str, Enum):
    PERSONAL_INFO = "personal_info"
    DISCLOSURES = "disclosures"
    SUBMITTED = "submitted"


def build_account_payload(personal_info: Mapping[str, Any], disclosures: Mapping[str, Any]) -> Dict[str, Any]:
    """Single ``createAccount`` payload with regulatory defaults applied."""
    country = personal_info.get("country") or "USA"
    payload: Dict[str, Any] = {name: personal_info.get(name) for name in PERSONAL_INFO_FIELDS}
    payload.update({
        "tax_id_type": personal_info.get("tax_id_type") or "USA_SSN",
        "country_of_citizenship": country,
        "country_of_birth": country,
        "country_of_tax_residence": country,
        "funding_source": [personal_info.get("funding_source") or "employment_income"],
    })
    for name in DISCLOSURE_FIELDS:
        payload[name] = bool(disclosures.get(name, False))
    return payload


class OnboardingFlow:
    """
    One onboarding session.

    ``check_status()`` must run on every mount; account status is never
    cached between sessions.
    """

    def __init__(
        self,
        gateway: Gateway,
        redirect_delay: float = 2.0,
        scheduler: Scheduler = schedule_once,
        on_navigate: Optional[Callable[[str], None]] = None,
    ):
        self.gateway = gateway
        self.redirect_delay = redirect_delay
        self._scheduler = scheduler
        self._on_navigate = on_navigate
        self._tasks = TaskGroup()
        self._lock = threading.RLock()

        self.state = OnboardingState.CHECKING_STATUS
        self.step: Optional[OnboardingStep] = None
        self.account_status: Optional[str] = None
        self.account_id: Optional[str] = None
        self.personal_info: Dict[str, Any] = {}
        self.error: Optional[str] = None
        self.redirect_to: Optional[str] = None
        self.submitting = False

    def _navigate(self, target: str) -> None:
        with self._lock:
            self.redirect_to = target
        logger.info("Onboarding navigating to %s", target)
        if self._on_navigate is not None:
            self._on_navigate(target)

    def _require(self, state: OnboardingState, step: Optional[OnboardingStep], action: str) -> None:
        if self.state != state or (step is not None and self.step != step):
            current = self.state.value if self.step is None else f"{self.state.value}/{self.step.value}"
            raise InvalidTransitionError(f"Cannot {action} while onboarding is {current}")

    def check_status(self) -> OnboardingState:
        with self._lock:
            self.state = OnboardingState.CHECKING_STATUS
            self.step = None
            self.redirect_to = None
        try:
            response = brokerage(self.gateway, "getAccountStatus")
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Error checking account status: %s", exc)
            with self._lock:
                self.state = OnboardingState.NO_ACCOUNT
                self.step = OnboardingStep.PERSONAL_INFO
                self.error = str(exc)
            return self.state

        with self._lock:
            if not response.get("has_account"):
                self.state = OnboardingState.NO_ACCOUNT
                self.step = OnboardingStep.PERSONAL_INFO
                self.account_status = None
                return self.state
            self.account_status = response.get("status")
            self.account_id = response.get("account_id")
            if self.account_status in TRADABLE_STATUSES:
                self.state = OnboardingState.APPROVED_ACTIVE
            else:
                self.state = OnboardingState.PENDING_APPROVAL
        if self.state == OnboardingState.APPROVED_ACTIVE:
            self._navigate(REDIRECT_LIVE_TRADING)
        return self.state

    def submit_personal_info(self, info: Mapping[str, Any]) -> OnboardingStep:
        """Validate locally and advance to disclosures; no remote call."""
        with self._lock:
            self._require(OnboardingState.NO_ACCOUNT, OnboardingStep.PERSONAL_INFO, "submit personal info")
            missing = [name for name in PERSONAL_INFO_FIELDS if not str(info.get(name) or "").strip()]
            if missing:
                raise ValidationError(f"Missing required fields: {', '.join(missing)}")
            self.personal_info = dict(info)
            self.step = OnboardingStep.DISCLOSURES
            self.error = None
            return self.step

    def back_to_personal_info(self) -> OnboardingStep:
        with self._lock:
            self._require(OnboardingState.NO_ACCOUNT, OnboardingStep.DISCLOSURES, "go back")
            self.step = OnboardingStep.PERSONAL_INFO
            return self.step

    def submit_disclosures(self, disclosures: Mapping[str, Any]) -> OnboardingStep:
        """
        Fire the single ``createAccount`` call.

        Success moves to SUBMITTED and schedules navigation to funding.
        Failure stays in DISCLOSURES with ``error`` set.
        """
        with self._lock:
            self._require(OnboardingState.NO_ACCOUNT, OnboardingStep.DISCLOSURES, "submit disclosures")
            if self.submitting:
                raise InvalidTransitionError("Account submission already in progress")
            self.submitting = True
            self.error = None
            payload = build_account_payload(self.personal_info, disclosures)

        try:
            response = brokerage(self.gateway, "createAccount", **payload)
        except (RemoteCallError, BrokerageError) as exc:
            logger.error("Error creating account: %s", exc)
            with self._lock:
                self.error = str(exc) or "Failed to create brokerage account. Please try again."
                self.submitting = False
            return self.step

        account = response.get("data") or {}
        with self._lock:
            self.account_id = account.get("id")
            self.account_status = account.get("status")
            self.step = OnboardingStep.SUBMITTED
            self.submitting = False
        self._tasks.add(
            self._scheduler(self.redirect_delay, lambda: self._navigate(REDIRECT_FUNDING))
        )
        return self.step

    def dismiss_error(self) -> None:
        with self._lock:
            self.error = None

    def close(self) -> int:
        """Cancel any pending navigation."""
        return self._tasks.cancel_all()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self.state.value,
                "step": self.step.value if self.step else None,
                "account_status": self.account_status,
                "account_id": self.account_id,
                "error": self.error,
                "redirect_to": self.redirect_to,
            }
