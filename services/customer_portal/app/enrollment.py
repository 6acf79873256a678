"""Payment method enrollment: collect, tokenise, register."""

from __future__ import annotations

import inspect
import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from libs.schemas.billing import PaymentMethod

from .billing_client import BillingClient
from .notifications import NotificationKind, NotificationSink
from .remote import RemoteError
from .session import PortalSession
from .tokenization import PaymentTokenizer, TokenizationError

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to add payment method"
SUCCESS_MESSAGE = "Payment method added successfully!"

FIELD_LABELS = {
    "name": "Full name",
    "email": "Email",
    "line1": "Address line 1",
    "city": "City",
    "state": "State",
    "postal_code": "ZIP code",
    "country": "Country",
    "card": "Card information",
}


class EnrollmentState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EnrollmentFailure(str, Enum):
    VALIDATION = "validation"
    TOKENIZATION = "tokenization"
    REMOTE = "remote"


class WorkflowStateError(RuntimeError):
    """Raised when a workflow is driven from a state that does not allow it."""


class EnrollmentValidationError(ValueError):
    """Raised when mandatory fields are missing before submission."""

    def __init__(self, missing: List[str]) -> None:
        labels = ", ".join(FIELD_LABELS.get(name, name) for name in missing)
        super().__init__(f"Please complete the required fields: {labels}")
        self.missing = missing


@dataclass
class BillingContact:
    name: str = ""
    email: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "US"

    OPTIONAL = frozenset({"line2"})

    def missing_fields(self) -> List[str]:
        return [
            item.name
            for item in fields(self)
            if item.name not in self.OPTIONAL and not getattr(self, item.name).strip()
        ]

    def to_billing_details(self) -> dict[str, Any]:
        """Shape expected by the payment provider."""

        address = {
            "line1": self.line1.strip(),
            "line2": self.line2.strip() or None,
            "city": self.city.strip(),
            "state": self.state.strip(),
            "postal_code": self.postal_code.strip(),
            "country": self.country.strip().upper(),
        }
        return {
            "name": self.name.strip(),
            "email": self.email.strip(),
            "address": address,
        }


CompletionCallback = Callable[[], Optional[Awaitable[None]]]


class PaymentMethodEnrollment:
    """One enrollment attempt, from empty form to registered payment method.

    Instances are single use: once the enrollment succeeded a new instance is
    needed for the next card.
    """

    def __init__(
        self,
        session: PortalSession,
        client: BillingClient,
        tokenizer: PaymentTokenizer,
        notifications: NotificationSink,
        *,
        on_completed: CompletionCallback | None = None,
    ) -> None:
        self._session = session
        self._client = client
        self._tokenizer = tokenizer
        self._notifications = notifications
        self._on_completed = on_completed
        self._state = EnrollmentState.IDLE
        self.contact = BillingContact()
        self.card_handle: str | None = None
        self.error: str | None = None
        self.failure: EnrollmentFailure | None = None
        self.payment_method: PaymentMethod | None = None
        self.transitions: List[EnrollmentState] = [EnrollmentState.IDLE]

    @property
    def state(self) -> EnrollmentState:
        return self._state

    def _transition(self, state: EnrollmentState) -> None:
        self._state = state
        self.transitions.append(state)

    def _ensure_collecting(self) -> None:
        if self._state is EnrollmentState.SUCCEEDED:
            raise WorkflowStateError("Enrollment already completed")
        if self._state is EnrollmentState.SUBMITTING:
            raise WorkflowStateError("Enrollment is being submitted")
        if self._state is EnrollmentState.IDLE:
            self._transition(EnrollmentState.COLLECTING)

    def update_contact(self, **values: str) -> None:
        self._ensure_collecting()
        known = {item.name for item in fields(BillingContact)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown billing contact fields: {', '.join(sorted(unknown))}")
        current = asdict(self.contact)
        current.update({key: value if value is not None else "" for key, value in values.items()})
        self.contact = BillingContact(**current)

    def attach_card(self, card_handle: str) -> None:
        self._ensure_collecting()
        self.card_handle = card_handle or None

    def missing_fields(self) -> List[str]:
        missing = self.contact.missing_fields()
        if not self.card_handle:
            missing.append("card")
        return missing

    def validate(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise EnrollmentValidationError(missing)

    @property
    def can_submit(self) -> bool:
        return self._state is EnrollmentState.COLLECTING and not self.missing_fields()

    async def submit(self) -> PaymentMethod | None:
        """Run the three enrollment steps. Returns the method on success."""

        self._ensure_collecting()
        try:
            self.validate()
        except EnrollmentValidationError as exc:
            self.error = str(exc)
            self.failure = EnrollmentFailure.VALIDATION
            self._notifications.add(self.error, NotificationKind.ERROR)
            return None

        card_handle = self.card_handle
        if card_handle is None:
            raise WorkflowStateError("No card attached to the enrollment")
        org_id = self._session.org_id
        self.error = None
        self.failure = None
        self._transition(EnrollmentState.SUBMITTING)
        try:
            intent = await self._client.create_setup_intent(org_id)
            payment_method_id = await self._tokenizer.confirm_setup(
                intent.client_secret,
                card_handle,
                self.contact.to_billing_details(),
            )
            method = await self._client.add_payment_method(org_id, payment_method_id)
        except TokenizationError as exc:
            self._fail(
                exc.provider_message or GENERIC_FAILURE_MESSAGE, EnrollmentFailure.TOKENIZATION
            )
            return None
        except RemoteError as exc:
            logger.warning("Payment method enrollment failed for org %s: %s", org_id, exc)
            self._fail(GENERIC_FAILURE_MESSAGE, EnrollmentFailure.REMOTE)
            return None
        except Exception:
            logger.exception("Unexpected error while enrolling a payment method for org %s", org_id)
            self._fail(GENERIC_FAILURE_MESSAGE, EnrollmentFailure.REMOTE)
            return None

        self.payment_method = method
        self._transition(EnrollmentState.SUCCEEDED)
        self._notifications.add(SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        logger.info("Payment method %s registered for org %s", method.id, org_id)
        if self._on_completed is not None:
            try:
                result = self._on_completed()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Enrollment completion callback failed for org %s", org_id)
        return method

    def _fail(self, reason: str, failure: EnrollmentFailure) -> None:
        self._transition(EnrollmentState.FAILED)
        self.error = reason
        self.failure = failure
        self._notifications.add(reason, NotificationKind.ERROR)
        self._transition(EnrollmentState.COLLECTING)


__all__ = [
    "BillingContact",
    "EnrollmentFailure",
    "EnrollmentState",
    "EnrollmentValidationError",
    "GENERIC_FAILURE_MESSAGE",
    "PaymentMethodEnrollment",
    "SUCCESS_MESSAGE",
    "WorkflowStateError",
]
