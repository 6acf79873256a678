"""Card tokenisation through the payment provider."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import stripe

logger = logging.getLogger(__name__)

_SECRET_MARKER = "_secret_"


class TokenizationError(RuntimeError):
    """Raised when the provider rejects a tokenisation attempt.

    ``provider_message`` is the text to show the user verbatim, when the
    provider supplied one.
    """

    def __init__(self, provider_message: str | None = None) -> None:
        super().__init__(provider_message or "Tokenization failed")
        self.provider_message = provider_message


class PaymentTokenizer(Protocol):
    async def confirm_setup(
        self,
        client_secret: str,
        card_handle: str,
        billing_details: Mapping[str, Any],
    ) -> str:
        """Return a reusable payment-method reference or raise TokenizationError."""
        ...


@dataclass(frozen=True)
class StripeSettings:
    api_key: str


class StripeApi(Protocol):
    def update_payment_method(
        self, payment_method_id: str, billing_details: Mapping[str, Any]
    ) -> Any:
        ...

    def confirm_setup_intent(self, setup_intent_id: str, payment_method_id: str) -> Any:
        ...


class _StripeSdkApi:
    def __init__(self, settings: StripeSettings) -> None:
        self._settings = settings

    def update_payment_method(
        self, payment_method_id: str, billing_details: Mapping[str, Any]
    ) -> Any:
        return stripe.PaymentMethod.modify(
            payment_method_id,
            api_key=self._settings.api_key,
            billing_details=dict(billing_details),
        )

    def confirm_setup_intent(self, setup_intent_id: str, payment_method_id: str) -> Any:
        return stripe.SetupIntent.confirm(
            setup_intent_id,
            api_key=self._settings.api_key,
            payment_method=payment_method_id,
        )


def setup_intent_id_from_secret(client_secret: str) -> str:
    """SetupIntent client secrets are ``<intent id>_secret_<nonce>``."""

    intent_id, marker, _ = client_secret.partition(_SECRET_MARKER)
    if not marker or not intent_id:
        raise TokenizationError("The payment setup token is invalid.")
    return intent_id


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


class StripeTokenizer:
    """Confirm a SetupIntent for a card collected by the browser widget."""

    def __init__(
        self,
        *,
        settings: StripeSettings,
        api: StripeApi | None = None,
    ) -> None:
        self.settings = settings
        self._api = api or _StripeSdkApi(settings)

    async def confirm_setup(
        self,
        client_secret: str,
        card_handle: str,
        billing_details: Mapping[str, Any],
    ) -> str:
        if not self.settings.api_key:
            raise TokenizationError("Card payments are not configured.")
        intent_id = setup_intent_id_from_secret(client_secret)
        try:
            await asyncio.to_thread(
                self._api.update_payment_method, card_handle, billing_details
            )
            intent = await asyncio.to_thread(
                self._api.confirm_setup_intent, intent_id, card_handle
            )
        except stripe.StripeError as exc:
            logger.info("Stripe rejected setup intent %s: %s", intent_id, exc)
            raise TokenizationError(exc.user_message or None) from exc

        status = _field(intent, "status")
        if status != "succeeded":
            last_error = _field(intent, "last_setup_error")
            message = _field(last_error, "message") if last_error else None
            if not message and status == "requires_action":
                message = "Additional authentication is required to add this card."
            raise TokenizationError(message)

        payment_method = _field(intent, "payment_method")
        if not isinstance(payment_method, str):
            payment_method = _field(payment_method, "id")
        if not payment_method:
            raise TokenizationError()
        return payment_method


__all__ = [
    "PaymentTokenizer",
    "StripeApi",
    "StripeSettings",
    "StripeTokenizer",
    "TokenizationError",
    "setup_intent_id_from_secret",
]
