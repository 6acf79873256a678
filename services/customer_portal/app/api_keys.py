"""API key management: creation form, listing, revocation and verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from libs.schemas.apikeys import ApiKey, ApiKeyCreate, ApiKeyVerification

from .apikeys_client import ApiKeysClient
from .confirmation import ConfirmationPrompt
from .formatting import format_date
from .notifications import NotificationKind, NotificationSink
from .remote import RemoteError
from .schemas import ApiKeyView
from .session import PortalSession

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("artifacts:read",)
DEFAULT_EXPIRY_DAYS = 30

SCOPE_CATALOG = {
    "artifacts:read": ("Read Artifacts", "Download and access artifacts"),
    "artifacts:write": ("Write Artifacts", "Upload and manage artifacts"),
    "analytics:read": ("Read Analytics", "View usage statistics and metrics"),
}

EXPIRATION_OPTIONS = {
    7: "7 days",
    30: "30 days",
    90: "90 days",
    365: "1 year",
    0: "Never expires",
}

NAME_REQUIRED_MESSAGE = "Please enter a name for your API key"
SCOPES_REQUIRED_MESSAGE = "Please select at least one permission"
CREATE_FAILURE_MESSAGE = "Failed to create API key"
REVOKE_SUCCESS_MESSAGE = "API key revoked"
REVOKE_FAILURE_MESSAGE = "Failed to revoke API key"
REVOKE_CONFIRMATION_PROMPT = (
    "Revoke this API key? Applications using it will lose access immediately."
)


class ApiKeyValidationError(ValueError):
    """Raised when the creation form cannot be submitted."""

    def __init__(self, message: str, *, field_name: str) -> None:
        super().__init__(message)
        self.message = message
        self.field_name = field_name


@dataclass
class ApiKeyForm:
    name: str = ""
    description: str = ""
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    expires_in_days: int = DEFAULT_EXPIRY_DAYS

    def validate(self) -> None:
        if not self.name.strip():
            raise ApiKeyValidationError(NAME_REQUIRED_MESSAGE, field_name="name")
        if not self.scopes:
            raise ApiKeyValidationError(SCOPES_REQUIRED_MESSAGE, field_name="scopes")
        unknown = sorted(set(self.scopes) - set(SCOPE_CATALOG))
        if unknown:
            raise ApiKeyValidationError(
                f"Unknown permissions: {', '.join(unknown)}", field_name="scopes"
            )
        if self.expires_in_days not in EXPIRATION_OPTIONS:
            raise ApiKeyValidationError(
                "Please choose a supported expiration", field_name="expires_in_days"
            )

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        if self.expires_in_days == 0:
            return None
        return (now or datetime.now(timezone.utc)) + timedelta(days=self.expires_in_days)


def to_api_key_view(key: ApiKey) -> ApiKeyView:
    return ApiKeyView(
        id=key.id,
        key_id=key.key_id,
        name=key.name,
        scopes=list(key.scopes),
        state=key.state.value,
        created_text=format_date(key.created_at),
        expires_text=format_date(key.expires_at) if key.expires_at else "Never",
        secret=key.key,
    )


class ApiKeyManager:
    """Drive the API key screens for one organisation."""

    def __init__(
        self,
        session: PortalSession,
        client: ApiKeysClient,
        notifications: NotificationSink,
        confirmation: ConfirmationPrompt,
    ) -> None:
        self._session = session
        self._client = client
        self._notifications = notifications
        self._confirmation = confirmation
        self.form = ApiKeyForm()
        self.is_creating = False
        self.error: str | None = None

    def reset_form(self) -> None:
        self.form = ApiKeyForm()

    async def create(self, form: ApiKeyForm | None = None) -> ApiKey | None:
        """Submit the form. Validation problems raise before any request.

        Returns the created key, still carrying its one-time secret, or
        ``None`` when the platform refused the request.
        """

        if form is not None:
            self.form = form
        try:
            self.form.validate()
        except ApiKeyValidationError as exc:
            self.error = exc.message
            self._notifications.add(exc.message, NotificationKind.ERROR)
            raise

        name = self.form.name.strip()
        request = ApiKeyCreate(
            name=name,
            org_id=self._session.org_id,
            description=self.form.description.strip() or None,
            scopes=list(dict.fromkeys(self.form.scopes)),
            expires_at=self.form.expires_at(),
        )
        self.is_creating = True
        try:
            key = await self._client.create_api_key(request)
        except RemoteError as exc:
            logger.warning("API key creation failed for org %s: %s", self._session.org_id, exc)
            self.error = CREATE_FAILURE_MESSAGE
            self._notifications.add(CREATE_FAILURE_MESSAGE, NotificationKind.ERROR)
            return None
        finally:
            self.is_creating = False

        self.error = None
        self._notifications.add(f'API Key "{name}" created successfully!', NotificationKind.SUCCESS)
        if key.key:
            self._notifications.add(
                f"Key: {key.key} - Save this key, it won't be shown again!",
                NotificationKind.WARNING,
            )
        self.reset_form()
        logger.info("API key %s created for org %s", key.key_id, self._session.org_id)
        return key

    async def list_keys(self) -> List[ApiKey]:
        keys = await self._client.list_api_keys(self._session.org_id)
        return [key.without_secret() for key in keys]

    async def revoke(self, key_id: str) -> bool:
        if not await self._confirmation.confirm(REVOKE_CONFIRMATION_PROMPT):
            return False
        try:
            await self._client.revoke_api_key(key_id)
        except RemoteError as exc:
            logger.warning("Unable to revoke API key %s: %s", key_id, exc)
            self._notifications.add(REVOKE_FAILURE_MESSAGE, NotificationKind.ERROR)
            return False
        self._notifications.add(REVOKE_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        return True

    async def verify(self, api_key: str) -> ApiKeyVerification:
        return await self._client.verify_api_key(api_key)


__all__ = [
    "ApiKeyForm",
    "ApiKeyManager",
    "ApiKeyValidationError",
    "EXPIRATION_OPTIONS",
    "SCOPE_CATALOG",
    "to_api_key_view",
]
