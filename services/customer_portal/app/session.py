"""Session context shared by every portal workflow."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class PortalSession:
    """Who is acting and on behalf of which organisation."""

    org_id: str
    access_token: str | None = field(default=None, repr=False)
    user_email: str | None = None

    def __post_init__(self) -> None:
        if not self.org_id:
            raise ValueError("org_id is required")

    def to_cookie(self) -> dict[str, str]:
        payload = {"org_id": self.org_id}
        if self.access_token:
            payload["access_token"] = self.access_token
        if self.user_email:
            payload["user_email"] = self.user_email
        return payload

    @classmethod
    def from_cookie(cls, payload: object) -> "PortalSession | None":
        if not isinstance(payload, dict):
            return None
        org_id = payload.get("org_id")
        if not isinstance(org_id, str) or not org_id:
            return None
        token = payload.get("access_token")
        email = payload.get("user_email")
        return cls(
            org_id=org_id,
            access_token=token if isinstance(token, str) else None,
            user_email=email if isinstance(email, str) else None,
        )


__all__ = ["PortalSession"]
