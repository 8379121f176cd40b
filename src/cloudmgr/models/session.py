"""
Session models: the authenticated context every call runs under.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

EXPIRY_SKEW = timedelta(seconds=30)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Credentials(BaseModel):
    """Client credentials used to (re-)establish a session."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime
    account_id: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    refresh_token: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) + EXPIRY_SKEW >= self.expires_at

    @property
    def has_workspace(self) -> bool:
        return bool(self.workspace_id)

    def with_workspace(self, workspace_id: str, workspace_name: Optional[str] = None) -> "Session":
        return self.model_copy(update={"workspace_id": workspace_id, "workspace_name": workspace_name})

    def with_token(
        self,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> "Session":
        return self.model_copy(update={
            "access_token": access_token,
            "expires_at": as_utc(expires_at),
            "refresh_token": refresh_token or self.refresh_token,
        })

    def __str__(self) -> str:
        workspace = self.workspace_name or self.workspace_id or "-"
        return f"Session(account={self.account_id}, workspace={workspace}, expired={self.is_expired})"
