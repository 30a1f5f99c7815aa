"""Records persisted by the authentication subsystem."""

import uuid
from datetime import datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, Field

from authvault.core.base import BaseRecord, utcnow

Role = Literal["user", "admin"]

# Sortable timestamp used in login attempt keys
ATTEMPT_KEY_FORMAT = "%Y%m%dT%H%M%S%fZ"
UNKNOWN_ACCOUNT = "_unknown"


class Account(BaseRecord):
    """A user account.

    Accounts are only ever created and mutated through the account
    repository, which keeps the email and username indexes in step.
    Passkey-only accounts have no ``password_hash``.
    """

    _collection: ClassVar[str] = "accounts"

    email: str = Field(..., max_length=254)
    username: str = Field(..., min_length=3, max_length=30)
    password_hash: str | None = None
    role: Role = "user"
    is_locked: bool = False
    locked_until: datetime | None = None
    login_count: int = 0
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None

    def lock_active(self, now: datetime | None = None) -> bool:
        """Whether the account currently rejects credential verification."""
        if not self.is_locked:
            return False
        return self.locked_until is None or self.locked_until > (now or utcnow())

    def public(self) -> "AccountView":
        return AccountView.model_validate(self.model_dump(exclude={"password_hash"}))


class AccountView(BaseModel):
    """Account data that is safe to return to clients."""

    id: uuid.UUID
    email: str
    username: str
    role: Role
    is_locked: bool = False
    locked_until: datetime | None = None
    login_count: int = 0
    last_login_at: datetime | None = None
    created_at: datetime


class AccountIndex(BaseModel):
    """Uniqueness index entry pointing a normalized email/username at an account."""

    account_id: uuid.UUID


class Session(BaseRecord):
    """A server-side login session identified by an opaque token."""

    _collection: ClassVar[str] = "sessions"

    account_id: uuid.UUID
    session_token_hash: str
    expires_at: datetime
    csrf_token: str
    ip_address: str | None = None
    user_agent: str | None = None
    device_info: str | None = None
    auth_method: str = "credentials"
    is_active: bool = True
    remember_me: bool = False
    last_activity_at: datetime = Field(default_factory=utcnow)

    def object_path(self) -> str:
        return f"{self.account_id}/{self.id}"

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.is_active and self.expires_at > (now or utcnow())

    def public(self) -> dict:
        return self.model_dump(
            mode="json",
            exclude={"session_token_hash", "csrf_token"},
        )


class SessionIndex(BaseModel):
    """Maps a session token hash to the session it belongs to."""

    account_id: uuid.UUID
    session_id: uuid.UUID


class RefreshToken(BaseRecord):
    """Refresh token record. Only the SHA-256 hash of the token is stored."""

    _collection: ClassVar[str] = "refresh_tokens"

    account_id: uuid.UUID
    token_hash: str
    session_id: uuid.UUID | None = None
    expires_at: datetime
    revoked: bool = False
    revoked_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    device_id: str | None = None
    device_info: str | None = None

    def object_path(self) -> str:
        return f"{self.account_id}/{self.token_hash}"

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.revoked and self.expires_at > (now or utcnow())


class RevocationEntry(BaseRecord):
    """A blacklisted token, kept until the token would have expired anyway."""

    _collection: ClassVar[str] = "revocations"

    token_hash: str
    jti: str | None = None
    account_id: uuid.UUID | None = None
    reason: str | None = None
    expires_at: datetime

    def object_path(self) -> str:
        return self.token_hash


class LoginAttempt(BaseRecord):
    """Audit record of one credential verification."""

    _collection: ClassVar[str] = "login_attempts"

    account_id: uuid.UUID | None = None
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    fail_reason: str | None = None
    action: str = "login"

    def object_path(self) -> str:
        owner = str(self.account_id) if self.account_id else UNKNOWN_ACCOUNT
        return f"{owner}/{self.created_at.strftime(ATTEMPT_KEY_FORMAT)}-{self.id}"
