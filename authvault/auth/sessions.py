"""Server-side sessions.

A session is created at login or registration and is identified by an
opaque random token handed to the client in the ``session-token`` cookie.
Only the token's hash is stored; a small index object maps that hash back
to the session, whose key embeds the owning account id.
"""

import hmac
import logging
import secrets
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from authvault.auth.context import SAFE_METHODS, RequestContext
from authvault.auth.models import AccountView, Session, SessionIndex
from authvault.auth.tokens import (
    IssuedRefreshToken,
    IssuedToken,
    TokenIssuer,
    hash_token,
)
from authvault.core.exceptions import ForbiddenError
from authvault.core.settings import AuthVaultSettings
from authvault.core.store import S3RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SessionBundle:
    """Everything handed to the client when a session starts."""

    session: Session
    session_token: str
    csrf_token: str
    access_token: IssuedToken
    refresh_token: IssuedRefreshToken | None = None


@dataclass
class SessionStats:
    active_sessions: int = 0
    total_sessions: int = 0
    last_login_at: datetime | None = None
    device_types: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "active_sessions": self.active_sessions,
            "total_sessions": self.total_sessions,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "device_types": self.device_types,
        }


class SessionStore:
    """Creates, validates, extends and invalidates sessions."""

    def __init__(
        self,
        settings: AuthVaultSettings,
        s3_client,
        issuer: TokenIssuer,
        bucket_name: str | None = None,
    ):
        """Initialize the session store.

        Args:
            settings: AuthVault settings (session lifetimes)
            s3_client: The S3 client to use
            issuer: Token issuer used for the session's tokens
            bucket_name: S3 bucket name (defaults to settings)
        """
        bucket = bucket_name or settings.aws_bucket_name
        self.issuer = issuer
        self.session_ttl = timedelta(hours=settings.session_expire_hours)
        self.remember_me_ttl = timedelta(days=settings.remember_me_expire_days)
        self.sessions = S3RecordStore(
            Session, s3_client, bucket, Session._collection, settings.s3_base_path
        )
        self.index = S3RecordStore(
            SessionIndex, s3_client, bucket, "session_index", settings.s3_base_path
        )

    async def create(
        self,
        account: AccountView,
        context: RequestContext,
        remember_me: bool = False,
        auth_method: str = "credentials",
        issue_refresh: bool | None = None,
    ) -> SessionBundle:
        """Start a session and issue its tokens.

        Args:
            account: The authenticated account
            context: The request the session starts in
            remember_me: Use the long session lifetime and issue a refresh token
            auth_method: How the account authenticated
            issue_refresh: Force issuing (or not) a refresh token; defaults
                to ``remember_me``

        Returns:
            The session with its raw session, CSRF, access and refresh tokens
        """
        now = datetime.now(timezone.utc)
        session_token = secrets.token_urlsafe(32)
        csrf_token = secrets.token_urlsafe(32)
        device = context.device_info()

        session = Session(
            account_id=account.id,
            session_token_hash=hash_token(session_token),
            expires_at=now + (self.remember_me_ttl if remember_me else self.session_ttl),
            csrf_token=csrf_token,
            ip_address=context.ip_address,
            user_agent=device.user_agent,
            device_info=device.label(),
            auth_method=auth_method,
            remember_me=remember_me,
        )
        await self.sessions.create(session.object_path(), session)
        await self.index.create(
            session.session_token_hash,
            SessionIndex(account_id=account.id, session_id=session.id),
        )

        access = self.issuer.issue_access(account, session.id, auth_method)
        refresh = None
        if issue_refresh is None:
            issue_refresh = remember_me
        if issue_refresh:
            refresh = await self.issuer.issue_refresh(account, context, session.id, device)

        logger.info(
            f"Session {session.id} created for account {account.id} from {context.ip_address}"
        )
        return SessionBundle(
            session=session,
            session_token=session_token,
            csrf_token=csrf_token,
            access_token=access,
            refresh_token=refresh,
        )

    async def _lookup(self, session_token: str) -> tuple[Session, str] | None:
        pointer = await self.index.get(hash_token(session_token))
        if pointer is None:
            return None
        return await self.sessions.get_versioned(f"{pointer.account_id}/{pointer.session_id}")

    async def validate(self, session_token: str) -> Session | None:
        """Return the session for a token if it is active and unexpired."""
        found = await self._lookup(session_token)
        if found is None:
            return None
        session, _ = found
        return session if session.is_valid() else None

    async def get_active(
        self, account_id: uuid.UUID, session_id: uuid.UUID
    ) -> Session | None:
        session = await self.sessions.get(f"{account_id}/{session_id}")
        if session is None or not session.is_valid():
            return None
        return session

    async def _deactivate(self, session: Session) -> None:
        session.is_active = False
        session.touch()
        await self.sessions.put(session.object_path(), session)
        await self.index.delete(session.session_token_hash)

    async def invalidate(self, session_token: str) -> bool:
        """Deactivate the session behind a token. Safe to call repeatedly.

        Returns:
            True if an active session was deactivated
        """
        found = await self._lookup(session_token)
        if found is None:
            return False
        session, _ = found
        if not session.is_active:
            return False
        await self._deactivate(session)
        return True

    async def invalidate_by_id(self, account_id: uuid.UUID, session_id: uuid.UUID) -> bool:
        session = await self.sessions.get(f"{account_id}/{session_id}")
        if session is None or not session.is_active:
            return False
        await self._deactivate(session)
        return True

    async def invalidate_all(self, account_id: uuid.UUID) -> dict:
        """Deactivate every session and revoke every refresh token of an account.

        Returns:
            Counts of deactivated sessions and revoked refresh tokens
        """
        sessions = 0
        for session in await self.sessions.list_records(prefix=f"{account_id}/"):
            if session.is_active:
                await self._deactivate(session)
                sessions += 1
        refresh_tokens = await self.issuer.revoke_all(account_id)
        logger.info(
            f"Invalidated {sessions} sessions and {refresh_tokens} refresh tokens "
            f"for account {account_id}"
        )
        return {"sessions": sessions, "refresh_tokens": refresh_tokens}

    async def refresh(
        self,
        account_id: uuid.UUID,
        session_id: uuid.UUID,
        extend_by: timedelta | None = None,
    ) -> Session | None:
        """Push a session's expiry forward.

        A missing or inactive session is logged and ignored; this never
        raises for it.
        """
        session = await self.sessions.get(f"{account_id}/{session_id}")
        if session is None or not session.is_valid():
            logger.warning(f"Cannot refresh session {session_id}: not found or inactive")
            return None

        now = datetime.now(timezone.utc)
        if extend_by is None:
            extend_by = self.remember_me_ttl if session.remember_me else self.session_ttl
        session.expires_at = max(session.expires_at, now + extend_by)
        session.last_activity_at = now
        session.touch()
        await self.sessions.put(session.object_path(), session)
        return session

    async def list_active(self, account_id: uuid.UUID) -> list[Session]:
        sessions = await self.sessions.list_records(prefix=f"{account_id}/")
        active = [session for session in sessions if session.is_valid()]
        return sorted(active, key=lambda session: session.last_activity_at, reverse=True)

    async def stats(self, account_id: uuid.UUID) -> SessionStats:
        sessions = await self.sessions.list_records(prefix=f"{account_id}/")
        active = [session for session in sessions if session.is_valid()]
        return SessionStats(
            active_sessions=len(active),
            total_sessions=len(sessions),
            last_login_at=max((s.created_at for s in sessions), default=None),
            device_types=dict(Counter(s.device_info or "Unknown device" for s in active)),
        )

    def validate_csrf(self, context: RequestContext, session: Session | None) -> None:
        """Double-submit CSRF check for cookie-authenticated writes.

        Safe methods and bearer-authenticated requests are exempt.

        Raises:
            ForbiddenError: If the header is missing or does not match
        """
        if context.method.upper() in SAFE_METHODS or not context.uses_cookie_auth:
            return
        header = context.csrf_header or ""
        expected = session.csrf_token if session else context.csrf_cookie
        if not header or not expected or not hmac.compare_digest(header, expected):
            raise ForbiddenError("Invalid CSRF token")

    async def cleanup_expired(self) -> int:
        """Delete expired sessions and inactive ones older than a day.

        Returns:
            Number of sessions removed
        """
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=1)
        removed = 0
        for session in await self.sessions.list_records():
            if session.expires_at <= now or (not session.is_active and session.updated_at < cutoff):
                await self.sessions.delete(session.object_path())
                await self.index.delete(session.session_token_hash)
                removed += 1
        return removed
