"""Signed access and refresh tokens.

Access tokens are short-lived JWTs checked statelessly (plus the revocation
ledger). Refresh tokens are JWTs too, but each one also has a stored record
keyed by its SHA-256 hash so it can be listed, revoked and rotated.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from authvault.auth.context import DeviceInfo, RequestContext
from authvault.auth.models import AccountView, RefreshToken
from authvault.core.exceptions import (
    MalformedTokenError,
    StoreConflictError,
    StoreError,
    TokenExpiredError,
    TokenRevokedError,
    WrongTokenTypeError,
)
from authvault.core.settings import AuthVaultSettings
from authvault.core.store import S3RecordStore

logger = logging.getLogger(__name__)

TokenType = Literal["access", "refresh"]


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token, the only form tokens are stored in."""
    return hashlib.sha256(token.encode()).hexdigest()


class TokenPayload(BaseModel):
    """Decoded and verified token claims."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sub: uuid.UUID
    token_type: TokenType = Field(alias="tokenType")
    jti: str
    iat: int
    exp: int
    sid: uuid.UUID | None = None
    email: str | None = None
    username: str | None = None
    role: str | None = None
    auth_method: str | None = Field(default=None, alias="authMethod")

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - datetime.now(timezone.utc)).total_seconds()))


@dataclass(frozen=True)
class IssuedRefreshToken:
    """A freshly issued refresh token. ``token`` is only available here."""

    token: str
    expires_at: datetime
    record: RefreshToken


class TokenIssuer:
    """Issues, verifies, rotates and revokes tokens."""

    def __init__(self, settings: AuthVaultSettings, s3_client, bucket_name: str | None = None):
        """Initialize the issuer.

        Args:
            settings: AuthVault settings (secret, algorithm, TTLs)
            s3_client: S3 client holding refresh token records
            bucket_name: S3 bucket name (defaults to settings)
        """
        self.secret_key = settings.secret_key
        self.algorithm = settings.algorithm
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)
        self.rotation_threshold = timedelta(
            minutes=settings.refresh_rotation_threshold_minutes
        )
        self.refresh_tokens = S3RecordStore(
            RefreshToken,
            s3_client,
            bucket_name or settings.aws_bucket_name,
            RefreshToken._collection,
            settings.s3_base_path,
        )

    def _encode(self, claims: dict, token_type: TokenType, ttl: timedelta) -> tuple[str, str, datetime]:
        now = datetime.now(timezone.utc)
        expires_at = now + ttl
        jti = str(uuid.uuid4())
        to_encode = {
            **claims,
            "tokenType": token_type,
            "jti": jti,
            "iat": now,
            "exp": expires_at,
            "iss": self.issuer,
            "aud": self.audience,
        }
        token = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
        return token, jti, expires_at

    def issue_access(
        self,
        account: AccountView,
        session_id: uuid.UUID | None = None,
        auth_method: str = "credentials",
    ) -> IssuedToken:
        """Create a short-lived access token for an account.

        Args:
            account: The account the token is for
            session_id: The session the token belongs to, if any
            auth_method: How the account authenticated

        Returns:
            The encoded token with its id and expiry
        """
        claims = {
            "sub": str(account.id),
            "email": account.email,
            "username": account.username,
            "role": account.role,
            "authMethod": auth_method,
        }
        if session_id:
            claims["sid"] = str(session_id)
        token, jti, expires_at = self._encode(claims, "access", self.access_ttl)
        return IssuedToken(token=token, jti=jti, expires_at=expires_at)

    async def issue_refresh(
        self,
        account: AccountView,
        context: RequestContext,
        session_id: uuid.UUID | None = None,
        device: DeviceInfo | None = None,
    ) -> IssuedRefreshToken:
        """Create a refresh token and persist its hashed record.

        Args:
            account: The account the token is for
            context: The request the token is issued in
            session_id: The session the token is bound to
            device: Device description, defaults to the request's

        Returns:
            The raw token (returned only once) with its stored record
        """
        device = device or context.device_info()
        claims = {"sub": str(account.id)}
        if session_id:
            claims["sid"] = str(session_id)
        token, _, expires_at = self._encode(claims, "refresh", self.refresh_ttl)

        record = RefreshToken(
            account_id=account.id,
            token_hash=hash_token(token),
            session_id=session_id,
            expires_at=expires_at,
            ip_address=context.ip_address,
            user_agent=device.user_agent,
            device_id=device.device_id,
            device_info=device.label(),
        )
        await self.refresh_tokens.create(record.object_path(), record)
        return IssuedRefreshToken(token=token, expires_at=expires_at, record=record)

    def verify(self, token: str, expected_type: TokenType) -> TokenPayload:
        """Verify a token's signature, expiry, issuer, audience and type.

        Only the configured algorithm is accepted, whatever the token header
        claims.

        Args:
            token: The encoded token
            expected_type: ``"access"`` or ``"refresh"``

        Returns:
            The verified claims

        Raises:
            TokenExpiredError: If the token has expired
            MalformedTokenError: If the token does not decode or verify
            WrongTokenTypeError: If the token is of the other type
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except (JWTClaimsError, JWTError) as e:
            raise MalformedTokenError(f"Invalid token: {e}") from e

        actual = claims.get("tokenType")
        if actual != expected_type:
            raise WrongTokenTypeError(expected_type, actual)

        try:
            return TokenPayload.model_validate(claims)
        except ValidationError as e:
            raise MalformedTokenError("Token claims are incomplete") from e

    def needs_rotation(self, payload: TokenPayload, now: datetime | None = None) -> bool:
        """Whether a refresh token is close enough to expiry to be replaced."""
        now = now or datetime.now(timezone.utc)
        return payload.expires_at - now < self.rotation_threshold

    async def get_refresh_record(
        self, account_id: uuid.UUID, token: str
    ) -> tuple[RefreshToken, str] | None:
        return await self.refresh_tokens.get_versioned(f"{account_id}/{hash_token(token)}")

    async def rotate_refresh(
        self,
        account: AccountView,
        record: RefreshToken,
        etag: str,
        context: RequestContext,
    ) -> IssuedRefreshToken:
        """Issue a replacement for ``record`` and revoke it.

        The replacement is stored first, then the old record is revoked with
        a conditional write on its ETag. Of two concurrent rotations of the
        same token only one revocation lands; the loser deletes the
        replacement it stored. If the revocation fails for any reason the
        caller keeps the old token and no replacement survives.

        Raises:
            TokenRevokedError: If the record changed since it was read
            StoreError: If the store failed
        """
        device = DeviceInfo(
            user_agent=context.user_agent or record.user_agent,
            device_id=record.device_id,
        )
        issued = await self.issue_refresh(account, context, record.session_id, device)

        record.revoked = True
        record.revoked_at = datetime.now(timezone.utc)
        record.touch()
        try:
            await self.refresh_tokens.put(record.object_path(), record, if_match=etag)
        except StoreConflictError as e:
            await self.refresh_tokens.delete(issued.record.object_path())
            logger.warning(f"Refresh token for account {record.account_id} rotated concurrently")
            raise TokenRevokedError("Refresh token has already been used") from e
        except StoreError:
            await self.refresh_tokens.delete(issued.record.object_path())
            raise

        logger.info(f"Rotated refresh token for account {record.account_id}")
        return issued

    async def revoke_refresh(self, account_id: uuid.UUID, token: str) -> bool:
        """Revoke a specific refresh token (logout).

        Returns:
            True if token was revoked, False if not found or already revoked
        """
        found = await self.get_refresh_record(account_id, token)
        if found is None:
            return False
        record, _ = found
        if record.revoked:
            return False
        record.revoked = True
        record.revoked_at = datetime.now(timezone.utc)
        record.touch()
        await self.refresh_tokens.put(record.object_path(), record)
        return True

    async def revoke_all(self, account_id: uuid.UUID) -> int:
        """Revoke all refresh tokens for an account (logout all devices).

        Returns:
            Number of tokens revoked
        """
        count = 0
        now = datetime.now(timezone.utc)
        for record in await self.refresh_tokens.list_records(prefix=f"{account_id}/"):
            if record.revoked:
                continue
            record.revoked = True
            record.revoked_at = now
            record.touch()
            await self.refresh_tokens.put(record.object_path(), record)
            count += 1
        return count

    async def revoke_for_session(self, account_id: uuid.UUID, session_id: uuid.UUID) -> int:
        """Revoke the refresh tokens bound to one session.

        Returns:
            Number of tokens revoked
        """
        count = 0
        now = datetime.now(timezone.utc)
        for record in await self.refresh_tokens.list_records(prefix=f"{account_id}/"):
            if record.revoked or record.session_id != session_id:
                continue
            record.revoked = True
            record.revoked_at = now
            record.touch()
            await self.refresh_tokens.put(record.object_path(), record)
            count += 1
        return count

    async def list_refresh(self, account_id: uuid.UUID) -> list[RefreshToken]:
        """Active (unrevoked, unexpired) refresh tokens of an account, newest first."""
        records = await self.refresh_tokens.list_records(prefix=f"{account_id}/")
        active = [record for record in records if record.is_usable()]
        return sorted(active, key=lambda record: record.created_at, reverse=True)

    async def cleanup_expired(self) -> int:
        """Delete expired refresh tokens, and revoked ones past a day old.

        Returns:
            Number of records removed
        """
        now = datetime.now(timezone.utc)
        revoked_cutoff = now - timedelta(days=1)
        removed = 0
        for record in await self.refresh_tokens.list_records():
            if record.expires_at <= now or (
                record.revoked and record.revoked_at and record.revoked_at < revoked_cutoff
            ):
                await self.refresh_tokens.delete(record.object_path())
                removed += 1
        return removed
