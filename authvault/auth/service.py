"""Authentication service for AuthVault.

This service composes the credential verifier, token issuer, session
store and revocation ledger into the operations exposed over HTTP and
the CLI: registration, login, refresh, logout, request authentication,
self-service account changes and admin actions.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from authvault.auth.accounts import AccountRepository
from authvault.auth.attempts import LoginAttemptLog
from authvault.auth.blacklist import RevocationLedger
from authvault.auth.context import RequestContext
from authvault.auth.credentials import CredentialVerifier, LockoutPolicy, clear_lock
from authvault.auth.models import Account, AccountView, RefreshToken, Session
from authvault.auth.passwords import PasswordHasher, validate_password
from authvault.auth.sessions import SessionBundle, SessionStats, SessionStore
from authvault.auth.tokens import IssuedToken, TokenIssuer, TokenPayload
from authvault.auth.validation import (
    AdminAccountUpdate,
    AvailabilityQuery,
    ChangePasswordRequest,
    ChangeUsernameRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    check_email,
    check_username,
    normalize_email,
)
from authvault.core.exceptions import (
    AccountLockedError,
    ConflictError,
    ForbiddenError,
    InputValidationError,
    InvalidCredentialsError,
    NotFoundError,
    StoreConflictError,
    TokenRevokedError,
    UnauthorizedError,
)
from authvault.core.settings import AuthVaultSettings

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """The authenticated caller of a request."""

    account: AccountView
    session: Session | None = None
    claims: TokenPayload | None = None
    access_token: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.account.role == "admin"


@dataclass
class AuthResult:
    """Outcome of a login or registration."""

    account: AccountView
    bundle: SessionBundle


@dataclass
class RefreshResult:
    account: AccountView
    access_token: IssuedToken
    refresh_token: str
    refresh_expires_at: datetime
    rotated: bool
    session: Session | None = None


class AuthService:
    """Credential and session lifecycle operations."""

    def __init__(
        self,
        settings: AuthVaultSettings,
        accounts: AccountRepository,
        attempts: LoginAttemptLog,
        hasher: PasswordHasher,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        sessions: SessionStore,
        ledger: RevocationLedger,
    ):
        self.settings = settings
        self.accounts = accounts
        self.attempts = attempts
        self.hasher = hasher
        self.verifier = verifier
        self.issuer = issuer
        self.sessions = sessions
        self.ledger = ledger

    # ===== Accounts =====

    async def create_account(
        self,
        email: str,
        username: str,
        password: str | None,
        role: str = "user",
    ) -> Account:
        """Create an account, hashing its password.

        Args:
            email: The email (normalized here)
            username: The username
            password: The plain text password, or None for a passwordless account
            role: ``"user"`` or ``"admin"``

        Returns:
            The created account

        Raises:
            InputValidationError: If the password is too weak
            ConflictError: If the email or username is taken
        """
        password_hash = None
        if password is not None:
            is_valid, message = validate_password(password)
            if not is_valid:
                raise InputValidationError(message, field="password")
            password_hash = await self.hasher.hash(password)

        account = Account(
            email=normalize_email(email),
            username=username,
            password_hash=password_hash,
            role=role,
            password_changed_at=datetime.now(timezone.utc) if password_hash else None,
        )
        return await self.accounts.create(account)

    async def register(self, data: RegisterRequest, context: RequestContext) -> AuthResult:
        """Create an account and log it in.

        Registration always issues a refresh token alongside the session.

        Raises:
            ConflictError: If the email or username is taken
        """
        if data.device_info:
            context = context.with_device(data.device_info.to_device())

        account = await self.create_account(data.email, data.username, data.password)
        view = account.public()
        bundle = await self.sessions.create(view, context, remember_me=False, issue_refresh=True)
        await self.attempts.record(context, True, account.id, account.email, action="register")
        return AuthResult(account=view, bundle=bundle)

    async def login(self, data: LoginRequest, context: RequestContext) -> AuthResult:
        """Verify credentials and start a session.

        Raises:
            InvalidCredentialsError: Unknown account or wrong password
            AccountLockedError: The account is locked
        """
        if data.device_info:
            context = context.with_device(data.device_info.to_device())

        view = await self.verifier.verify(data.email, data.password, context)
        bundle = await self.sessions.create(view, context, remember_me=data.remember_me)
        logger.info(f"Account {view.id} logged in from {context.ip_address}")
        return AuthResult(account=view, bundle=bundle)

    async def check_availability(self, query: AvailabilityQuery) -> dict:
        """Report whether an email and/or username can still be registered."""
        result = {}
        if query.email:
            try:
                email = check_email(query.email)
            except ValueError as e:
                result["email"] = {"available": False, "reason": str(e)}
            else:
                taken = await self.accounts.email_taken(email)
                result["email"] = {
                    "available": not taken,
                    "reason": "Email already registered" if taken else None,
                }
        if query.username:
            try:
                username = check_username(query.username)
            except ValueError as e:
                result["username"] = {"available": False, "reason": str(e)}
            else:
                taken = await self.accounts.username_taken(username)
                result["username"] = {
                    "available": not taken,
                    "reason": "Username already taken" if taken else None,
                }
        return result

    # ===== Request authentication =====

    async def authenticate(
        self, context: RequestContext, require_admin: bool = False
    ) -> AuthContext:
        """Resolve the caller of a request.

        The access token (bearer header, then ``auth-token`` cookie) is
        verified, checked against the revocation ledger and its session;
        without one, the opaque ``session-token`` cookie is used.

        Raises:
            UnauthorizedError: No valid credentials
            AccountLockedError: The account is locked
            ForbiddenError: Admin required, or CSRF check failed
        """
        token = context.access_token
        claims = None
        session = None

        if token:
            try:
                claims = self.issuer.verify(token, "access")
            except UnauthorizedError as e:
                logger.info(f"Rejected access token from {context.ip_address}: {e.message}")
                raise UnauthorizedError("Invalid or expired token") from e
            if await self.ledger.is_blacklisted(token):
                logger.info(f"Rejected revoked token for account {claims.sub}")
                raise UnauthorizedError("Invalid or expired token")
            account_id = claims.sub
            if claims.sid:
                session = await self.sessions.get_active(account_id, claims.sid)
                if session is None:
                    raise UnauthorizedError("Session has ended")
        elif context.session_token:
            session = await self.sessions.validate(context.session_token)
            if session is None:
                raise UnauthorizedError("Invalid or expired session")
            account_id = session.account_id
        else:
            raise UnauthorizedError("Authentication token required")

        account = await self.accounts.get(account_id)
        if account is None:
            raise UnauthorizedError("Invalid or expired token")
        if account.lock_active():
            raise AccountLockedError(account.locked_until)
        if require_admin and account.role != "admin":
            raise ForbiddenError("Administrator role required")

        if self.settings.enforce_csrf:
            self.sessions.validate_csrf(context, session)

        return AuthContext(
            account=account.public(),
            session=session,
            claims=claims,
            access_token=token,
        )

    # ===== Refresh =====

    async def refresh(
        self, refresh_token: str | None, context: RequestContext
    ) -> RefreshResult:
        """Exchange a refresh token for a new access token.

        The refresh token is replaced only when it is close to expiry; the
        replacement is exactly-once even under concurrent refreshes. A session
        that has ended does not block renewal; the access token is then
        issued without a session.

        Raises:
            UnauthorizedError: Missing, invalid, revoked or already-rotated token
            AccountLockedError: The account is locked
        """
        token = refresh_token or context.refresh_token
        if not token:
            raise UnauthorizedError("Refresh token required")

        try:
            payload = self.issuer.verify(token, "refresh")
        except UnauthorizedError as e:
            logger.info(f"Rejected refresh token from {context.ip_address}: {e.message}")
            raise UnauthorizedError("Invalid or expired refresh token") from e

        if await self.ledger.is_blacklisted(token):
            raise TokenRevokedError("Invalid or expired refresh token")

        found = await self.issuer.get_refresh_record(payload.sub, token)
        if found is None or not found[0].is_usable():
            raise TokenRevokedError("Invalid or expired refresh token")
        record, etag = found

        account = await self.accounts.get(payload.sub)
        if account is None:
            raise UnauthorizedError("Invalid or expired refresh token")
        if account.lock_active():
            raise AccountLockedError(account.locked_until)
        view = account.public()

        session = None
        auth_method = "credentials"
        if record.session_id:
            session = await self.sessions.refresh(account.id, record.session_id)
            if session is None:
                # Logout and invalidate_all revoke the tokens that must stop working
                logger.info(
                    f"Session {record.session_id} has ended; "
                    f"renewing account {account.id} without it"
                )
            else:
                auth_method = session.auth_method

        new_token, expires_at, rotated = token, record.expires_at, False
        if self.issuer.needs_rotation(payload):
            issued = await self.issuer.rotate_refresh(view, record, etag, context)
            new_token, expires_at, rotated = issued.token, issued.expires_at, True

        access = self.issuer.issue_access(view, session.id if session else None, auth_method)
        return RefreshResult(
            account=view,
            access_token=access,
            refresh_token=new_token,
            refresh_expires_at=expires_at,
            rotated=rotated,
            session=session,
        )

    # ===== Logout =====

    async def _revoke_presented_refresh(
        self, auth: AuthContext, refresh_token: str | None, reason: str
    ) -> None:
        if not refresh_token:
            return
        try:
            payload = self.issuer.verify(refresh_token, "refresh")
        except UnauthorizedError:
            logger.debug("Ignoring invalid refresh token presented at logout")
            return
        if payload.sub != auth.account.id:
            return
        await self.ledger.blacklist(
            refresh_token, auth.account.id, reason, payload.expires_at, payload.jti
        )
        await self.issuer.revoke_refresh(auth.account.id, refresh_token)

    async def logout(
        self,
        auth: AuthContext,
        context: RequestContext,
        logout_all: bool = False,
        reason: str | None = None,
        refresh_token: str | None = None,
    ) -> dict:
        """End the caller's session, or every session of the account.

        The presented access and refresh tokens are blacklisted so they stop
        working immediately.

        Returns:
            Counts of invalidated sessions and revoked refresh tokens
        """
        reason = reason or ("logout_all" if logout_all else "logout")
        account_id = auth.account.id

        if auth.access_token and auth.claims:
            await self.ledger.blacklist(
                auth.access_token,
                account_id,
                reason,
                auth.claims.expires_at,
                auth.claims.jti,
            )
        await self._revoke_presented_refresh(
            auth, refresh_token or context.refresh_token, reason
        )

        if logout_all:
            counts = await self.sessions.invalidate_all(account_id)
        else:
            sessions = 0
            refresh_tokens = 0
            if auth.session:
                if await self.sessions.invalidate_by_id(account_id, auth.session.id):
                    sessions += 1
                refresh_tokens = await self.issuer.revoke_for_session(account_id, auth.session.id)
            if context.session_token and await self.sessions.invalidate(context.session_token):
                sessions += 1
            counts = {"sessions": sessions, "refresh_tokens": refresh_tokens}

        logger.info(f"Account {account_id} logged out (all={logout_all}, reason={reason})")
        return {"logout_all": logout_all, **counts}

    async def force_logout(
        self, admin: AuthContext, account_id: str, reason: str | None = None
    ) -> dict:
        """Invalidate every session of another account.

        Raises:
            InputValidationError: If ``account_id`` is not a UUID
            NotFoundError: If the account does not exist
        """
        target_id = self._parse_account_id(account_id, "userId")
        if await self.accounts.get(target_id) is None:
            raise NotFoundError("Account not found")

        counts = await self.sessions.invalidate_all(target_id)
        logger.warning(
            f"Admin {admin.account.id} forced logout of account {target_id} "
            f"(reason: {reason or 'admin_action'})"
        )
        return {"account_id": str(target_id), **counts}

    # ===== Self-service =====

    async def change_password(
        self,
        auth: AuthContext,
        data: ChangePasswordRequest,
        context: RequestContext,
    ) -> dict:
        """Replace the caller's password and end all of their sessions.

        The update is a single compare-and-swap write, so among concurrent
        changes for one account at most one succeeds.

        Raises:
            InvalidCredentialsError: The current password is wrong
            ConflictError: The account changed underneath this request
        """
        found = await self.accounts.get_versioned(auth.account.id)
        if found is None:
            raise UnauthorizedError("Invalid or expired token")
        account, etag = found

        if not await self.hasher.verify(data.current_password, account.password_hash):
            await self.attempts.record(
                context,
                False,
                account.id,
                account.email,
                fail_reason="invalid_password",
                action="change_password",
            )
            raise InvalidCredentialsError("Current password is incorrect")

        account.password_hash = await self.hasher.hash(data.new_password)
        account.password_changed_at = datetime.now(timezone.utc)
        try:
            await self.accounts.save(account, etag)
        except StoreConflictError:
            logger.warning(f"Concurrent password change rejected for account {account.id}")
            raise ConflictError("Account was modified concurrently, please retry")

        if auth.access_token and auth.claims:
            await self.ledger.blacklist(
                auth.access_token,
                account.id,
                "password_change",
                auth.claims.expires_at,
                auth.claims.jti,
            )
        counts = await self.sessions.invalidate_all(account.id)
        logger.info(f"Password changed for account {account.id}")
        return counts

    async def change_username(
        self, auth: AuthContext, data: ChangeUsernameRequest
    ) -> AccountView:
        """Rename the caller's account.

        Raises:
            InputValidationError: The new username equals the current one
            ConflictError: The username is taken
        """
        found = await self.accounts.get_versioned(auth.account.id)
        if found is None:
            raise UnauthorizedError("Invalid or expired token")
        account, etag = found

        if data.new_username == account.username:
            raise InputValidationError(
                "New username must be different from the current username",
                field="newUsername",
            )
        account = await self.accounts.change_username(account, etag, data.new_username)
        logger.info(f"Account {account.id} changed username to {account.username}")
        return account.public()

    async def update_profile(
        self, auth: AuthContext, data: ProfileUpdateRequest
    ) -> tuple[AccountView, list[str]]:
        """Change the caller's username and/or email.

        Fields equal to the current values are ignored. Both index moves and
        the account write succeed together or not at all.

        Returns:
            The updated account and the names of the fields that changed

        Raises:
            InputValidationError: Nothing would change
            ConflictError: The username or email is taken
        """
        found = await self.accounts.get_versioned(auth.account.id)
        if found is None:
            raise UnauthorizedError("Invalid or expired token")
        account, etag = found

        username = data.username if data.username and data.username != account.username else None
        email = data.email if data.email and data.email != account.email else None
        changes = [name for name, value in (("username", username), ("email", email)) if value]
        if not changes:
            raise InputValidationError("Profile is already up to date")

        account = await self.accounts.update_identity(account, etag, username=username, email=email)
        logger.info(f"Account {account.id} updated profile fields {changes}")
        return account.public(), changes

    async def session_info(self, auth: AuthContext) -> SessionStats:
        return await self.sessions.stats(auth.account.id)

    async def list_sessions(self, auth: AuthContext) -> list[Session]:
        return await self.sessions.list_active(auth.account.id)

    async def list_refresh_tokens(self, auth: AuthContext) -> list[RefreshToken]:
        return await self.issuer.list_refresh(auth.account.id)

    # ===== Admin =====

    def _parse_account_id(self, value: str, field: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise InputValidationError("Invalid account id", field=field)

    async def list_accounts(self, limit: int | None = None) -> list[AccountView]:
        return [account.public() for account in await self.accounts.list_accounts(limit)]

    async def update_account(
        self,
        admin: AuthContext,
        account_id: str,
        update: AdminAccountUpdate,
        context: RequestContext,
    ) -> AccountView:
        """Change another account's role or lock state.

        Setting ``lockedUntil`` without ``isLocked`` locks until that time;
        ``isLocked: true`` alone locks indefinitely; unlocking clears the
        lock time and ends the failure streak.

        Raises:
            ForbiddenError: An admin tried to change their own account
            NotFoundError: The account does not exist
        """
        target_id = self._parse_account_id(account_id, "accountId")
        if target_id == admin.account.id:
            raise ForbiddenError("Administrators cannot change their own role or lock state")

        def apply(account: Account) -> None:
            if update.role is not None:
                account.role = update.role
            if update.is_locked is False:
                clear_lock(account)
            elif update.is_locked or update.locked_until is not None:
                account.is_locked = True
                account.locked_until = update.locked_until

        account = await self.accounts.modify(target_id, apply)
        if update.is_locked is False:
            await self.attempts.record_unlock(context, account.id, account.email)

        logger.warning(
            f"Admin {admin.account.id} updated account {account.id}: "
            f"{update.model_dump(exclude_none=True, mode='json')}"
        )
        return account.public()

    async def set_role(self, email: str, role: str) -> AccountView:
        account = await self.accounts.get_by_email(email)
        if account is None:
            raise NotFoundError("Account not found")

        def apply(target: Account) -> None:
            target.role = role

        return (await self.accounts.modify(account.id, apply)).public()

    async def unlock(self, email: str, context: RequestContext) -> AccountView:
        account = await self.accounts.get_by_email(email)
        if account is None:
            raise NotFoundError("Account not found")
        account = await self.accounts.modify(account.id, clear_lock)
        await self.attempts.record_unlock(context, account.id, account.email)
        return account.public()

    async def cleanup(self) -> dict:
        """Purge expired sessions, refresh tokens, revocations and old attempts."""
        counts = {
            "sessions": await self.sessions.cleanup_expired(),
            "refresh_tokens": await self.issuer.cleanup_expired(),
            "revocations": await self.ledger.cleanup(),
            "login_attempts": await self.attempts.cleanup(),
        }
        logger.info(f"Cleanup removed {counts}")
        return counts


def build_auth_service(
    settings: AuthVaultSettings, s3_client, bucket_name: str | None = None
) -> AuthService:
    """Wire an AuthService and its components around one S3 client."""
    bucket = bucket_name or settings.aws_bucket_name
    base_path = settings.s3_base_path

    accounts = AccountRepository(s3_client, bucket, base_path)
    attempts = LoginAttemptLog(s3_client, bucket, base_path)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(settings, s3_client, bucket)
    return AuthService(
        settings=settings,
        accounts=accounts,
        attempts=attempts,
        hasher=hasher,
        verifier=CredentialVerifier(
            accounts, attempts, hasher, LockoutPolicy.from_settings(settings)
        ),
        issuer=issuer,
        sessions=SessionStore(settings, s3_client, issuer, bucket),
        ledger=RevocationLedger(s3_client, bucket, base_path, issuer.refresh_ttl),
    )
