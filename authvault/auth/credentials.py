"""Credential verification with account lockout.

Lock state machine::

    UNLOCKED --(N consecutive failures within the window)--> LOCKED(until)
    LOCKED   --(lock lapsed, next verification attempt)----> UNLOCKED
    LOCKED   --(admin unlock)------------------------------> UNLOCKED
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from authvault.auth.accounts import AccountRepository
from authvault.auth.attempts import LoginAttemptLog
from authvault.auth.context import RequestContext
from authvault.auth.models import Account, AccountView
from authvault.auth.passwords import PasswordHasher
from authvault.auth.validation import normalize_email
from authvault.core.exceptions import AccountLockedError, InvalidCredentialsError
from authvault.core.settings import AuthVaultSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutPolicy:
    max_failures: int = 5
    window: timedelta = timedelta(hours=1)
    duration: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: AuthVaultSettings) -> "LockoutPolicy":
        return cls(
            max_failures=settings.max_failed_logins,
            window=timedelta(minutes=settings.failed_login_window_minutes),
            duration=timedelta(minutes=settings.lockout_minutes),
        )


class CredentialVerifier:
    """Checks email/password pairs and maintains the lock state."""

    def __init__(
        self,
        accounts: AccountRepository,
        attempts: LoginAttemptLog,
        hasher: PasswordHasher,
        policy: LockoutPolicy | None = None,
    ):
        self.accounts = accounts
        self.attempts = attempts
        self.hasher = hasher
        self.policy = policy or LockoutPolicy()

    async def verify(
        self, email: str, password: str, context: RequestContext
    ) -> AccountView:
        """Verify a password login.

        Unknown accounts and passwordless accounts still pay for a bcrypt
        comparison so response timing does not reveal which accounts exist.

        Args:
            email: The email to authenticate (normalized here)
            password: The plain text password
            context: The calling request

        Returns:
            The account, without its password hash

        Raises:
            InvalidCredentialsError: Unknown account or wrong password
            AccountLockedError: The account is locked, or this failure locked it
        """
        email = normalize_email(email)
        account = await self.accounts.get_by_email(email)

        if account is None:
            await self.hasher.dummy_verify(password)
            await self.attempts.record(
                context, False, email=email, fail_reason="unknown_account"
            )
            raise InvalidCredentialsError()

        if account.is_locked:
            if account.lock_active():
                await self.attempts.record(
                    context, False, account.id, email, fail_reason="account_locked"
                )
                raise AccountLockedError(account.locked_until)
            account = await self.accounts.modify(account.id, clear_lock)
            await self.attempts.record_unlock(context, account.id, email)
            logger.info(f"Lock on account {account.id} lapsed; unlocked")

        if account.password_hash is None:
            await self.hasher.dummy_verify(password)
            await self.attempts.record(
                context, False, account.id, email, fail_reason="no_password"
            )
            raise InvalidCredentialsError()

        if not await self.hasher.verify(password, account.password_hash):
            await self.attempts.record(
                context, False, account.id, email, fail_reason="invalid_password"
            )
            await self._maybe_lock(account)
            raise InvalidCredentialsError()

        await self.attempts.record(context, True, account.id, email)
        account = await self.accounts.modify(account.id, _record_login)
        return account.public()

    async def _maybe_lock(self, account: Account) -> None:
        failures = await self.attempts.consecutive_failures(account.id, self.policy.window)
        if failures < self.policy.max_failures:
            return

        locked_until = datetime.now(timezone.utc) + self.policy.duration

        def lock(target: Account) -> None:
            target.is_locked = True
            target.locked_until = locked_until

        await self.accounts.modify(account.id, lock)
        logger.warning(
            f"Account {account.id} locked until {locked_until.isoformat()} "
            f"after {failures} failed attempts"
        )
        raise AccountLockedError(locked_until)


def clear_lock(account: Account) -> None:
    account.is_locked = False
    account.locked_until = None


def _record_login(account: Account) -> None:
    account.login_count += 1
    account.last_login_at = datetime.now(timezone.utc)
