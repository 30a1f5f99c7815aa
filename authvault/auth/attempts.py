"""Audit log of credential verification attempts.

Attempts are stored per account under keys that start with a sortable
timestamp, so the recent window can be listed with ``StartAfter`` instead
of scanning an account's whole history.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from authvault.auth.context import RequestContext
from authvault.auth.models import ATTEMPT_KEY_FORMAT, UNKNOWN_ACCOUNT, LoginAttempt
from authvault.core.store import S3RecordStore

logger = logging.getLogger(__name__)


class LoginAttemptLog:
    """Records attempts and answers lockout questions about them."""

    def __init__(self, s3_client, bucket_name: str, base_path: str = ""):
        self.attempts = S3RecordStore(
            LoginAttempt, s3_client, bucket_name, LoginAttempt._collection, base_path
        )

    async def record(
        self,
        context: RequestContext,
        success: bool,
        account_id: uuid.UUID | None = None,
        email: str | None = None,
        fail_reason: str | None = None,
        action: str = "login",
    ) -> LoginAttempt:
        attempt = LoginAttempt(
            account_id=account_id,
            email=email,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            success=success,
            fail_reason=fail_reason,
            action=action,
        )
        await self.attempts.create(attempt.object_path(), attempt)
        if not success:
            logger.warning(
                f"Failed {action} for {email or account_id} from {context.ip_address}: {fail_reason}"
            )
        return attempt

    async def record_unlock(
        self,
        context: RequestContext,
        account_id: uuid.UUID,
        email: str | None = None,
    ) -> LoginAttempt:
        """Mark an unlock; it ends the current failure streak like a success does."""
        return await self.record(context, True, account_id, email, action="unlock")

    def _owner(self, account_id: uuid.UUID | None) -> str:
        return str(account_id) if account_id else UNKNOWN_ACCOUNT

    async def recent(
        self, account_id: uuid.UUID | None, window: timedelta
    ) -> list[LoginAttempt]:
        """Attempts for an account inside ``window``, oldest first."""
        owner = self._owner(account_id)
        since = datetime.now(timezone.utc) - window
        return await self.attempts.list_records(
            prefix=f"{owner}/",
            start_after=f"{owner}/{since.strftime(ATTEMPT_KEY_FORMAT)}",
        )

    async def consecutive_failures(
        self, account_id: uuid.UUID, window: timedelta
    ) -> int:
        """Count failures since the most recent success within ``window``."""
        count = 0
        for attempt in reversed(await self.recent(account_id, window)):
            if attempt.success:
                break
            count += 1
        return count

    async def cleanup(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Delete attempts older than ``older_than``.

        Returns:
            Number of attempts removed
        """
        cutoff = (datetime.now(timezone.utc) - older_than).strftime(ATTEMPT_KEY_FORMAT)
        removed = 0
        for path in await self.attempts.list_paths():
            stamp = path.split("/", 1)[-1]
            if stamp < cutoff:
                await self.attempts.delete(path)
                removed += 1
        return removed
