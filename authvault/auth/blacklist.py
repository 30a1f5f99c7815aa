"""Revocation ledger for tokens that must stop working before they expire.

Entries are keyed by the SHA-256 hash of the token; raw tokens are never
stored. Lookups always go to the store so every process sees a revocation
as soon as it is written.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from authvault.auth.models import RevocationEntry
from authvault.auth.tokens import hash_token
from authvault.core.exceptions import StoreConflictError
from authvault.core.store import S3RecordStore

logger = logging.getLogger(__name__)


class RevocationLedger:
    """Persistent token blacklist."""

    def __init__(
        self,
        s3_client,
        bucket_name: str,
        base_path: str = "",
        default_ttl: timedelta = timedelta(days=30),
    ):
        """Initialize the ledger.

        Args:
            s3_client: The S3 client to use
            bucket_name: S3 bucket name for persistence
            base_path: Prefix shared by every AuthVault collection
            default_ttl: How long to keep entries whose token expiry is unknown
        """
        self.entries = S3RecordStore(
            RevocationEntry,
            s3_client,
            bucket_name,
            RevocationEntry._collection,
            base_path,
        )
        self.default_ttl = default_ttl

    async def blacklist(
        self,
        token: str,
        account_id: uuid.UUID | None,
        reason: str | None = None,
        expires_at: datetime | None = None,
        jti: str | None = None,
    ) -> RevocationEntry:
        """Add a token to the blacklist. Blacklisting twice is harmless.

        Args:
            token: The raw token to revoke
            account_id: The account the token belongs to
            reason: Why the token was revoked (e.g. ``"logout"``)
            expires_at: When the token expires (for cleanup)
            jti: The token's JWT ID, kept for auditing

        Returns:
            The stored (or already existing) entry
        """
        entry = RevocationEntry(
            token_hash=hash_token(token),
            jti=jti,
            account_id=account_id,
            reason=reason,
            expires_at=expires_at or datetime.now(timezone.utc) + self.default_ttl,
        )
        try:
            await self.entries.create(entry.object_path(), entry)
        except StoreConflictError:
            logger.debug(f"Token for account {account_id} was already blacklisted")
            existing = await self.entries.get(entry.object_path())
            return existing or entry

        logger.info(f"Blacklisted token for account {account_id} (reason: {reason})")
        return entry

    async def is_blacklisted(self, token: str) -> bool:
        """Check if a token is blacklisted.

        Args:
            token: The raw token to check

        Returns:
            True if the token is blacklisted, False otherwise
        """
        return await self.entries.exists(hash_token(token))

    async def cleanup(self) -> int:
        """Remove entries whose tokens have expired on their own.

        Returns:
            Number of entries removed
        """
        now = datetime.now(timezone.utc)
        removed = 0
        for entry in await self.entries.list_records():
            if entry.expires_at <= now:
                await self.entries.delete(entry.object_path())
                removed += 1
        if removed:
            logger.info(f"Removed {removed} expired revocation entries")
        return removed
