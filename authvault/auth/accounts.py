"""Account persistence with store-enforced email and username uniqueness."""

import logging
import uuid
from collections.abc import Callable

from authvault.auth.models import Account, AccountIndex
from authvault.auth.validation import normalize_email
from authvault.core.exceptions import (
    ConflictError,
    NotFoundError,
    StoreConflictError,
    StoreError,
)
from authvault.core.store import S3RecordStore

logger = logging.getLogger(__name__)

TAKEN_MESSAGES = {
    "email": "An account with this email already exists",
    "username": "This username is already taken",
}


class AccountRepository:
    """Reads and writes accounts and their uniqueness indexes.

    The normalized email and the lower-cased username each own an index
    object created with a conditional write, so two registrations racing
    for the same email or username cannot both succeed.
    """

    def __init__(self, s3_client, bucket_name: str, base_path: str = ""):
        self.records = S3RecordStore(
            Account, s3_client, bucket_name, Account._collection, base_path
        )
        self.emails = S3RecordStore(
            AccountIndex, s3_client, bucket_name, "account_emails", base_path
        )
        self.usernames = S3RecordStore(
            AccountIndex, s3_client, bucket_name, "account_usernames", base_path
        )

    async def get(self, account_id: uuid.UUID | str) -> Account | None:
        return await self.records.get(str(account_id))

    async def get_versioned(
        self, account_id: uuid.UUID | str
    ) -> tuple[Account, str] | None:
        return await self.records.get_versioned(str(account_id))

    async def get_by_email(self, email: str) -> Account | None:
        index = await self.emails.get(normalize_email(email))
        if index is None:
            return None
        return await self.get(index.account_id)

    async def get_by_username(self, username: str) -> Account | None:
        index = await self.usernames.get(username.lower())
        if index is None:
            return None
        return await self.get(index.account_id)

    async def email_taken(self, email: str) -> bool:
        return await self.emails.exists(normalize_email(email))

    async def username_taken(self, username: str) -> bool:
        return await self.usernames.exists(username.lower())

    async def create(self, account: Account) -> Account:
        """Persist a new account, claiming its email and username.

        Args:
            account: The account to create; its email must be normalized

        Returns:
            The created account

        Raises:
            ConflictError: If the email or username is already taken
        """
        account.email = normalize_email(account.email)
        index = AccountIndex(account_id=account.id)

        try:
            await self.emails.create(account.email, index)
        except StoreConflictError:
            raise ConflictError(TAKEN_MESSAGES["email"], field="email")

        try:
            await self.usernames.create(account.username.lower(), index)
        except StoreConflictError:
            await self.emails.delete(account.email)
            raise ConflictError(TAKEN_MESSAGES["username"], field="username")

        try:
            await self.records.create(account.object_path(), account)
        except StoreError:
            await self.emails.delete(account.email)
            await self.usernames.delete(account.username.lower())
            raise

        logger.info(f"Created account {account.id} ({account.email})")
        return account

    async def save(self, account: Account, etag: str) -> str:
        """Write an account back only if it is unchanged since it was read.

        Raises:
            StoreConflictError: If another writer got there first
        """
        account.touch()
        return await self.records.put(account.object_path(), account, if_match=etag)

    async def modify(
        self,
        account_id: uuid.UUID | str,
        mutate: Callable[[Account], None],
        retries: int = 3,
    ) -> Account:
        """Apply ``mutate`` in a compare-and-swap loop.

        Use this for updates that are safe to re-apply on fresh state, such as
        counters and lock flags.

        Raises:
            NotFoundError: If the account does not exist
            ConflictError: If every attempt lost a race
        """
        for _ in range(retries):
            found = await self.get_versioned(account_id)
            if found is None:
                raise NotFoundError("Account not found")
            account, etag = found
            mutate(account)
            try:
                await self.save(account, etag)
                return account
            except StoreConflictError:
                logger.debug(f"Concurrent update on account {account_id}, retrying")
        raise ConflictError("Account was modified concurrently, please retry")

    async def change_username(
        self, account: Account, etag: str, new_username: str
    ) -> Account:
        """Move an account to a new username.

        Raises:
            ConflictError: If the username is taken or the account changed
        """
        return await self.update_identity(account, etag, username=new_username)

    async def update_identity(
        self,
        account: Account,
        etag: str,
        username: str | None = None,
        email: str | None = None,
    ) -> Account:
        """Move an account to a new username and/or email.

        New index entries are claimed before the account is written and the
        old ones released after it, so lookups never miss the account. If
        any step fails the claims made so far are released.

        Args:
            account: The account as read
            etag: The ETag it was read with
            username: The new username, if it changes
            email: The new email, if it changes (normalized here)

        Returns:
            The updated account

        Raises:
            ConflictError: If the username or email is taken or the account changed
        """
        moves = []
        if username is not None:
            moves.append((self.usernames, account.username.lower(), username.lower(), "username"))
        if email is not None:
            email = normalize_email(email)
            moves.append((self.emails, account.email, email, "email"))

        index = AccountIndex(account_id=account.id)
        claimed = []
        try:
            for store, old_key, new_key, field in moves:
                if new_key == old_key:
                    continue
                try:
                    await store.create(new_key, index)
                except StoreConflictError:
                    raise ConflictError(TAKEN_MESSAGES[field], field=field)
                claimed.append((store, new_key))

            if username is not None:
                account.username = username
            if email is not None:
                account.email = email
            try:
                await self.save(account, etag)
            except StoreConflictError:
                raise ConflictError("Account was modified concurrently, please retry")
        except (ConflictError, StoreError):
            for store, key in claimed:
                await store.delete(key)
            raise

        for store, old_key, new_key, _ in moves:
            if new_key != old_key:
                await store.delete(old_key)
        return account

    async def list_accounts(self, limit: int | None = None) -> list[Account]:
        return await self.records.list_records(limit=limit)
