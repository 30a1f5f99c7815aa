"""Typed JSON record collections stored in S3.

Each collection lives under ``{base_path}{collection}/`` and each record is
one JSON object. Uniqueness relies on conditional creates (``If-None-Match``)
and read-modify-write cycles on ``If-Match`` with the object's ETag, so
concurrent writers are arbitrated by the store rather than by the process.
"""

import logging
from typing import Any, Generic, Type, TypeVar

from botocore.exceptions import ClientError
from pydantic import BaseModel

from authvault.core.exceptions import StoreConflictError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
PRECONDITION_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict"}


def error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3RecordStore(Generic[T]):
    """A collection of pydantic records persisted as JSON objects in S3."""

    def __init__(
        self,
        model_class: Type[T],
        s3_client: Any,
        bucket_name: str,
        collection: str,
        base_path: str = "",
    ):
        """Initialize the store.

        Args:
            model_class: The pydantic model stored in this collection
            s3_client: An aiobotocore S3 client (or a compatible test double)
            bucket_name: The S3 bucket holding the collection
            collection: Key prefix of the collection
            base_path: Prefix shared by every AuthVault collection
        """
        self.model_class = model_class
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.collection = collection
        self.prefix = f"{base_path}{collection}/"

    def key_for(self, path: str) -> str:
        return f"{self.prefix}{path}.json"

    def path_for(self, key: str) -> str:
        return key[len(self.prefix):].removesuffix(".json")

    def _serialize(self, record: T) -> bytes:
        return record.model_dump_json().encode("utf-8")

    def _deserialize(self, body: bytes) -> T:
        return self.model_class.model_validate_json(body)

    def _wrap(self, error: ClientError, operation: str, key: str) -> StoreError:
        logger.error(f"S3 {operation} failed for {key}: {error}")
        return StoreError(
            f"S3 {operation} failed: {error_code(error) or error}",
            operation=operation,
            key=key,
            original_error=error,
        )

    async def create(self, path: str, record: T) -> str:
        """Store a record only if nothing exists at ``path`` yet.

        Args:
            path: Record path inside the collection
            record: The record to store

        Returns:
            The ETag of the new object

        Raises:
            StoreConflictError: If an object already exists at the path
            StoreError: If the write fails for another reason
        """
        key = self.key_for(path)
        try:
            response = await self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=self._serialize(record),
                ContentType="application/json",
                IfNoneMatch="*",
            )
        except ClientError as e:
            if error_code(e) in PRECONDITION_CODES:
                raise StoreConflictError(key) from e
            raise self._wrap(e, "put_object", key) from e
        return response.get("ETag", "")

    async def put(self, path: str, record: T, if_match: str | None = None) -> str:
        """Store a record, optionally only if it still has a known ETag.

        Args:
            path: Record path inside the collection
            record: The record to store
            if_match: ETag the current object must have for the write to apply

        Returns:
            The ETag of the written object

        Raises:
            StoreConflictError: If ``if_match`` no longer matches
            StoreError: If the write fails for another reason
        """
        key = self.key_for(path)
        kwargs = {}
        if if_match is not None:
            kwargs["IfMatch"] = if_match
        try:
            response = await self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=self._serialize(record),
                ContentType="application/json",
                **kwargs,
            )
        except ClientError as e:
            if error_code(e) in PRECONDITION_CODES or (
                if_match is not None and error_code(e) in NOT_FOUND_CODES
            ):
                raise StoreConflictError(key) from e
            raise self._wrap(e, "put_object", key) from e
        return response.get("ETag", "")

    async def get_versioned(self, path: str) -> tuple[T, str] | None:
        """Fetch a record together with its ETag.

        Returns:
            ``(record, etag)`` or None if the record does not exist
        """
        key = self.key_for(path)
        try:
            response = await self.s3_client.get_object(
                Bucket=self.bucket_name, Key=key
            )
            body = await response["Body"].read()
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                return None
            raise self._wrap(e, "get_object", key) from e
        return self._deserialize(body), response.get("ETag", "")

    async def get(self, path: str) -> T | None:
        found = await self.get_versioned(path)
        return found[0] if found else None

    async def exists(self, path: str) -> bool:
        key = self.key_for(path)
        try:
            await self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                return False
            raise self._wrap(e, "head_object", key) from e
        return True

    async def delete(self, path: str) -> None:
        """Delete a record. Deleting a missing record is not an error."""
        key = self.key_for(path)
        try:
            await self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                return
            raise self._wrap(e, "delete_object", key) from e

    async def list_paths(
        self,
        prefix: str = "",
        start_after: str | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """List record paths under ``prefix`` in lexicographic order.

        Args:
            prefix: Path prefix inside the collection
            start_after: Only return paths sorting after this path
            limit: Maximum number of paths to return

        Returns:
            Record paths, without the collection prefix or extension
        """
        full_prefix = f"{self.prefix}{prefix}"
        kwargs = {"Bucket": self.bucket_name, "Prefix": full_prefix}
        if start_after:
            kwargs["StartAfter"] = f"{self.prefix}{start_after}"

        paths: list[str] = []
        while True:
            try:
                response = await self.s3_client.list_objects_v2(**kwargs)
            except ClientError as e:
                raise self._wrap(e, "list_objects_v2", full_prefix) from e

            for obj in response.get("Contents", []):
                if obj["Key"].endswith(".json"):
                    paths.append(self.path_for(obj["Key"]))
                    if limit is not None and len(paths) >= limit:
                        return paths

            if not response.get("IsTruncated"):
                return paths
            kwargs["ContinuationToken"] = response["NextContinuationToken"]

    async def list_records(
        self,
        prefix: str = "",
        start_after: str | None = None,
        limit: int | None = None,
    ) -> list[T]:
        """Load every record under ``prefix``.

        Records deleted between the listing and the read are skipped.
        """
        records = []
        for path in await self.list_paths(prefix, start_after, limit):
            record = await self.get(path)
            if record is not None:
                records.append(record)
        return records
