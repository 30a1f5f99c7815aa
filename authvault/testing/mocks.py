"""Mock S3 client for testing AuthVault without external dependencies."""

import hashlib
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict
from unittest.mock import AsyncMock

from botocore.exceptions import ClientError


def _precondition_failed(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "PreconditionFailed",
                "Message": "At least one of the pre-conditions you specified did not hold",
            },
            "ResponseMetadata": {"HTTPStatusCode": 412},
        },
        operation,
    )


class InMemoryS3:
    """In-memory S3 mock for testing without external dependencies.

    Implements the subset of the S3 API AuthVault uses, including
    conditional writes (``IfNoneMatch="*"`` and ``IfMatch=<etag>``) and
    ``StartAfter`` on listings.

    Example:
        >>> s3 = InMemoryS3()
        >>> await s3.put_object(Bucket="test", Key="data.json", Body=b'{"id": 1}')
        >>> response = await s3.get_object(Bucket="test", Key="data.json")
        >>> data = await response["Body"].read()
    """

    def __init__(self):
        """Initialize the in-memory S3 mock."""
        # Storage: {bucket_name: {key: bytes}}
        self._storage: Dict[str, Dict[str, bytes]] = {}
        # Metadata: {bucket_name: {key: dict}}
        self._metadata: Dict[str, Dict[str, dict]] = {}
        self._version = 0

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure a bucket exists in storage."""
        if bucket not in self._storage:
            self._storage[bucket] = {}
            self._metadata[bucket] = {}

    async def create_bucket(self, Bucket: str, **kwargs) -> dict:
        self._ensure_bucket(Bucket)
        return {}

    async def head_bucket(self, Bucket: str, **kwargs) -> dict:
        """Check if a bucket exists.

        Raises:
            ClientError: If bucket doesn't exist
        """
        if Bucket not in self._storage:
            raise ClientError(
                {"Error": {"Code": "404", "Message": "Bucket not found"}},
                "HeadBucket"
            )
        return {}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes | str,
        ContentType: str = "application/octet-stream",
        IfNoneMatch: str | None = None,
        IfMatch: str | None = None,
        **kwargs
    ) -> dict:
        """Store an object in the mock S3.

        Args:
            Bucket: The bucket name
            Key: The object key
            Body: The object data (bytes or string)
            ContentType: The content type
            IfNoneMatch: ``"*"`` to only write when the key is absent
            IfMatch: Only write when the current ETag equals this value

        Returns:
            Dict with ETag

        Raises:
            ClientError: PreconditionFailed when a condition does not hold,
                NoSuchKey when ``IfMatch`` targets a missing key
        """
        self._ensure_bucket(Bucket)
        existing = self._metadata[Bucket].get(Key)

        if IfNoneMatch == "*" and Key in self._storage[Bucket]:
            raise _precondition_failed("PutObject")
        if IfMatch is not None:
            if existing is None:
                raise ClientError(
                    {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                    "PutObject"
                )
            if existing["ETag"] != IfMatch:
                raise _precondition_failed("PutObject")

        if isinstance(Body, str):
            Body = Body.encode("utf-8")

        # Versioned ETags keep identical rewrites distinguishable.
        self._version += 1
        etag = hashlib.md5(Body + str(self._version).encode()).hexdigest()

        self._storage[Bucket][Key] = Body
        self._metadata[Bucket][Key] = {
            "ContentType": ContentType,
            "ContentLength": len(Body),
            "LastModified": datetime.now(timezone.utc),
            "ETag": f'"{etag}"',
        }

        return {"ETag": self._metadata[Bucket][Key]["ETag"]}

    async def get_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        """Retrieve an object from the mock S3.

        Returns:
            Dict with Body (AsyncMock with read method) and ETag

        Raises:
            ClientError: If object doesn't exist
        """
        if Bucket not in self._storage or Key not in self._storage[Bucket]:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject"
            )

        body = AsyncMock()
        body.read = AsyncMock(return_value=self._storage[Bucket][Key])

        metadata = self._metadata[Bucket].get(Key, {})

        return {
            "Body": body,
            "ContentType": metadata.get("ContentType", "application/octet-stream"),
            "ContentLength": metadata.get("ContentLength", len(self._storage[Bucket][Key])),
            "LastModified": metadata.get("LastModified", datetime.now(timezone.utc)),
            "ETag": metadata.get("ETag", '"mock-etag"'),
        }

    async def delete_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        if Bucket in self._storage and Key in self._storage[Bucket]:
            del self._storage[Bucket][Key]
            self._metadata[Bucket].pop(Key, None)
        return {}

    async def head_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        """Get object metadata without retrieving the object.

        Raises:
            ClientError: If object doesn't exist
        """
        if Bucket not in self._storage or Key not in self._storage[Bucket]:
            raise ClientError(
                {"Error": {"Code": "404", "Message": "Not Found"}},
                "HeadObject"
            )

        metadata = self._metadata[Bucket].get(Key, {})
        return {
            "ContentLength": metadata.get("ContentLength", len(self._storage[Bucket][Key])),
            "ContentType": metadata.get("ContentType", "application/octet-stream"),
            "LastModified": metadata.get("LastModified", datetime.now(timezone.utc)),
            "ETag": metadata.get("ETag", '"mock-etag"'),
        }

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        MaxKeys: int = 1000,
        ContinuationToken: str | None = None,
        StartAfter: str | None = None,
        **kwargs
    ) -> dict:
        """List objects in a bucket.

        Args:
            Bucket: The bucket name
            Prefix: Filter by key prefix
            MaxKeys: Maximum number of keys to return
            ContinuationToken: Pagination token
            StartAfter: Only list keys sorting after this key

        Returns:
            Dict with Contents and pagination info
        """
        if Bucket not in self._storage:
            return {"KeyCount": 0}

        all_keys = sorted(
            key for key in self._storage[Bucket].keys()
            if key.startswith(Prefix) and (StartAfter is None or key > StartAfter)
        )

        # Handle pagination
        start_idx = 0
        if ContinuationToken:
            try:
                start_idx = int(ContinuationToken)
            except ValueError:
                start_idx = 0

        end_idx = start_idx + MaxKeys
        page_keys = all_keys[start_idx:end_idx]

        if not page_keys:
            return {"KeyCount": 0}

        contents = []
        for key in page_keys:
            metadata = self._metadata[Bucket].get(key, {})
            contents.append({
                "Key": key,
                "Size": metadata.get("ContentLength", len(self._storage[Bucket][key])),
                "LastModified": metadata.get("LastModified", datetime.now(timezone.utc)),
                "ETag": metadata.get("ETag", '"mock-etag"'),
            })

        result = {
            "Contents": contents,
            "KeyCount": len(contents),
            "MaxKeys": MaxKeys,
            "Prefix": Prefix,
            "IsTruncated": end_idx < len(all_keys),
        }

        if result["IsTruncated"]:
            result["NextContinuationToken"] = str(end_idx)

        return result

    def clear(self) -> None:
        """Clear all stored data."""
        self._storage.clear()
        self._metadata.clear()

    def get_bucket_data(self, bucket: str) -> dict:
        """Get all data in a bucket (for testing assertions).

        Args:
            bucket: The bucket name

        Returns:
            Dict of {key: data} for the bucket
        """
        return {
            key: json.loads(data.decode("utf-8"))
            for key, data in self._storage.get(bucket, {}).items()
            if data
        }


@contextmanager
def mock_s3_client():
    """Context manager providing an in-memory S3 mock.

    Yields:
        InMemoryS3 instance
    """
    mock = InMemoryS3()
    try:
        yield mock
    finally:
        mock.clear()
