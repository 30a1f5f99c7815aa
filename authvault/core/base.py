"""Base model for records persisted in S3."""

import uuid
from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseRecord(BaseModel):
    """Base class for every record AuthVault stores.

    Subclasses set ``_collection`` to the key prefix they live under and may
    override :meth:`object_path` when the key should embed an owner id.
    """

    _collection: ClassVar[str] = "records"

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def object_path(self) -> str:
        """Path of this record inside its collection, without extension."""
        return str(self.id)

    def touch(self) -> None:
        """Mark the record as modified now."""
        self.updated_at = utcnow()
