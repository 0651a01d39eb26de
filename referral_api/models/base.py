# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base models with common fields, timestamp helpers and camelCase aliasing.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from bson import ObjectId


_clock_lock = threading.Lock()
_last_timestamp: Optional[datetime] = None


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision (BSON date resolution)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def monotonic_utc_now() -> datetime:
    """
    Strictly increasing UTC timestamp for creation ordering.

    Two referrals created in the same millisecond still get distinct,
    ordered ``createdAt`` values.
    """
    global _last_timestamp
    with _clock_lock:
        now = utc_now()
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(milliseconds=1)
        _last_timestamp = now
        return now


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Model serialised with camelCase keys, populated by name or alias."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class BaseEntity(CamelModel):
    """Base entity with common fields for persisted aggregates."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=monotonic_utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update timestamp")
    deleted_at: Optional[datetime] = Field(None, description="Soft delete timestamp")
    created_by: str = Field(..., description="User ID who created this entity")
    updated_by: str = Field(..., description="User ID who last updated this entity")
    deleted_by: Optional[str] = Field(None, description="User ID who deleted this entity")
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    @field_validator('created_at', 'updated_at', 'deleted_at')
    @classmethod
    def normalise_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def is_deleted(self) -> bool:
        """Check if entity is soft deleted."""
        return self.deleted_at is not None
