import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# bundle_id and upload_id end up as directory and file names
SAFE_SEGMENT = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


def is_safe_segment(value: str) -> bool:
    return bool(value) and re.fullmatch(SAFE_SEGMENT, value) is not None


class Platform(str, Enum):
    ANDROID = "android"
    IOS = "ios"

    @property
    def extension(self) -> str:
        return "apk" if self is Platform.ANDROID else "ipa"

    @property
    def binary_name(self) -> str:
        return f"app.{self.extension}"

    @classmethod
    def from_filename(cls, filename: str) -> "Platform":
        name = (filename or "").lower()
        if name.endswith(".apk"):
            return cls.ANDROID
        if name.endswith(".ipa"):
            return cls.IOS
        raise ValueError("Invalid file type. Only .apk and .ipa files are supported")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BuildRecord(BaseModel):
    """One stored build. Created once at upload time and never changed."""

    model_config = ConfigDict(frozen=True)

    upload_id: str = Field(..., min_length=1, max_length=255, pattern=SAFE_SEGMENT)
    bundle_id: str = Field(..., min_length=1, max_length=255, pattern=SAFE_SEGMENT)
    version: str = Field(..., min_length=1)
    build_number: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    icon: Optional[str] = None
    description: Optional[str] = None
    file_size: int = Field(..., ge=0)
    created_at: datetime
    platform: Platform

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def sort_key(self):
        return self.created_at, self.upload_id

    def index_entry(self) -> "IndexEntry":
        return IndexEntry(upload_id=self.upload_id, created_at=self.created_at)


class IndexEntry(BaseModel):
    upload_id: str = Field(..., min_length=1, pattern=SAFE_SEGMENT)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def sort_key(self):
        return self.created_at, self.upload_id


def newest_first(items):
    """Sort records or index entries by (created_at, upload_id), newest first."""
    return sorted(items, key=lambda item: item.sort_key, reverse=True)
