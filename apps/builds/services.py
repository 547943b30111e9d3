import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import BinaryIO, Optional

from apps.builds.repository import BuildRepository
from apps.builds.schema import BuildRecord, Platform


def measure_stream(stream: BinaryIO) -> int:
    """Return the byte length of a seekable stream and rewind it."""
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def new_build_record(
    *,
    filename: str,
    bundle_id: str,
    version: str,
    build_number: str,
    title: str,
    file_size: int,
    icon: Optional[str] = None,
    description: Optional[str] = None,
) -> BuildRecord:
    platform = Platform.from_filename(filename)
    # pydantic's ValidationError is a ValueError, callers treat both as bad input
    return BuildRecord(
        upload_id=str(uuid.uuid4()),
        bundle_id=bundle_id,
        version=version,
        build_number=build_number,
        title=title,
        icon=icon or None,
        description=description or None,
        file_size=file_size,
        created_at=datetime.now(timezone.utc),
        platform=platform,
    )


async def store_upload(repository: BuildRepository, filename: str, stream: BinaryIO, **metadata) -> BuildRecord:
    # uploads may be spooled to disk
    file_size = await asyncio.to_thread(measure_stream, stream)
    record = new_build_record(filename=filename, file_size=file_size, **metadata)
    await repository.save_upload(record, stream)
    return record


def serialize_build(record: BuildRecord, download_url: str) -> dict:
    data = record.model_dump(mode="json")
    data["created_at"] = record.created_at.isoformat()
    data["download_url"] = download_url
    return data
