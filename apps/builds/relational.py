"""Relational build repository.

Build metadata lives in the ``builds`` table; binaries are written to
``<storage>/<bundle_id>/<upload_id>/app.apk|app.ipa``. The row insert and
the binary write share one transaction: a failed binary write rolls the row
back. The binary itself is outside the transaction, so a commit failing after
the write leaves an orphan file behind.
"""
import asyncio
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional

from pydantic import ValidationError
from tortoise.exceptions import BaseORMException, IntegrityError
from tortoise.transactions import in_transaction

from apps.builds.exceptions import (
    CorruptRecord,
    DuplicateUpload,
    NotFound,
    PartialUploadFailure,
    StorageUnavailable,
)
from apps.builds.files import write_stream_atomic
from apps.builds.locks import KeyedLock
from apps.builds.models import Build
from apps.builds.schema import BuildRecord, newest_first

logger = logging.getLogger(__name__)

NEWEST_FIRST = ("-created_at", "-upload_id")


def _row_values(record: BuildRecord) -> dict:
    return {
        "upload_id": record.upload_id,
        "bundle_id": record.bundle_id,
        "version": record.version,
        "build_number": record.build_number,
        "title": record.title,
        "icon": record.icon,
        "description": record.description,
        "file_size": record.file_size,
        "created_at": record.created_at,
        "platform": record.platform.value,
    }


def _to_record(row: Build) -> BuildRecord:
    try:
        return BuildRecord(
            upload_id=row.upload_id,
            bundle_id=row.bundle_id,
            version=row.version,
            build_number=row.build_number,
            title=row.title,
            icon=row.icon,
            description=row.description,
            file_size=row.file_size,
            created_at=row.created_at,
            platform=row.platform,
        )
    except ValidationError as exc:
        raise CorruptRecord(f"invalid build row {row.upload_id}") from exc


async def _fetch(query):
    try:
        return await query
    except BaseORMException as exc:
        raise StorageUnavailable(f"database query failed: {exc}") from exc


class RelationalBuildRepository:

    def __init__(self, base_path: str, locks: Optional[KeyedLock] = None):
        self.base_path = Path(base_path)
        self.locks = locks or KeyedLock()
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"cannot create storage directory {self.base_path}: {exc}") from exc

    def binary_file(self, record: BuildRecord) -> Path:
        return self.base_path / record.bundle_id / record.upload_id / record.platform.binary_name

    async def list_latest_per_app(self) -> List[BuildRecord]:
        bundle_ids = await _fetch(
            Build.all().distinct().order_by("bundle_id").values_list("bundle_id", flat=True)
        )
        latest = []
        for bundle_id in bundle_ids:
            try:
                latest.append(await self.latest_version(bundle_id))
            except (NotFound, CorruptRecord) as exc:
                logger.warning("Error getting latest version for %s: %s", bundle_id, exc)
        return newest_first(latest)

    async def list_versions(self, bundle_id: str) -> List[BuildRecord]:
        rows = await _fetch(Build.filter(bundle_id=bundle_id).order_by(*NEWEST_FIRST))
        if not rows:
            raise NotFound(f"no versions found for bundle ID {bundle_id}")
        builds = []
        for row in rows:
            try:
                builds.append(_to_record(row))
            except CorruptRecord as exc:
                logger.warning("Skipping build %s of %s: %s", row.upload_id, bundle_id, exc)
        return builds

    async def latest_version(self, bundle_id: str) -> BuildRecord:
        row = await _fetch(Build.filter(bundle_id=bundle_id).order_by(*NEWEST_FIRST).first())
        if row is None:
            raise NotFound(f"no versions found for bundle ID {bundle_id}")
        return _to_record(row)

    async def get_build(self, bundle_id: str, version: str, build_number: str) -> BuildRecord:
        row = await _fetch(
            Build.filter(bundle_id=bundle_id, version=version, build_number=build_number)
            .order_by(*NEWEST_FIRST)
            .first()
        )
        if row is None:
            raise NotFound(f"no build {version} ({build_number}) for bundle ID {bundle_id}")
        return _to_record(row)

    async def binary_path(self, record: BuildRecord) -> Path:
        path = self.binary_file(record)
        if not path.is_file():
            raise NotFound(f"binary not found for upload ID {record.upload_id}")
        return path

    async def save_upload(self, record: BuildRecord, stream: BinaryIO) -> None:
        path = self.binary_file(record)
        binary_written = False
        async with self.locks.hold(record.bundle_id):
            try:
                async with in_transaction() as conn:
                    await Build.create(using_db=conn, **_row_values(record))
                    await asyncio.to_thread(self._write_binary, path, stream)
                    binary_written = True
            except (OSError, ValueError) as exc:
                # raised inside the transaction, so the row insert was rolled back
                raise StorageUnavailable(f"failed to save app file for upload ID {record.upload_id}: {exc}") from exc
            except BaseORMException as exc:
                if binary_written:
                    logger.error("Commit failed after writing %s; binary left orphaned", path)
                    raise PartialUploadFailure(f"failed to commit build {record.upload_id}: {exc}") from exc
                if isinstance(exc, IntegrityError):
                    raise DuplicateUpload(f"upload ID {record.upload_id} already exists") from exc
                raise StorageUnavailable(f"failed to insert build info: {exc}") from exc
        logger.info("Stored build %s for %s (%s %s)", record.upload_id, record.bundle_id,
                    record.version, record.build_number)

    @staticmethod
    def _write_binary(path: Path, stream: BinaryIO) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_stream_atomic(path, stream)
