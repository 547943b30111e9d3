"""Filesystem build repository.

Layout under the storage root::

    <upload_id>/build_info.json
    <upload_id>/app.apk | app.ipa
    _indexes/by_bundle_id/<bundle_id>.json   # [{upload_id, created_at}], newest first

The per-upload ``build_info.json`` is the source of truth for a build; the
bundle index only says which uploads belong to a bundle_id. Unparsable index
entries and orphans (metadata missing) are skipped on read; the next upload
to the bundle rewrites the index without the unparsable ones.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional

from pydantic import TypeAdapter, ValidationError

from apps.builds.exceptions import (
    BuildStoreError,
    CorruptRecord,
    DuplicateUpload,
    NotFound,
    PartialUploadFailure,
    StorageUnavailable,
)
from apps.builds.files import write_bytes_atomic, write_stream_atomic, write_text_atomic
from apps.builds.locks import KeyedLock
from apps.builds.schema import BuildRecord, IndexEntry, is_safe_segment, newest_first

logger = logging.getLogger(__name__)

BUILD_INFO_FILE = "build_info.json"
INDEXES_DIR = "_indexes"
BY_BUNDLE_ID_DIR = "by_bundle_id"
INDEX_SUFFIX = ".json"

_entry_adapter = TypeAdapter(IndexEntry)
_index_adapter = TypeAdapter(List[IndexEntry])


class FilesystemBuildRepository:

    def __init__(self, base_path: str, locks: Optional[KeyedLock] = None):
        self.base_path = Path(base_path)
        self.index_dir = self.base_path / INDEXES_DIR / BY_BUNDLE_ID_DIR
        self.locks = locks or KeyedLock()
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"cannot create storage directory {self.index_dir}: {exc}") from exc

    def upload_dir(self, upload_id: str) -> Path:
        return self.base_path / upload_id

    def index_path(self, bundle_id: str) -> Path:
        return self.index_dir / f"{bundle_id}{INDEX_SUFFIX}"

    # -- reads -------------------------------------------------------------

    async def list_latest_per_app(self) -> List[BuildRecord]:
        return await asyncio.to_thread(self._list_latest_per_app)

    async def list_versions(self, bundle_id: str) -> List[BuildRecord]:
        return await asyncio.to_thread(self._list_versions, bundle_id)

    async def latest_version(self, bundle_id: str) -> BuildRecord:
        return await asyncio.to_thread(self._latest_version, bundle_id)

    async def get_build(self, bundle_id: str, version: str, build_number: str) -> BuildRecord:
        for build in await self.list_versions(bundle_id):
            if build.version == version and build.build_number == build_number:
                return build
        raise NotFound(f"no build {version} ({build_number}) for bundle ID {bundle_id}")

    async def binary_path(self, record: BuildRecord) -> Path:
        path = self.upload_dir(record.upload_id) / record.platform.binary_name
        if not path.is_file():
            raise NotFound(f"binary not found for upload ID {record.upload_id}")
        return path

    def _read_build_info(self, upload_id: str) -> BuildRecord:
        path = self.upload_dir(upload_id) / BUILD_INFO_FILE
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"build info not found for upload ID {upload_id}") from exc
        except OSError as exc:
            raise StorageUnavailable(f"failed to read build info {path}: {exc}") from exc
        try:
            return BuildRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptRecord(f"failed to decode build info for upload ID {upload_id}") from exc

    def _read_index(self, bundle_id: str) -> Optional[List[IndexEntry]]:
        """Return the index entries for a bundle_id, or None if it has no index."""
        path = self.index_path(bundle_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailable(f"failed to read index {path}: {exc}") from exc
        if not raw.strip():
            return []
        try:
            items = json.loads(raw)
        except ValueError as exc:
            raise CorruptRecord(f"failed to decode index file for bundle ID {bundle_id}") from exc
        if not isinstance(items, list):
            raise CorruptRecord(f"index file for bundle ID {bundle_id} is not a list")

        entries = []
        for position, item in enumerate(items):
            try:
                entries.append(_entry_adapter.validate_python(item))
            except ValidationError as exc:
                logger.warning("Dropping unreadable index entry %d of %s: %s", position, bundle_id, exc)
        return entries

    def _index_entries(self, bundle_id: str) -> List[IndexEntry]:
        entries = self._read_index(bundle_id) if is_safe_segment(bundle_id) else None
        if not entries:
            raise NotFound(f"no versions found for bundle ID {bundle_id}")
        return newest_first(entries)

    def _list_versions(self, bundle_id: str) -> List[BuildRecord]:
        builds = []
        for entry in self._index_entries(bundle_id):
            try:
                builds.append(self._read_build_info(entry.upload_id))
            except (NotFound, CorruptRecord) as exc:
                # one bad build must not hide its siblings
                logger.warning("Skipping build %s of %s: %s", entry.upload_id, bundle_id, exc)
        return builds

    def _latest_version(self, bundle_id: str) -> BuildRecord:
        for entry in self._index_entries(bundle_id):
            try:
                return self._read_build_info(entry.upload_id)
            except NotFound:
                logger.warning("Skipping orphan index entry %s of %s", entry.upload_id, bundle_id)
        raise NotFound(f"no versions found for bundle ID {bundle_id}")

    def _list_latest_per_app(self) -> List[BuildRecord]:
        try:
            names = sorted(
                p.name for p in self.index_dir.iterdir()
                if p.is_file() and p.name.endswith(INDEX_SUFFIX) and not p.name.startswith(".")
            )
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageUnavailable(f"failed to read bundle ID index directory: {exc}") from exc

        latest = []
        for name in names:
            bundle_id = name[: -len(INDEX_SUFFIX)]
            try:
                latest.append(self._latest_version(bundle_id))
            except (NotFound, CorruptRecord) as exc:
                logger.warning("Error getting latest version for %s: %s", bundle_id, exc)
        return newest_first(latest)

    # -- writes ------------------------------------------------------------

    async def save_upload(self, record: BuildRecord, stream: BinaryIO) -> None:
        # metadata and binary first, so an index entry never points at nothing
        await asyncio.to_thread(self._write_artifacts, record, stream)
        try:
            async with self.locks.hold(record.bundle_id):
                await asyncio.to_thread(self._add_index_entry, record)
        except (BuildStoreError, OSError) as exc:
            logger.error("Index update failed for %s (%s); upload left orphaned", record.upload_id, record.bundle_id)
            raise PartialUploadFailure(f"failed to update index for bundle ID {record.bundle_id}: {exc}") from exc
        logger.info("Stored build %s for %s (%s %s)", record.upload_id, record.bundle_id,
                    record.version, record.build_number)

    def _write_artifacts(self, record: BuildRecord, stream: BinaryIO) -> None:
        upload_dir = self.upload_dir(record.upload_id)
        try:
            upload_dir.mkdir()
        except FileExistsError as exc:
            raise DuplicateUpload(f"upload ID {record.upload_id} already exists") from exc
        except OSError as exc:
            raise StorageUnavailable(f"failed to create upload directory: {exc}") from exc

        try:
            write_text_atomic(upload_dir / BUILD_INFO_FILE, record.model_dump_json(indent=2))
        except OSError as exc:
            raise StorageUnavailable(f"failed to write build info: {exc}") from exc

        try:
            write_stream_atomic(upload_dir / record.platform.binary_name, stream)
        except (OSError, ValueError) as exc:
            raise PartialUploadFailure(f"failed to save app file for upload ID {record.upload_id}: {exc}") from exc

    def _add_index_entry(self, record: BuildRecord) -> None:
        entries = self._read_index(record.bundle_id) or []
        entries = [e for e in entries if e.upload_id != record.upload_id]
        entries.append(record.index_entry())
        payload = _index_adapter.dump_json(newest_first(entries), indent=2)
        write_bytes_atomic(self.index_path(record.bundle_id), payload)
