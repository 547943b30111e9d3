from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol

from apps.builds.filesystem import FilesystemBuildRepository
from apps.builds.relational import RelationalBuildRepository
from apps.builds.schema import BuildRecord
from config.settings import STORAGE_BACKEND, STORAGE_PATH


class BuildRepository(Protocol):
    async def list_latest_per_app(self) -> List[BuildRecord]:
        ...

    async def list_versions(self, bundle_id: str) -> List[BuildRecord]:
        ...

    async def latest_version(self, bundle_id: str) -> BuildRecord:
        ...

    async def get_build(self, bundle_id: str, version: str, build_number: str) -> BuildRecord:
        ...

    async def save_upload(self, record: BuildRecord, stream: BinaryIO) -> None:
        ...

    async def binary_path(self, record: BuildRecord) -> Path:
        ...


def pick_repository(backend: Optional[str] = None, base_path: Optional[str] = None) -> BuildRepository:
    """Build the repository named by STORAGE_BACKEND.

    ``database`` stores metadata through Tortoise (call config.db.init_db first);
    anything else falls back to the filesystem layout.
    """
    backend = (backend or STORAGE_BACKEND).lower()
    base = base_path or STORAGE_PATH
    if backend in ("database", "db"):
        return RelationalBuildRepository(base)
    return FilesystemBuildRepository(base)
