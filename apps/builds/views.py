import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from apps.builds.exceptions import (
    BuildStoreError,
    DuplicateUpload,
    NotFound,
    StorageUnavailable,
)
from apps.builds.repository import BuildRepository
from apps.builds.schema import BuildRecord
from apps.builds.services import serialize_build, store_upload

logger = logging.getLogger(__name__)


def get_repository(request: Request) -> BuildRepository:
    return request.app.state.repository


def _status_for(exc: BuildStoreError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, DuplicateUpload):
        return 409
    if isinstance(exc, StorageUnavailable):
        return 503
    return 500


@contextmanager
def _store_errors(action: str):
    """Translate repository errors into HTTP errors."""
    try:
        yield
    except BuildStoreError as exc:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Error %s: %s", action, exc)
        raise HTTPException(status_code=status, detail=str(exc)) from exc


def _serialize(request: Request, record: BuildRecord) -> dict:
    url = request.url_for("download_build", bundle_id=record.bundle_id, upload_id=record.upload_id)
    return serialize_build(record, str(url))


async def list_apps(request: Request):
    with _store_errors("getting apps"):
        builds = await get_repository(request).list_latest_per_app()
    return [_serialize(request, b) for b in builds]


async def upload_build(
    request: Request,
    app_file: UploadFile = File(...),
    bundle_id: str = Form(...),
    version: str = Form(...),
    build_number: str = Form(...),
    title: str = Form(...),
    icon: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
):
    try:
        with _store_errors("saving upload"):
            record = await store_upload(
                get_repository(request),
                app_file.filename,
                app_file.file,
                bundle_id=bundle_id,
                version=version,
                build_number=build_number,
                title=title,
                icon=icon,
                description=description,
            )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    return {"message": "Build stored successfully", **_serialize(request, record)}


async def latest_version(request: Request, bundle_id: str):
    with _store_errors(f"getting latest version for {bundle_id}"):
        build = await get_repository(request).latest_version(bundle_id)
    return _serialize(request, build)


async def list_versions(request: Request, bundle_id: str):
    with _store_errors(f"getting versions for {bundle_id}"):
        builds = await get_repository(request).list_versions(bundle_id)
    return [_serialize(request, b) for b in builds]


async def get_build(request: Request, bundle_id: str, version: str, build_number: str):
    with _store_errors(f"getting build {version} ({build_number}) for {bundle_id}"):
        build = await get_repository(request).get_build(bundle_id, version, build_number)
    return _serialize(request, build)


def _file_response(record: BuildRecord, path) -> FileResponse:
    filename = f"{record.bundle_id}-{record.version}-{record.build_number}.{record.platform.extension}"
    return FileResponse(path, media_type="application/octet-stream", filename=filename)


async def download_latest(request: Request, bundle_id: str):
    repository = get_repository(request)
    with _store_errors(f"downloading latest build of {bundle_id}"):
        build = await repository.latest_version(bundle_id)
        path = await repository.binary_path(build)
    return _file_response(build, path)


async def download_build(request: Request, bundle_id: str, upload_id: str):
    repository = get_repository(request)
    with _store_errors(f"downloading build {upload_id} of {bundle_id}"):
        build = next((b for b in await repository.list_versions(bundle_id) if b.upload_id == upload_id), None)
        if build is None:
            raise NotFound(f"upload ID {upload_id} not found for bundle ID {bundle_id}")
        path = await repository.binary_path(build)
    return _file_response(build, path)
