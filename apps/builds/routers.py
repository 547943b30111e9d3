# builds/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import (
    download_build,
    download_latest,
    get_build,
    latest_version,
    list_apps,
    list_versions,
    upload_build,
)

router = APIRouter(tags=["apps"])

router.get("/api/apps")(response_wrapper(list_apps))
router.post("/api/apps/upload")(response_wrapper(upload_build))
router.get("/api/apps/{bundle_id}")(response_wrapper(latest_version))
router.get("/api/apps/{bundle_id}/versions")(response_wrapper(list_versions))
router.get("/api/apps/{bundle_id}/versions/{version}/{build_number}")(response_wrapper(get_build))
router.get("/api/apps/{bundle_id}/download")(download_latest)
router.get("/api/apps/{bundle_id}/builds/{upload_id}/download", name="download_build")(download_build)
