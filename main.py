import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.builds.repository import pick_repository
from apps.builds.routers import router as builds_router
from config.db import register_db
from config.logging_config import setup_logging
from config.middleware import RequestLoggingMiddleware
from config.settings import CORS_ORIGINS, LOG_LEVEL, STORAGE_BACKEND, STORAGE_PATH

logger = logging.getLogger(__name__)


def uses_database(backend: str) -> bool:
    return backend.lower() in ("database", "db")


def create_app(backend: str = STORAGE_BACKEND, storage_path: str = STORAGE_PATH, db_url: Optional[str] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with AsyncExitStack() as stack:
            if uses_database(backend):
                await stack.enter_async_context(register_db(app, db_url))
            app.state.repository = pick_repository(backend, storage_path)
            logger.info("Build store ready (backend=%s, path=%s)", backend, storage_path)
            yield

    app = FastAPI(title="App Distribution API", version="1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Auth-Token"],
    )
    app.include_router(builds_router)
    return app


setup_logging(LOG_LEVEL)
app = create_app()
