import asyncio
import os
import warnings
from datetime import datetime, timedelta, timezone

import pytest

# Settings are read at import time; keep the test run away from ./storage and ./db.sqlite3
os.environ.setdefault('STORAGE_BACKEND', 'filesystem')
os.environ.setdefault('STORAGE_PATH', os.path.join(os.getcwd(), '.test_storage'))
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')

# Tortoise emits a few deprecation warnings on newer Pythons during init/close
warnings.filterwarnings("ignore", category=DeprecationWarning, module=r"tortoise.*")

from apps.builds.repository import pick_repository  # noqa: E402
from apps.builds.schema import BuildRecord, Platform  # noqa: E402
from config.db import close_db, init_db  # noqa: E402

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def build_record(upload_id, bundle_id='com.example.app', minutes=0, platform=Platform.ANDROID, **overrides):
    fields = dict(
        upload_id=upload_id,
        bundle_id=bundle_id,
        version='1.0.0',
        build_number='1',
        title='Example',
        file_size=4,
        created_at=T0 + timedelta(minutes=minutes),
        platform=platform,
    )
    fields.update(overrides)
    return BuildRecord(**fields)


@pytest.fixture
def make_record():
    return build_record


class RepoHarness:
    """Runs a coroutine against a fresh repository of the given backend.

    For the database backend Tortoise is initialised and closed inside the
    same event loop as the scenario.
    """

    def __init__(self, backend, tmp_path):
        self.backend = backend
        self.storage_path = tmp_path / 'storage'
        self.db_url = f"sqlite://{tmp_path / 'test_db.sqlite3'}"

    @property
    def uses_db(self):
        return self.backend == 'database'

    def run(self, scenario):
        async def _go():
            if self.uses_db:
                await init_db(self.db_url)
            try:
                repo = pick_repository(self.backend, str(self.storage_path))
                return await scenario(repo)
            finally:
                if self.uses_db:
                    await close_db()

        return asyncio.run(_go())


@pytest.fixture(params=['filesystem', 'database'])
def harness(request, tmp_path):
    return RepoHarness(request.param, tmp_path)


@pytest.fixture
def fs_harness(tmp_path):
    return RepoHarness('filesystem', tmp_path)


@pytest.fixture
def db_harness(tmp_path):
    return RepoHarness('database', tmp_path)
