"""pytest fixtures for composit backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- db_url / session_factory: Function-scoped SQLite database (aiosqlite) with all tables
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- fake_kie / fake_storage: In-process provider and object store doubles
- settings / services: Service container wired around the doubles
- client: httpx client bound to the ASGI app with app.state injected
- make_generation: Helper creating a session, assets and a generation
"""

import io
import json
import os
from typing import AsyncGenerator

# Settings are read at import time by composit.app; configure before importing it
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import composit.models  # noqa: F401  # registers tables on SQLModel.metadata
from composit.core.config import Settings
from composit.core.database import setup_db_session
from composit.models.asset import Asset, AssetRole
from composit.models.generation import Generation, GenerationStatus
from composit.services.container import build_services
from composit.services.exceptions import StorageNetworkError
from composit.services.kie.client import TaskRecord
from composit.uow import create_uow_factory

ADMIN_SECRET = "test-admin-secret"
SESSION_ID = "ctestsession00000001"
OTHER_SESSION_ID = "cothersession000001"


def png_bytes(width: int = 4, height: int = 6) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeKieClient:
    """Records submissions and answers polls from an in-memory task table.

    Tests drive task outcomes with complete()/fail(); create_errors are raised
    (in order) by the next create_task calls. on_create, if set, is awaited
    with the new task id before it is returned.
    """

    def __init__(self):
        self.created: list[dict] = []
        self.queries: list[str] = []
        self.records: dict[str, TaskRecord | Exception] = {}
        self.results: dict[str, tuple[bytes, str] | Exception] = {}
        self.create_errors: list[Exception] = []
        self.query_errors: list[Exception] = []
        self.on_create = None
        self.complete_on_create = False
        self._counter = 0

    async def acquire(self):
        return self

    async def shutdown(self):
        pass

    async def create_task(
        self,
        prompt,
        image_urls,
        aspect_ratio="2:3",
        resolution="4K",
        output_format="png",
        callback_url=None,
    ):
        if self.create_errors:
            raise self.create_errors.pop(0)
        self._counter += 1
        task_id = f"task-{self._counter}"
        self.created.append(
            {
                "task_id": task_id,
                "prompt": prompt,
                "image_urls": image_urls,
                "aspect_ratio": aspect_ratio,
                "resolution": resolution,
                "output_format": output_format,
                "callback_url": callback_url,
            }
        )
        self.records[task_id] = TaskRecord(task_id=task_id, state="waiting")
        if self.complete_on_create:
            self.complete(task_id)
        if self.on_create is not None:
            await self.on_create(task_id)
        return task_id

    async def query_task(self, task_id):
        self.queries.append(task_id)
        if self.query_errors:
            raise self.query_errors.pop(0)
        return self.records[task_id]

    async def fetch_result(self, url):
        result = self.results.get(url, (png_bytes(), "image/png"))
        if isinstance(result, Exception):
            raise result
        return result

    def complete(self, task_id: str, url: str | None = None) -> str:
        """Mark a task successful; returns its resultJson."""
        url = url or f"https://cdn.kie.test/{task_id}.png"
        result_json = json.dumps({"resultUrls": [url]})
        self.records[task_id] = TaskRecord(task_id=task_id, state="success", result_json=result_json)
        return result_json

    def fail(self, task_id: str, message: str = "content policy") -> None:
        self.records[task_id] = TaskRecord(task_id=task_id, state="fail", fail_msg=message)


class FakeStorage:
    """Dict-backed object store; keys in fail_delete_keys make delete() raise."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.signed: list[tuple[str, int]] = []
        self.deleted: list[str] = []
        self.fail_delete_keys: set[str] = set()
        self.fail_sign = False

    async def acquire(self):
        return self

    async def shutdown(self):
        pass

    async def upload(self, key, data, mime):
        self.objects[key] = (data, mime)
        return key

    async def signed_url(self, key, ttl_seconds=300):
        if self.fail_sign:
            raise StorageNetworkError("sign unavailable")
        self.signed.append((key, ttl_seconds))
        return f"https://storage.test/signed/{key}?ttl={ttl_seconds}"

    async def delete(self, keys):
        if self.fail_delete_keys.intersection(keys):
            raise StorageNetworkError("delete unavailable")
        for key in keys:
            self.objects.pop(key, None)
        self.deleted.extend(keys)


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    """
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'composit-test.db'}"


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_url) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory bound to a fresh database with all tables created."""
    factory = setup_db_session(db_url)
    engine = factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session (uncommitted changes rolled back)."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def fake_kie() -> FakeKieClient:
    return FakeKieClient()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def settings(db_url) -> Settings:
    """Test settings: short poll loop, fast queue backoff, known admin secret."""
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        DATABASE_URL=db_url,
        APP_ENV="test",
        ADMIN_SECRET=ADMIN_SECRET,
        BACKEND_PUBLIC_URL="https://api.composit.test",
        KIE_POLL_INTERVAL_SECONDS=0.01,
        KIE_POLL_TIMEOUT_SECONDS=2,
        QUEUE_BACKOFF_SECONDS=10,
        QUEUE_MAX_ATTEMPTS=3,
        RETENTION_DAYS=24,
    )


@pytest_asyncio.fixture(scope="function")
async def services(settings, uow_factory, fake_kie, fake_storage):
    """Service container around the fakes (acquired, shut down after the test)."""
    container = await build_services(
        settings, uow_factory, kie=fake_kie, storage=fake_storage  # type: ignore[arg-type]
    ).acquire()
    yield container
    await container.shutdown()


@pytest_asyncio.fixture(scope="function")
async def client(services, session_factory, uow_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app without running its lifespan (no background workers)."""
    from composit.app import app

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def make_generation(uow_factory):
    """Create a session, two assets and one generation; returns the generation.

    Keyword arguments override Generation fields (status, params, created_at, ...).
    """

    async def _make(session_id: str = SESSION_ID, asset_ids=None, **fields) -> Generation:
        async with await uow_factory() as uow:
            await uow.sessions.touch_or_create(session_id)
            if asset_ids is None:
                asset_ids = []
                for role in (AssetRole.MODEL, AssetRole.GARMENT):
                    asset = await uow.assets.add(
                        Asset(
                            session_id=session_id,
                            role=role,
                            filename=f"{role.value}.png",
                            mime="image/png",
                            size_bytes=128,
                        )
                    )
                    await uow.assets.set_storage_key(
                        asset, f"sessions/{session_id}/assets/{asset.id}/{asset.filename}"
                    )
                    asset_ids.append(asset.id)
            fields.setdefault("prompt", "Studio shot, soft light")
            fields.setdefault("params", {"variations": fields.get("variations_total", 1)})
            fields.setdefault("status", GenerationStatus.QUEUED)
            generation = Generation(session_id=session_id, **fields)
            return await uow.generations.add_with_assets(generation, asset_ids)

    return _make


@pytest.fixture
def make_processing_generation(make_generation, uow_factory):
    """Create a processing generation with the given task ids already submitted."""

    async def _make(task_ids: list[str], **fields) -> Generation:
        from composit.core.timezone import utcnow

        generation = await make_generation(
            status=GenerationStatus.PROCESSING,
            variations_total=len(task_ids),
            started_at=utcnow(),
            **fields,
        )
        async with await uow_factory() as uow:
            for position, task_id in enumerate(task_ids):
                await uow.generations.append_task(generation.id, task_id, position)
        return generation

    return _make
