"""
Tunesmith Testing Configuration
Pytest fixtures and test setup
"""
import os
import tempfile
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

# Keep settings side effects (directories, log file) out of the working tree
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="tunesmith-tests-"))
os.environ.setdefault("STORAGE_PATH", str(_TEST_ROOT / "audio"))
os.environ.setdefault("LOG_FILE_PATH", str(_TEST_ROOT / "logs" / "tunesmith.log"))
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tunesmith.core.result import Result
from tunesmith.core.timeutils import utcnow
from tunesmith.database.connection import Base
from tunesmith.database.models import GenerationTask, Track, STATUS_PENDING
from tunesmith.services.notifications import NotificationHub
from tunesmith.services.payloads import NormalizedTrack, ProviderStatus
from tunesmith.services.persistence_bridge import PersistenceBridge
from tunesmith.services.provider_base import MusicProvider, StemResult
from tunesmith.services.providers import ProviderRegistry
from tunesmith.services.storage import LocalObjectStorage

PUBLIC_URL = "http://test/audio"
AUDIO_BYTES = b"ID3\x03\x00fake-mp3-payload"


class FakeProvider(MusicProvider):
    """Scripted provider: returns queued results and records every call"""

    def __init__(self, name: str = "suno", ready: bool = True):
        super().__init__(api_key="test-key", base_url="http://provider.test")
        self.name = name
        self.ready = ready
        self.submit_result: Result = Result.ok("ext-task-1")
        self.statuses: List[Result] = []
        self.stem_request_result: Optional[Result] = None
        self.stem_statuses: List[Result] = []
        self.submitted = []
        self.status_calls: List[str] = []
        self.stem_calls: List[Dict[str, Any]] = []

    @property
    def is_initialized(self) -> bool:
        return self.ready

    async def submit(self, request):
        self.submitted.append(request)
        return self.submit_result

    async def get_status(self, external_task_id: str):
        self.status_calls.append(external_task_id)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        if self.statuses:
            return self.statuses[0]
        return Result.ok(ProviderStatus(state="pending", progress=25, raw_status="PENDING"))

    async def request_stems(self, audio_url, external_task_id, provider_track_id, mode):
        self.stem_calls.append({
            "audio_url": audio_url,
            "external_task_id": external_task_id,
            "provider_track_id": provider_track_id,
            "mode": mode,
        })
        return self.stem_request_result or Result.ok(StemResult(state="pending", external_task_id="stem-task-1"))

    async def get_stem_status(self, external_task_id: str):
        if self.stem_statuses:
            return self.stem_statuses.pop(0)
        return Result.ok(StemResult(state="pending", external_task_id=external_task_id))


def completed_status(*urls: str, raw_status: str = "SUCCESS") -> ProviderStatus:
    return ProviderStatus(
        state="completed",
        progress=100,
        raw_status=raw_status,
        tracks=[
            NormalizedTrack(audio_url=url, title=f"Take {index + 1}", provider_track_id=f"audio-{index}")
            for index, url in enumerate(urls)
        ],
    )


def audio_handler(request: httpx.Request) -> httpx.Response:
    """Serves fake audio; URLs containing 'missing' return 404"""
    if "missing" in str(request.url):
        return httpx.Response(404)
    return httpx.Response(200, content=AUDIO_BYTES, headers={"Content-Type": "audio/mpeg"})


@pytest_asyncio.fixture
async def engine():
    """In-memory test database with the Tunesmith schema"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def notifier():
    return NotificationHub(history_size=20)


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "audio"), PUBLIC_URL)


@pytest.fixture
def suno():
    return FakeProvider("suno")


@pytest.fixture
def mureka():
    return FakeProvider("mureka")


@pytest.fixture
def providers(suno, mureka):
    return ProviderRegistry({"suno": suno, "mureka": mureka})


@pytest_asyncio.fixture
async def audio_client():
    async with httpx.AsyncClient(transport=httpx.MockTransport(audio_handler)) as client:
        yield client


@pytest.fixture
def bridge(session_factory, storage, audio_client):
    return PersistenceBridge(
        session_factory,
        storage,
        http_client=audio_client,
        background_downloads=False
    )


@pytest.fixture
def make_task(session_factory, user_id):
    """Insert a generation task directly"""

    async def _make_task(
        external_task_id: Optional[str] = "ext-task-1",
        service: str = "suno",
        status: str = STATUS_PENDING,
        age_seconds: float = 0.0,
        owner: Optional[uuid.UUID] = None,
        **fields: Any
    ) -> GenerationTask:
        task = GenerationTask(
            user_id=owner or user_id,
            service=service,
            prompt=fields.pop("prompt", "test track"),
            external_task_id=external_task_id,
            status=status,
            progress=fields.pop("progress", 0),
            created_at=utcnow() - timedelta(seconds=age_seconds),
            meta=fields.pop("meta", {"task_id": external_task_id}),
            **fields
        )
        async with session_factory() as session:
            session.add(task)
            await session.commit()
            await session.refresh(task)
        return task

    return _make_task


@pytest.fixture
def make_track(session_factory, user_id):
    """Insert a track directly"""

    async def _make_track(
        title: str = "Test Track",
        owner: Optional[uuid.UUID] = None,
        created_offset: float = 0.0,
        **fields: Any
    ) -> Track:
        track = Track(
            user_id=owner or user_id,
            title=title,
            audio_url=fields.pop("audio_url", "https://cdn.example.com/track.mp3"),
            created_at=utcnow() + timedelta(seconds=created_offset),
            meta=fields.pop("meta", {}),
            **fields
        )
        async with session_factory() as session:
            session.add(track)
            await session.commit()
            await session.refresh(track)
        return track

    return _make_track


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "performance: mark test as performance test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
