"""
Tests for generation dispatch
Covers validation, rate limiting, provider failures and the happy path
"""
import pytest
from sqlalchemy import func, select

from tunesmith.core.errors import DispatchError, RateLimitExceededError, ValidationError
from tunesmith.core.rate_limiter import InMemoryRateLimiter, RateLimitConfig
from tunesmith.core.result import Result
from tunesmith.database.models import GenerationTask, Track
from tunesmith.database.repositories.track_repository import TrackRepository
from tunesmith.database.schemas import GenerationCreate
from tunesmith.services import notifications
from tunesmith.services.generation_dispatcher import GenerationDispatcher
from tunesmith.services.status_poller import PollState, TaskPoller

from conftest import completed_status


class RecordingScheduler:
    def __init__(self):
        self.tracked = []

    def track(self, task):
        self.tracked.append(task)


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter({
        "suno": RateLimitConfig(max_requests=2, window_seconds=600),
        "mureka": RateLimitConfig(max_requests=10, window_seconds=600),
        "default": RateLimitConfig(max_requests=10, window_seconds=60),
    })


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def dispatcher(session_factory, providers, rate_limiter, notifier, scheduler):
    return GenerationDispatcher(session_factory, providers, rate_limiter, notifier, scheduler=scheduler)


async def count_tasks(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(GenerationTask.id)))).scalar()


@pytest.mark.integration
class TestGenerationDispatch:
    """Dispatching a generation request"""

    async def test_dispatch_creates_pending_task(self, dispatcher, suno, scheduler, notifier, user_id):
        suno.submit_result = Result.ok("suno-abc")

        task = await dispatcher.dispatch(user_id, GenerationCreate(prompt="  test track ", service="suno"))

        assert task.status == "pending"
        assert task.progress == 0
        assert task.external_task_id == "suno-abc"
        assert task.prompt == "test track"
        assert task.meta["suno_task_id"] == "suno-abc"
        assert task.meta["task_id"] == "suno-abc"

        assert len(suno.submitted) == 1
        assert suno.submitted[0].prompt == "test track"
        assert [tracked.id for tracked in scheduler.tracked] == [task.id]
        assert notifier.recent(user_id)[0].kind == notifications.DISPATCH_SUCCEEDED

    async def test_request_options_are_kept_in_metadata(self, dispatcher, user_id):
        task = await dispatcher.dispatch(user_id, GenerationCreate(
            prompt="test track",
            service="suno",
            title="Night Drive",
            instrumental=True
        ))

        assert task.meta["request"] == {"title": "Night Drive", "instrumental": True}

    async def test_empty_prompt_is_rejected(self, dispatcher, suno, session_factory, user_id):
        with pytest.raises(ValidationError):
            await dispatcher.dispatch(user_id, GenerationCreate(prompt="   ", service="suno"))

        assert suno.submitted == []
        assert await count_tasks(session_factory) == 0

    async def test_unavailable_provider(self, dispatcher, suno, session_factory, notifier, user_id):
        suno.ready = False

        with pytest.raises(DispatchError):
            await dispatcher.dispatch(user_id, GenerationCreate(prompt="test track", service="suno"))

        assert suno.submitted == []
        assert await count_tasks(session_factory) == 0
        assert notifier.recent(user_id)[0].kind == notifications.DISPATCH_FAILED

    async def test_provider_rejection_writes_no_task(self, dispatcher, suno, session_factory, scheduler, user_id):
        suno.submit_result = Result.err("Suno API error: 500", error_code="http_error")

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.dispatch(user_id, GenerationCreate(prompt="test track", service="suno"))

        assert exc_info.value.details == {"reason": "http_error"}
        assert len(suno.submitted) == 1
        assert await count_tasks(session_factory) == 0
        assert scheduler.tracked == []

    async def test_rate_limit_blocks_before_provider_call(self, dispatcher, suno, notifier, user_id):
        request = GenerationCreate(prompt="test track", service="suno")
        await dispatcher.dispatch(user_id, request)
        await dispatcher.dispatch(user_id, request)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await dispatcher.dispatch(user_id, request)

        assert exc_info.value.service == "suno"
        assert exc_info.value.retry_after > 0
        assert len(suno.submitted) == 2
        assert notifier.recent(user_id)[0].kind == notifications.RATE_LIMITED

    async def test_rate_limit_is_per_service(self, dispatcher, mureka, user_id):
        request = GenerationCreate(prompt="test track", service="suno")
        await dispatcher.dispatch(user_id, request)
        await dispatcher.dispatch(user_id, request)

        task = await dispatcher.dispatch(user_id, GenerationCreate(prompt="test track", service="mureka"))

        assert task.service == "mureka"
        assert len(mureka.submitted) == 1


@pytest.mark.integration
class TestDispatchToCompletion:
    """Dispatch followed by a completed status check"""

    async def test_completed_status_creates_track(
        self, dispatcher, suno, session_factory, bridge, notifier, user_id
    ):
        suno.submit_result = Result.ok("suno-abc")
        task = await dispatcher.dispatch(user_id, GenerationCreate(prompt="test track", service="suno"))

        suno.statuses = [Result.ok(completed_status("https://cdn.example.com/missing-take.mp3"))]
        poller = TaskPoller(task, suno, session_factory, bridge, notifier)

        assert await poller.tick() == PollState.COMPLETED

        async with session_factory() as session:
            stored = await session.get(GenerationTask, task.id)
            tracks = await TrackRepository(session).get_by_task("suno-abc")

        assert stored.status == "completed"
        assert stored.progress == 100
        assert stored.completed_at is not None
        assert len(tracks) == 1
        assert tracks[0].audio_url == "https://cdn.example.com/missing-take.mp3"
        assert tracks[0].user_id == user_id
        assert stored.track_id == tracks[0].id
        assert suno.status_calls == ["suno-abc"]

    async def test_no_track_rows_before_completion(self, dispatcher, session_factory, user_id):
        await dispatcher.dispatch(user_id, GenerationCreate(prompt="test track", service="suno"))

        async with session_factory() as session:
            count = (await session.execute(select(func.count(Track.id)))).scalar()

        assert count == 0
