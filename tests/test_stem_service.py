"""
Tests for stem separation
Covers job creation, collection, synchronous providers and failures
"""
import uuid

import pytest

from tunesmith.core.errors import DispatchError, NotFoundError, ValidationError
from tunesmith.core.result import Result
from tunesmith.services.provider_base import StemResult
from tunesmith.services.stem_service import StemService


@pytest.fixture
def stems(session_factory, providers):
    return StemService(session_factory, providers)


@pytest.fixture
def generated_track(make_track):
    async def _generated_track(service="suno", **fields):
        return await make_track(
            "Generated",
            external_task_id=f"{service}-1",
            source_index=0,
            audio_url="http://test/audio/local-copy.mp3",
            meta={
                "service": service,
                "task_id": f"{service}-1",
                "provider_track_id": "audio-0",
                "original_external_url": "https://cdn.example.com/a.mp3",
            },
            **fields
        )
    return _generated_track


def finished(*stem_types):
    return Result.ok(StemResult(
        state="completed",
        external_task_id="stem-task-1",
        stems=[{"stem_type": stem_type, "stem_url": f"https://cdn.example.com/{stem_type}.mp3"} for stem_type in stem_types]
    ))


@pytest.mark.integration
class TestStemSeparation:
    """Requesting and collecting stems"""

    async def test_request_creates_pending_job(self, stems, generated_track, suno, user_id):
        track = await generated_track()

        job = await stems.request_separation(user_id, track.id, mode="detailed")

        assert job.status == "pending"
        assert job.service == "suno"
        assert job.external_task_id == "stem-task-1"
        assert job.separation_mode == "detailed"
        assert suno.stem_calls == [{
            "audio_url": "https://cdn.example.com/a.mp3",
            "external_task_id": "suno-1",
            "provider_track_id": "audio-0",
            "mode": "detailed",
        }]

    async def test_collect_stores_stems(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [finished("vocals", "instrumental")]

        collected = await stems.collect(user_id, job.id)

        assert collected.status == "completed"
        assert collected.result == {"stem_types": ["vocals", "instrumental"], "created": 2}
        saved = await stems.list_stems(user_id, track.id)
        assert [stem.stem_type for stem in saved] == ["instrumental", "vocals"]
        assert saved[0].stem_name == "Instrumental"
        assert saved[0].separation_mode == "simple"

    async def test_collect_pending_job_stays_pending(self, stems, generated_track, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)

        collected = await stems.collect(user_id, job.id)

        assert collected.status == "pending"

    async def test_collect_status_error_keeps_job(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [Result.err("suno API request failed", error_code="network_error")]

        collected = await stems.collect(user_id, job.id)

        assert collected.status == "pending"

    async def test_provider_reported_failure(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [Result.ok(StemResult(state="failed", error_message="bad audio"))]

        collected = await stems.collect(user_id, job.id)

        assert collected.status == "failed"
        assert collected.error_message == "bad audio"
        assert await stems.list_stems(user_id, track.id) == []

    async def test_finished_job_is_not_collected_again(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [finished("vocals"), finished("drums")]
        await stems.collect(user_id, job.id)

        again = await stems.collect(user_id, job.id)

        assert again.status == "completed"
        assert [stem.stem_type for stem in await stems.list_stems(user_id, track.id)] == ["vocals"]

    async def test_existing_stems_are_not_duplicated(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        first = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [finished("vocals")]
        await stems.collect(user_id, first.id)

        second = await stems.request_separation(user_id, track.id)
        suno.stem_statuses = [finished("vocals", "instrumental")]
        collected = await stems.collect(user_id, second.id)

        assert collected.result["created"] == 1
        assert len(await stems.list_stems(user_id, track.id)) == 2

    async def test_synchronous_provider_completes_immediately(self, stems, generated_track, mureka, user_id):
        track = await generated_track("mureka", variant_number=2)
        mureka.stem_request_result = Result.ok(StemResult(
            state="completed",
            stems=[{"stem_type": "archive", "stem_name": "All stems (zip)", "stem_url": "https://cdn.example.com/s.zip"}]
        ))

        job = await stems.request_separation(user_id, track.id, variant_number=2)

        assert job.status == "completed"
        saved = await stems.list_stems(user_id, track.id, variant_number=2)
        assert [stem.stem_type for stem in saved] == ["archive"]
        assert await stems.list_stems(user_id, track.id, variant_number=1) == []

    async def test_uploaded_track_is_rejected(self, stems, make_track, user_id):
        track = await make_track("Upload")

        with pytest.raises(ValidationError):
            await stems.request_separation(user_id, track.id)

    async def test_provider_validation_error(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        suno.stem_request_result = Result.err("needs ids", error_code="invalid_request")

        with pytest.raises(ValidationError):
            await stems.request_separation(user_id, track.id)

    async def test_provider_rejection(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        suno.stem_request_result = Result.err("Suno stem separation rejected", error_code="provider_rejected")

        with pytest.raises(DispatchError):
            await stems.request_separation(user_id, track.id)

    async def test_unavailable_provider(self, stems, generated_track, suno, user_id):
        track = await generated_track()
        suno.ready = False

        with pytest.raises(DispatchError):
            await stems.request_separation(user_id, track.id)
        assert suno.stem_calls == []

    async def test_ownership_is_enforced(self, stems, generated_track, user_id):
        track = await generated_track()
        job = await stems.request_separation(user_id, track.id)
        stranger = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await stems.request_separation(stranger, track.id)
        with pytest.raises(NotFoundError):
            await stems.collect(stranger, job.id)
        with pytest.raises(NotFoundError):
            await stems.list_stems(stranger, track.id)
