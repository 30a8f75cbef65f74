"""
API tests for the Tunesmith FastAPI application
Runs the routes in-process against the test database and scripted providers
"""
import uuid

import httpx
import pytest
import pytest_asyncio

from tunesmith.api.dependencies import build_services
from tunesmith.core.config import get_settings
from tunesmith.core.result import Result
from tunesmith.main import app
from tunesmith.services.provider_base import StemResult
from tunesmith.services.providers import ProviderRegistry
from tunesmith.services.suno_provider import SunoProvider

from conftest import completed_status


@pytest_asyncio.fixture
async def services(session_factory, providers, audio_client):
    services = build_services(
        get_settings(),
        session_factory,
        providers=providers,
        http_client=audio_client,
        background_downloads=False
    )
    app.state.services = services
    yield services
    await services.scheduler.shutdown()
    app.state.services = None


@pytest_asyncio.fixture
async def client(services):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def headers(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.mark.integration
class TestGenerationEndpoints:
    """Generation dispatch and inspection"""

    async def test_create_generation(self, client, headers, suno, services):
        suno.submit_result = Result.ok("suno-abc")

        response = await client.post("/api/generations", json={"prompt": "test track", "service": "suno"}, headers=headers)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["external_task_id"] == "suno-abc"
        assert body["metadata"]["suno_task_id"] == "suno-abc"
        assert services.scheduler.is_tracking(uuid.UUID(body["id"]))

    async def test_user_header_is_required(self, client):
        response = await client.post("/api/generations", json={"prompt": "test track"})

        assert response.status_code == 401

    async def test_user_header_must_be_uuid(self, client):
        response = await client.get("/api/generations", headers={"X-User-Id": "not-a-uuid"})

        assert response.status_code == 400

    async def test_unknown_service_is_rejected(self, client, headers):
        response = await client.post("/api/generations", json={"prompt": "test track", "service": "udio"}, headers=headers)

        assert response.status_code == 422

    async def test_empty_prompt(self, client, headers):
        response = await client.post("/api/generations", json={"prompt": "  ", "service": "suno"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_provider_failure_is_502(self, client, headers, suno):
        suno.submit_result = Result.err("Suno API error: 500", error_code="http_error")

        response = await client.post("/api/generations", json={"prompt": "test track"}, headers=headers)

        assert response.status_code == 502
        assert response.json()["error"] == "dispatch_failed"

    async def test_provider_error_with_string_body_is_502(self, session_factory, mureka, audio_client, headers):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, json="Service Unavailable"))
        suno = SunoProvider(api_key="test-key", transport=transport)
        await suno.initialize()
        services = build_services(
            get_settings(),
            session_factory,
            providers=ProviderRegistry({"suno": suno, "mureka": mureka}),
            http_client=audio_client,
            background_downloads=False
        )
        app.state.services = services
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post("/api/generations", json={"prompt": "test track"}, headers=headers)
        finally:
            await services.scheduler.shutdown()
            await suno.cleanup()
            app.state.services = None

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "dispatch_failed"
        assert body["details"]["reason"] == "http_error"

    async def test_rate_limit_returns_429(self, client, headers):
        for _ in range(5):
            response = await client.post("/api/generations", json={"prompt": "test track"}, headers=headers)
            assert response.status_code == 201

        response = await client.post("/api/generations", json={"prompt": "test track"}, headers=headers)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        body = response.json()
        assert body["error"] == "rate_limited"
        assert body["details"]["service"] == "suno"

        status = await client.get("/api/rate-limits/suno", headers=headers)
        assert status.json()["remaining"] == 0
        assert status.json()["allowed"] is False

    async def test_list_and_get(self, client, headers, make_task):
        task = await make_task("suno-1")
        await make_task("suno-2", owner=uuid.uuid4())

        listed = await client.get("/api/generations", headers=headers)
        fetched = await client.get(f"/api/generations/{task.id}", headers=headers)
        missing = await client.get(f"/api/generations/{uuid.uuid4()}", headers=headers)

        assert [item["id"] for item in listed.json()] == [str(task.id)]
        assert fetched.json()["prompt"] == "test track"
        assert missing.status_code == 404

    async def test_cancel(self, client, headers, make_task):
        task = await make_task("suno-1")

        cancelled = await client.post(f"/api/generations/{task.id}/cancel", headers=headers)
        again = await client.post(f"/api/generations/{task.id}/cancel", headers=headers)

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "failed"
        assert cancelled.json()["failure_reason"] == "cancelled"
        assert again.status_code == 409

    async def test_sweep(self, client, headers, make_task, suno):
        await make_task("suno-1")
        suno.statuses = [Result.ok(completed_status("https://cdn.example.com/a.mp3", "https://cdn.example.com/b.mp3"))]

        response = await client.post("/api/generations/sweep", headers=headers)

        assert response.json()["completed"] == 1
        tracks = await client.get("/api/tracks", headers=headers)
        assert len(tracks.json()) == 2
        assert len({track["variant_group_id"] for track in tracks.json()}) == 1


@pytest.mark.integration
class TestTrackEndpoints:
    """Tracks, variants and storage"""

    async def test_group_and_variants(self, client, headers, make_track):
        first = await make_track("A", external_task_id="abc123", source_index=0)
        await make_track("B", external_task_id="abc123", source_index=1, created_offset=1)

        grouped = await client.post("/api/tracks/group", json={"task_id": "abc123"}, headers=headers)
        variants = await client.get(f"/api/tracks/{first.id}/variants", headers=headers)

        assert grouped.json()["tracks_updated"] == 2
        assert [track["variant_number"] for track in variants.json()] == [1, 2]
        assert variants.json()[0]["is_master_variant"] is True

    async def test_group_without_body(self, client, headers, make_track):
        await make_track("A", external_task_id="abc123", source_index=0)
        await make_track("B", external_task_id="abc123", source_index=1)

        response = await client.post("/api/tracks/group", headers=headers)

        assert response.status_code == 200
        assert response.json()["groups_updated"] == 1

    async def test_set_master(self, client, headers, make_track):
        await make_track("A", external_task_id="abc123", source_index=0)
        second = await make_track("B", external_task_id="abc123", source_index=1, created_offset=1)
        await client.post("/api/tracks/group", headers=headers)

        response = await client.post(f"/api/tracks/{second.id}/master", headers=headers)

        masters = [track["id"] for track in response.json() if track["is_master_variant"]]
        assert masters == [str(second.id)]

    async def test_set_master_on_ungrouped_track(self, client, headers, make_track):
        track = await make_track("Solo")

        response = await client.post(f"/api/tracks/{track.id}/master", headers=headers)

        assert response.status_code == 400

    async def test_delete_hides_track(self, client, headers, make_track):
        track = await make_track("Doomed")

        deleted = await client.delete(f"/api/tracks/{track.id}", headers=headers)
        fetched = await client.get(f"/api/tracks/{track.id}", headers=headers)

        assert deleted.status_code == 204
        assert fetched.status_code == 404

    async def test_other_users_track_is_hidden(self, client, headers, make_track):
        track = await make_track("Theirs", owner=uuid.uuid4())

        response = await client.get(f"/api/tracks/{track.id}", headers=headers)

        assert response.status_code == 404

    async def test_sync_storage(self, client, headers, make_track):
        await make_track("Remote", audio_url="https://cdn.example.com/remote.mp3")

        response = await client.post("/api/tracks/sync-storage", headers=headers)

        body = response.json()
        assert body["total"] == 1
        assert body["successes"] == 1

    async def test_audio_url(self, client, headers, make_track, services):
        track = await make_track("Remote", audio_url="https://cdn.example.com/remote.mp3")

        external = await client.get(f"/api/tracks/{track.id}/audio-url", headers=headers)
        await client.post("/api/tracks/sync-storage", headers=headers)
        stored = await client.get(f"/api/tracks/{track.id}/audio-url", headers=headers)

        assert external.json()["url"] == "https://cdn.example.com/remote.mp3"
        assert external.json()["stored"] is False
        assert stored.json()["stored"] is True
        assert stored.json()["url"].startswith(services.storage.public_url + "/")

    async def test_stems(self, client, headers, make_track, suno):
        track = await make_track(
            "Generated",
            external_task_id="suno-1",
            source_index=0,
            meta={"service": "suno", "task_id": "suno-1", "provider_track_id": "audio-0"}
        )
        suno.stem_statuses = [Result.ok(StemResult(
            state="completed",
            stems=[{"stem_type": "vocals", "stem_url": "https://cdn.example.com/vocals.mp3"}]
        ))]

        started = await client.post(f"/api/tracks/{track.id}/stems", json={"mode": "simple"}, headers=headers)
        collected = await client.post(f"/api/stems/jobs/{started.json()['id']}/collect", headers=headers)
        listed = await client.get(f"/api/tracks/{track.id}/stems", headers=headers)

        assert started.status_code == 202
        assert started.json()["status"] == "pending"
        assert collected.json()["status"] == "completed"
        assert [stem["stem_type"] for stem in listed.json()] == ["vocals"]


@pytest.mark.integration
class TestSunoCallback:
    """Provider callbacks"""

    def callback(self, task_id, callback_type="complete", code=200, tracks=None):
        return {
            "code": code,
            "msg": "ok" if code == 200 else "Generation rejected",
            "data": {
                "callbackType": callback_type,
                "task_id": task_id,
                "data": tracks or [],
            },
        }

    async def test_complete_callback_saves_tracks(self, client, headers, make_task, session_factory):
        task = await make_task("suno-cb")
        body = self.callback("suno-cb", tracks=[
            {"id": "a", "audio_url": "https://cdn.example.com/a.mp3", "title": "One"},
            {"id": "b", "audio_url": "https://cdn.example.com/b.mp3", "title": "Two"},
        ])

        response = await client.post("/api/callbacks/suno", json=body)
        duplicate = await client.post("/api/callbacks/suno", json=body)

        assert response.json() == {"status": "received", "task_status": "completed"}
        assert duplicate.json()["task_status"] == "completed"
        fetched = await client.get(f"/api/generations/{task.id}", headers=headers)
        assert fetched.json()["status"] == "completed"
        tracks = await client.get("/api/tracks", headers=headers)
        assert sorted(track["title"] for track in tracks.json()) == ["One", "Two"]

    async def test_error_callback_fails_task(self, client, headers, make_task):
        task = await make_task("suno-cb")

        response = await client.post("/api/callbacks/suno", json=self.callback("suno-cb", code=400))

        assert response.json()["task_status"] == "failed"
        fetched = await client.get(f"/api/generations/{task.id}", headers=headers)
        assert fetched.json()["failure_reason"] == "provider"
        assert fetched.json()["error_message"] == "Generation rejected"

    async def test_intermediate_callback_is_acknowledged(self, client, make_task):
        await make_task("suno-cb")

        response = await client.post("/api/callbacks/suno", json=self.callback("suno-cb", "text"))

        assert response.json() == {"status": "received", "task_status": "pending"}

    async def test_unknown_task(self, client):
        response = await client.post("/api/callbacks/suno", json=self.callback("nobody"))

        assert response.status_code == 200
        assert "warning" in response.json()

    async def test_invalid_bodies(self, client):
        not_json = await client.post(
            "/api/callbacks/suno",
            content=b"{oops",
            headers={"Content-Type": "application/json"}
        )
        no_task = await client.post("/api/callbacks/suno", json={"code": 200, "data": {}})

        assert not_json.status_code == 400
        assert no_task.status_code == 400


@pytest.mark.integration
class TestServiceEndpoints:
    """Notifications, info and availability"""

    async def test_notifications(self, client, headers, services, user_id):
        await services.notifier.publish(user_id, "progress", "Generating", "50% done")

        response = await client.get("/api/notifications", headers=headers)

        assert response.status_code == 200
        assert response.json()[0]["message"] == "50% done"

    async def test_info(self, client):
        response = await client.get("/api/info")

        assert response.json()["providers"] == ["suno", "mureka"]

    async def test_health_without_database(self, client):
        response = await client.get("/health")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["services"]["database"] == "unhealthy"
        assert body["services"]["redis"] == "disabled"
        assert body["services"]["providers"] == {"suno": "available", "mureka": "available"}

    async def test_routes_need_services(self, headers):
        app.state.services = None
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/generations", headers=headers)

        assert response.status_code == 503
