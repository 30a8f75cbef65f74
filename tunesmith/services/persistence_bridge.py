"""
Persistence Bridge
Turns finished provider tasks into tracks and localizes their audio
"""

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, AsyncContextManager

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import StorageError
from ..core.logging import storage_logger, generation_logger
from ..core.result import Result
from ..core.timeutils import utcnow
from ..database.models import (
    GenerationTask,
    Track,
    STATUS_COMPLETED,
    STORAGE_DOWNLOADING,
    STORAGE_EXTERNAL,
    STORAGE_FAILED,
    STORAGE_STORED,
)
from ..database.repositories.generation_repository import GenerationRepository
from ..database.repositories.track_repository import TrackRepository
from ..database.schemas import StorageSyncItem, StorageSyncSummary
from .payloads import NormalizedTrack, ProviderStatus, extract_audio_url
from .storage import ObjectStorage

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class PersistenceBridge:
    """Completion handling, audio localization and storage sync"""

    def __init__(
        self,
        session_factory: SessionFactory,
        storage: ObjectStorage,
        http_client: Optional[httpx.AsyncClient] = None,
        download_timeout: float = 120.0,
        max_file_size: int = 100 * 1024 * 1024,
        background_downloads: bool = True
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.download_timeout = download_timeout
        self.max_file_size = max_file_size
        self.background_downloads = background_downloads
        self._http_client = http_client
        self._owns_client = http_client is None
        self._pending: Set[asyncio.Task] = set()

    async def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.download_timeout),
                follow_redirects=True
            )
        return self._http_client

    async def close(self) -> None:
        await self.drain()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def drain(self) -> None:
        """Wait for background downloads and enrichment to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    def _takes(status: ProviderStatus) -> List[NormalizedTrack]:
        if status.tracks:
            return status.tracks
        url = extract_audio_url(status.raw)
        if not url:
            return []
        return [NormalizedTrack(audio_url=url)]

    @staticmethod
    def _title_for(task: GenerationTask, take: NormalizedTrack) -> str:
        request = (task.meta or {}).get("request") or {}
        title = take.title or request.get("title") or " ".join(task.prompt.split()[:4]) or "AI Generated Song"
        return title[:255]

    async def on_generation_complete(
        self,
        task_id: uuid.UUID,
        status: ProviderStatus
    ) -> Result[List[Track]]:
        """
        Upsert one track per finished take and mark the task completed.

        Safe to call more than once for the same task: takes are keyed by
        (provider task id, take index) and a completed task with saved
        tracks is returned as is.
        """
        async with self.session_factory() as session:
            tasks = GenerationRepository(session)
            track_repo = TrackRepository(session)

            task = (await tasks.get_task(task_id)).unwrap()
            if task is None:
                return Result.err(f"Generation task {task_id} not found", error_code="not_found")

            existing = await track_repo.get_by_task(task.external_task_id) if task.external_task_id else []
            if task.status == STATUS_COMPLETED and existing:
                return Result.ok(existing)
            previous_status = task.status
            if task.is_terminal:
                return Result.err(
                    f"Generation task {task_id} is already {task.status}",
                    error_code="terminal"
                )

            if not task.external_task_id:
                return Result.err(f"Generation task {task_id} has no provider task id", error_code="invalid_state")

            takes = self._takes(status)
            if not takes:
                return Result.err("Completion payload has no audio URL", error_code="no_audio")

            try:
                tracks = []
                for index, take in enumerate(takes):
                    track = await track_repo.upsert_generated({
                        "user_id": task.user_id,
                        "title": self._title_for(task, take),
                        "audio_url": take.audio_url,
                        "duration": take.duration,
                        "lyrics": take.lyrics,
                        "image_url": take.image_url,
                        "external_task_id": task.external_task_id,
                        "source_index": index,
                        "storage_status": STORAGE_EXTERNAL,
                        "meta": {
                            "task_id": task.external_task_id,
                            f"{task.service}_task_id": task.external_task_id,
                            "service": task.service,
                            "generation_task_id": str(task.id),
                            "provider_track_id": take.provider_track_id,
                            "original_external_url": take.audio_url,
                            "tags": take.tags,
                            "model_name": take.model_name,
                        },
                    })
                    tracks.append(track)
                await session.commit()
            except Exception as e:
                await session.rollback()
                return Result.err(f"Failed to save generated tracks: {str(e)}", error_code="persistence")

            primary = tracks[0]
            moved = await tasks.transition(
                task.id,
                STATUS_COMPLETED,
                result_url=primary.audio_url,
                track_id=primary.id,
                error_message=None
            )
            if moved.is_err():
                return Result.err(moved.error, error_code="persistence")
            if moved.data is None:
                # Another completion path finished the task first
                return Result.ok(await track_repo.get_by_task(task.external_task_id))

            await tasks.merge_metadata(task.id, {
                "provider_status": status.raw_status,
                "track_ids": [str(track.id) for track in tracks],
            })
            track_ids = [track.id for track in tracks]

        generation_logger.log_transition(str(task_id), previous_status, STATUS_COMPLETED, 100, tracks=len(track_ids))

        for track_id, take in zip(track_ids, takes):
            if self.background_downloads:
                self._spawn(self._post_process(track_id, take))
            else:
                await self._post_process(track_id, take)

        async with self.session_factory() as session:
            saved = await TrackRepository(session).get_by_task(task.external_task_id)
        return Result.ok(saved)

    async def _post_process(self, track_id: uuid.UUID, take: NormalizedTrack) -> None:
        await self.localize_track(track_id)
        await self.enrich_track(track_id, take)

    def _storage_key(self, track: Track) -> str:
        meta = track.meta or {}
        service = meta.get("service") or "uploads"
        if track.external_task_id is not None and track.source_index is not None:
            name = f"{track.external_task_id}-{track.source_index}"
        else:
            name = str(track.id)
        return f"{track.user_id}/{service}/{name}.mp3"

    async def _download(self, url: str) -> bytes:
        client = await self._client()
        try:
            response = await client.get(url)
        except httpx.RequestError as e:
            raise StorageError(f"Download failed: {e}")

        if response.status_code != 200:
            raise StorageError(f"Download failed with status {response.status_code}")
        if not response.content:
            raise StorageError("Downloaded file is empty")
        if len(response.content) > self.max_file_size:
            raise StorageError(f"Downloaded file exceeds {self.max_file_size} bytes")
        return response.content

    async def localize_track(self, track_id: uuid.UUID) -> Result[Track]:
        """
        Copy a track's remote audio into object storage and point the track
        at the stored copy. On failure the remote URL stays in place.
        """
        async with self.session_factory() as session:
            repo = TrackRepository(session)
            track = await repo.get(track_id)
            if track is None:
                return Result.err(f"Track {track_id} not found", error_code="not_found")

            source_url = track.audio_url
            if not source_url:
                return Result.err(f"Track {track_id} has no audio URL", error_code="no_audio")
            if self.storage.is_stored_url(source_url):
                return Result.ok(track)

            track.storage_status = STORAGE_DOWNLOADING
            await session.commit()

            storage_logger.log_download_start(str(track_id), source_url)
            start_time = time.perf_counter()

            try:
                data = await self._download(source_url)
                stored = await self.storage.put(self._storage_key(track), data)
            except StorageError as e:
                storage_logger.log_download_error(str(track_id), e.message)
                track.storage_status = STORAGE_FAILED
                track.meta = {
                    **(track.meta or {}),
                    "storage_error": e.message,
                    "storage_attempted_at": utcnow().isoformat(),
                }
                await session.commit()
                return Result.err(e.message, error_code="download_failed")

            track.audio_url = stored.url
            track.storage_status = STORAGE_STORED
            meta = {
                **(track.meta or {}),
                "local_storage_path": stored.key,
                "file_size": stored.size,
                "downloaded_at": utcnow().isoformat(),
            }
            meta.setdefault("original_external_url", source_url)
            meta.pop("storage_error", None)
            track.meta = meta
            await session.commit()

            await self._refresh_task_result(session, track, source_url, stored.url)

            storage_logger.log_download_complete(
                str(track_id),
                stored.key,
                stored.size,
                (time.perf_counter() - start_time) * 1000
            )
            return Result.ok(track)

    async def _refresh_task_result(
        self,
        session: AsyncSession,
        track: Track,
        old_url: str,
        new_url: str
    ) -> None:
        """Point the originating task's result_url at the stored copy"""
        generation_task_id = (track.meta or {}).get("generation_task_id")
        if not generation_task_id:
            return
        repo = GenerationRepository(session)
        task = (await repo.get_task(uuid.UUID(generation_task_id))).unwrap_or(None)
        if task is not None and task.result_url == old_url:
            task.result_url = new_url
            await session.commit()

    async def enrich_track(self, track_id: uuid.UUID, take: Optional[NormalizedTrack] = None) -> None:
        """Best-effort metadata enrichment; failures are only logged"""
        try:
            async with self.session_factory() as session:
                track = await TrackRepository(session).get(track_id)
                if track is None:
                    return

                meta = dict(track.meta or {})
                meta["generation_info"] = {
                    "service": meta.get("service"),
                    "model_name": take.model_name if take else meta.get("model_name"),
                    "enhanced_at": utcnow().isoformat(),
                }
                content_info: Dict[str, Any] = {"has_lyrics": bool(track.lyrics or (take and take.lyrics))}
                if take and take.tags:
                    content_info["tags"] = [tag.strip() for tag in take.tags.split(",") if tag.strip()]
                meta["content_info"] = content_info
                track.meta = meta

                if not track.lyrics and take and take.lyrics:
                    track.lyrics = take.lyrics
                if not track.image_url and take and take.image_url:
                    track.image_url = take.image_url

                await session.commit()
        except Exception as e:
            storage_logger.logger.warning("Track enrichment failed", track_id=str(track_id), error=str(e))

    async def sync_storage(
        self,
        user_id: Optional[uuid.UUID] = None,
        limit: int = 50
    ) -> StorageSyncSummary:
        """Retry localization for tracks whose audio is still external"""
        async with self.session_factory() as session:
            candidates = await TrackRepository(session).list_unlocalized(
                self.storage.public_url + "/",
                user_id=user_id,
                limit=limit
            )
            track_ids = [track.id for track in candidates]

        summary = StorageSyncSummary(total=len(track_ids))
        for track_id in track_ids:
            result = await self.localize_track(track_id)
            if result.is_ok():
                summary.successes += 1
                summary.processed.append(StorageSyncItem(
                    track_id=track_id,
                    success=True,
                    audio_url=result.data.audio_url
                ))
            else:
                summary.failures += 1
                summary.processed.append(StorageSyncItem(
                    track_id=track_id,
                    success=False,
                    error=result.error
                ))

        storage_logger.log_sweep(summary.total, summary.successes, summary.failures)
        return summary
