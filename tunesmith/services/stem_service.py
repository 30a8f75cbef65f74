"""
Stem Service
Starts provider stem separation for a track and stores the returned stems
"""

import uuid
from typing import Any, Dict, List, Optional, Callable, AsyncContextManager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import DispatchError, NotFoundError, ValidationError
from ..database.models import (
    StemSeparationJob,
    Track,
    TrackStem,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
)
from ..database.repositories.stem_repository import StemRepository
from ..database.repositories.track_repository import TrackRepository
from .provider_base import StemResult
from .providers import ProviderRegistry

logger = structlog.get_logger("tunesmith.stems")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class StemService:
    """Stem separation jobs and stored stems"""

    def __init__(self, session_factory: SessionFactory, providers: ProviderRegistry):
        self.session_factory = session_factory
        self.providers = providers

    async def _owned_track(self, session: AsyncSession, user_id: uuid.UUID, track_id: uuid.UUID) -> Track:
        track = await TrackRepository(session).get_user_track(user_id, track_id)
        if track is None:
            raise NotFoundError(f"Track {track_id} not found")
        return track

    async def request_separation(
        self,
        user_id: uuid.UUID,
        track_id: uuid.UUID,
        mode: str = "simple",
        variant_number: int = 1
    ) -> StemSeparationJob:
        """
        Ask the track's provider to split it into stems and record the job.
        Providers that answer synchronously complete the job immediately.
        """
        async with self.session_factory() as session:
            track = await self._owned_track(session, user_id, track_id)
            meta = track.meta or {}
            service = meta.get("service")
            provider = self.providers.get(service) if service else None
            if provider is None:
                raise ValidationError("Stem separation is only available for generated tracks")
            if not provider.is_initialized:
                raise DispatchError(service, f"{service} is not available right now")

            # Providers separate their own copy of the audio
            source_url = meta.get("original_external_url") or track.audio_url
            result = await provider.request_stems(
                audio_url=source_url,
                external_task_id=track.task_id,
                provider_track_id=meta.get("provider_track_id"),
                mode=mode
            )
            if result.is_err():
                logger.error(
                    "Stem separation request failed",
                    track_id=str(track_id),
                    service=service,
                    error=result.error
                )
                if result.error_code == "invalid_request":
                    raise ValidationError(result.error)
                raise DispatchError(
                    service,
                    f"Could not start stem separation with {service}. Please try again.",
                    {"reason": result.error_code or "provider_error"}
                )

            stems = StemRepository(session)
            job = (await stems.create_job(
                user_id=user_id,
                track_id=track.id,
                variant_number=variant_number,
                service=service,
                external_task_id=result.data.external_task_id,
                separation_mode=mode
            )).unwrap()

            logger.info(
                "Stem separation started",
                job_id=str(job.id),
                track_id=str(track_id),
                service=service,
                mode=mode
            )

            if result.data.state != STATUS_PENDING:
                job = await self._apply(stems, job, result.data)
            return job

    async def collect(self, user_id: uuid.UUID, job_id: uuid.UUID) -> StemSeparationJob:
        """
        Check a pending job with the provider and store finished stems.
        A status check that fails leaves the job pending.
        """
        async with self.session_factory() as session:
            stems = StemRepository(session)
            job = (await stems.get_job(job_id)).unwrap()
            if job is None or job.user_id != user_id:
                raise NotFoundError(f"Stem job {job_id} not found")
            if job.status != STATUS_PENDING or not job.external_task_id:
                return job

            provider = self.providers.get(job.service)
            if provider is None or not provider.is_initialized:
                raise DispatchError(job.service, f"{job.service} is not available right now")

            result = await provider.get_stem_status(job.external_task_id)
            if result.is_err():
                logger.warning("Stem status check failed", job_id=str(job_id), error=result.error)
                return job

            if result.data.state == STATUS_PENDING:
                return job
            return await self._apply(stems, job, result.data)

    async def _apply(self, stems: StemRepository, job: StemSeparationJob, outcome: StemResult) -> StemSeparationJob:
        if outcome.state == STATUS_FAILED:
            finished = await stems.finish_job(
                job.id,
                STATUS_FAILED,
                error_message=outcome.error_message or "Stem separation failed"
            )
            logger.warning("Stem separation failed", job_id=str(job.id), error=outcome.error_message)
            return finished.unwrap()

        saved = (await stems.add_stems(
            job.track_id,
            job.variant_number,
            job.separation_mode,
            outcome.stems
        )).unwrap()
        result: Dict[str, Any] = {
            "stem_types": [stem["stem_type"] for stem in outcome.stems],
            "created": len(saved),
        }
        finished = await stems.finish_job(job.id, STATUS_COMPLETED, result=result)
        logger.info("Stem separation completed", job_id=str(job.id), stems=len(outcome.stems), created=len(saved))
        return finished.unwrap()

    async def list_stems(
        self,
        user_id: uuid.UUID,
        track_id: uuid.UUID,
        variant_number: Optional[int] = None
    ) -> List[TrackStem]:
        async with self.session_factory() as session:
            await self._owned_track(session, user_id, track_id)
            return (await StemRepository(session).list_stems(track_id, variant_number)).unwrap()
