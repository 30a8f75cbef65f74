"""
Stem Repository
Database operations for track stems and stem separation jobs
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models import TrackStem, StemSeparationJob, STATUS_PENDING
from ...core.result import Result
from ...core.timeutils import utcnow


class StemRepository(BaseRepository[StemSeparationJob]):
    """Repository for stems and the separation jobs that produce them"""

    def __init__(self, session: AsyncSession):
        super().__init__(StemSeparationJob, session)

    async def list_stems(
        self,
        track_id: uuid.UUID,
        variant_number: Optional[int] = None
    ) -> Result[List[TrackStem]]:
        try:
            query = select(TrackStem).where(TrackStem.track_id == track_id)
            if variant_number is not None:
                query = query.where(TrackStem.variant_number == variant_number)
            return Result.ok(await self.fetch_all(query.order_by(TrackStem.variant_number, TrackStem.stem_type)))

        except Exception as e:
            return Result.err(f"Failed to list stems: {str(e)}")

    async def add_stems(
        self,
        track_id: uuid.UUID,
        variant_number: int,
        separation_mode: str,
        stems: List[Dict[str, Any]]
    ) -> Result[List[TrackStem]]:
        """
        Insert stems that do not exist yet for (track, variant, type).

        Existing stems are never rewritten; each insert runs in its own
        savepoint so a duplicate does not abort the rest.
        """
        try:
            existing = await self.list_stems(track_id, variant_number)
            present = {stem.stem_type for stem in existing.unwrap()}
            created = []

            for stem in stems:
                if stem["stem_type"] in present:
                    continue
                try:
                    async with self.session.begin_nested():
                        row = TrackStem(
                            track_id=track_id,
                            variant_number=variant_number,
                            separation_mode=separation_mode,
                            stem_type=stem["stem_type"],
                            stem_name=stem.get("stem_name") or stem["stem_type"].replace("_", " ").title(),
                            stem_url=stem["stem_url"],
                            file_size=stem.get("file_size"),
                            duration=stem.get("duration"),
                            meta=stem.get("meta") or {}
                        )
                        self.session.add(row)
                    created.append(row)
                    present.add(stem["stem_type"])
                except IntegrityError:
                    continue

            await self.session.commit()
            return Result.ok(created)

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to save stems: {str(e)}")

    async def create_job(self, **values: Any) -> Result[StemSeparationJob]:
        try:
            return Result.ok(await self.add(StemSeparationJob(status=STATUS_PENDING, **values)))

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to create stem separation job: {str(e)}")

    async def get_job(self, job_id: uuid.UUID) -> Result[Optional[StemSeparationJob]]:
        try:
            return Result.ok(await self.get(job_id, fresh=True))

        except Exception as e:
            return Result.err(f"Failed to get stem separation job: {str(e)}")

    async def finish_job(
        self,
        job_id: uuid.UUID,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> Result[Optional[StemSeparationJob]]:
        """Close a pending job; a finished job is left as it is"""
        try:
            await self.session.execute(
                update(StemSeparationJob)
                .where(StemSeparationJob.id == job_id, StemSeparationJob.status == STATUS_PENDING)
                .values({
                    StemSeparationJob.status: status,
                    StemSeparationJob.result: result,
                    StemSeparationJob.error_message: error_message,
                    StemSeparationJob.completed_at: utcnow(),
                })
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return await self.get_job(job_id)

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to update stem separation job: {str(e)}")
