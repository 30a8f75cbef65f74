"""
Track Repository
Database operations for tracks, variant groups and storage state
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository, ConflictError
from ..models import Track, STORAGE_STORED


class TrackRepository(BaseRepository[Track]):
    """Repository for track operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Track, session)

    async def get_user_track(self, user_id: uuid.UUID, track_id: uuid.UUID) -> Optional[Track]:
        """Get a non-deleted track owned by the user"""
        result = await self.session.execute(
            select(Track).where(
                Track.id == track_id,
                Track.user_id == user_id,
                Track.is_deleted.is_(False)
            )
        )
        return result.scalar_one_or_none()

    async def list_user_tracks(
        self,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 100
    ) -> List[Track]:
        return await self.fetch_all(
            select(Track)
            .where(Track.user_id == user_id, Track.is_deleted.is_(False))
            .order_by(Track.created_at.desc(), Track.id)
            .offset(skip)
            .limit(limit)
        )

    async def get_by_task(self, external_task_id: str) -> List[Track]:
        """Tracks created from one provider task, in take order"""
        return await self.fetch_all(
            select(Track)
            .where(Track.external_task_id == external_task_id)
            .order_by(Track.source_index)
        )

    async def get_by_task_and_index(self, external_task_id: str, source_index: int) -> Optional[Track]:
        result = await self.session.execute(
            select(Track).where(
                Track.external_task_id == external_task_id,
                Track.source_index == source_index
            )
        )
        return result.scalar_one_or_none()

    async def upsert_generated(self, values: Dict[str, Any]) -> Track:
        """
        Insert a generated take or update the existing row for the same
        (external_task_id, source_index).

        The insert runs inside a savepoint so a concurrent insert of the same
        take falls back to updating the winner's row.
        """
        external_task_id = values["external_task_id"]
        source_index = values["source_index"]

        existing = await self.get_by_task_and_index(external_task_id, source_index)
        if existing is None:
            try:
                async with self.session.begin_nested():
                    track = Track(**values)
                    self.session.add(track)
                await self.session.refresh(track)
                return track
            except IntegrityError:
                existing = await self.get_by_task_and_index(external_task_id, source_index)
                if existing is None:
                    raise ConflictError(
                        f"Track for task {external_task_id} take {source_index} could not be saved"
                    )

        for field in ("title", "duration", "lyrics", "image_url"):
            if values.get(field) is not None and getattr(existing, field) in (None, ""):
                setattr(existing, field, values[field])
        # Keep a localized audio URL over a fresh remote one
        if existing.storage_status != STORAGE_STORED and values.get("audio_url"):
            existing.audio_url = values["audio_url"]
        existing.meta = {**values.get("meta", {}), **(existing.meta or {})}
        await self.session.flush()
        return existing

    async def list_for_grouping(
        self,
        user_id: uuid.UUID,
        task_id: Optional[str] = None
    ) -> List[Track]:
        """Non-deleted tracks of a user that carry a provider task id"""
        query = select(Track).where(Track.user_id == user_id, Track.is_deleted.is_(False))
        result = await self.session.execute(query.order_by(Track.created_at, Track.id))
        tracks = [track for track in result.scalars().all() if track.task_id]
        if task_id is not None:
            tracks = [track for track in tracks if track.task_id == task_id]
        return tracks

    async def list_variant_group(self, variant_group_id: uuid.UUID) -> List[Track]:
        return await self.fetch_all(
            select(Track)
            .where(Track.variant_group_id == variant_group_id, Track.is_deleted.is_(False))
            .order_by(Track.variant_number, Track.created_at)
        )

    async def list_unlocalized(
        self,
        storage_url_prefix: str,
        user_id: Optional[uuid.UUID] = None,
        limit: int = 50
    ) -> List[Track]:
        """Tracks whose audio still points at an external URL"""
        query = select(Track).where(
            Track.is_deleted.is_(False),
            Track.audio_url.is_not(None),
            Track.audio_url != "",
            ~Track.audio_url.startswith(storage_url_prefix, autoescape=True)
        )
        if user_id is not None:
            query = query.where(Track.user_id == user_id)
        return await self.fetch_all(query.order_by(Track.created_at, Track.id).limit(limit))

    async def soft_delete(self, track: Track) -> Track:
        """
        Hide a track and take it out of its variant group. When it was the
        master, the lowest-numbered remaining variant becomes master.
        """
        group_id = track.variant_group_id
        was_master = bool(track.is_master_variant)

        track.is_deleted = True
        track.variant_group_id = None
        track.variant_number = None
        track.is_master_variant = False
        track.meta = {**(track.meta or {}), "deleted": True}
        await self.session.flush()

        if group_id is not None and was_master:
            survivors = await self.list_variant_group(group_id)
            if survivors:
                survivors[0].is_master_variant = True
                await self.session.flush()
        return track
