"""
Track Variant Grouper
Groups the takes of one provider task into a numbered variant set
"""

import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, AsyncContextManager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..database.models import Track
from ..database.repositories.track_repository import TrackRepository
from ..database.schemas import GroupingSummary, VariantFailure, VariantUpdate

logger = structlog.get_logger("tunesmith.variants")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _variant_order(track: Track):
    # Tracks that already carry a number keep their place ahead of new ones
    numbered = track.variant_number is not None
    return (
        0 if numbered else 1,
        track.variant_number if numbered else 0,
        track.created_at or datetime.min,
        track.source_index if track.source_index is not None else 0,
        str(track.id),
    )


def plan_group(tracks: List[Track]) -> List[VariantUpdate]:
    """
    Work out the target (group, number, master) for every track of one
    partition. Returns only the tracks whose stored values differ.
    """
    ordered = sorted(tracks, key=_variant_order)

    group_id = next(
        (track.variant_group_id for track in ordered if track.variant_group_id is not None),
        None
    ) or uuid.uuid4()
    master = next((track for track in ordered if track.is_master_variant), ordered[0])

    updates = []
    for number, track in enumerate(ordered, start=1):
        is_master = track is master
        if (
            track.variant_group_id == group_id
            and track.variant_number == number
            and bool(track.is_master_variant) == is_master
        ):
            continue
        updates.append(VariantUpdate(
            track_id=track.id,
            task_id=track.task_id,
            variant_group_id=group_id,
            variant_number=number,
            is_master_variant=is_master
        ))
    return updates


class VariantGrouper:
    """Assigns variant groups, numbers and masters to a user's tracks"""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def group_tracks(self, user_id: uuid.UUID, task_id: Optional[str] = None) -> GroupingSummary:
        """
        Group the user's tracks by provider task id.

        With `task_id` only that task's tracks are considered. Running this
        twice in a row makes no changes the second time.
        """
        summary = GroupingSummary()

        async with self.session_factory() as session:
            repo = TrackRepository(session)
            candidates = await repo.list_for_grouping(user_id, task_id)

            partitions: Dict[str, List[Track]] = OrderedDict()
            for track in candidates:
                partitions.setdefault(track.task_id, []).append(track)

            by_id = {track.id: track for track in candidates}
            for partition_task_id, tracks in partitions.items():
                if len(tracks) < 2:
                    continue

                written = 0
                for update in plan_group(tracks):
                    track = by_id[update.track_id]
                    try:
                        async with session.begin_nested():
                            track.variant_group_id = update.variant_group_id
                            track.variant_number = update.variant_number
                            track.is_master_variant = update.is_master_variant
                    except Exception as e:
                        # The savepoint rolled back this track only
                        logger.warning(
                            "Variant update failed",
                            track_id=str(update.track_id),
                            task_id=partition_task_id,
                            error=str(e)
                        )
                        summary.failures.append(VariantFailure(
                            track_id=update.track_id,
                            task_id=partition_task_id,
                            error=str(e)
                        ))
                        continue
                    summary.updates.append(update)
                    written += 1

                if written:
                    summary.groups_updated += 1
                    summary.tracks_updated += written

            await session.commit()

        logger.info(
            "Variant grouping finished",
            user_id=str(user_id),
            task_id=task_id,
            groups_updated=summary.groups_updated,
            tracks_updated=summary.tracks_updated,
            failures=len(summary.failures)
        )
        return summary

    async def list_variants(self, user_id: uuid.UUID, track_id: uuid.UUID) -> List[Track]:
        """All variants in the track's group, or just the track when ungrouped"""
        async with self.session_factory() as session:
            repo = TrackRepository(session)
            track = await repo.get_user_track(user_id, track_id)
            if track is None:
                raise NotFoundError(f"Track {track_id} not found")
            if track.variant_group_id is None:
                return [track]
            return await repo.list_variant_group(track.variant_group_id)

    async def set_master_variant(self, user_id: uuid.UUID, track_id: uuid.UUID) -> List[Track]:
        """Make one track the master of its group; every other variant is cleared"""
        async with self.session_factory() as session:
            repo = TrackRepository(session)
            track = await repo.get_user_track(user_id, track_id)
            if track is None:
                raise NotFoundError(f"Track {track_id} not found")
            if track.variant_group_id is None:
                raise ValidationError("Track is not part of a variant group")

            variants = await repo.list_variant_group(track.variant_group_id)
            for variant in variants:
                variant.is_master_variant = variant.id == track.id
            await session.commit()

        logger.info(
            "Master variant changed",
            user_id=str(user_id),
            track_id=str(track_id),
            variant_group_id=str(track.variant_group_id)
        )
        return variants
