"""
Tunesmith Tracks API Routes
REST endpoints for tracks, variant groups and storage sync
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from ..dependencies import ServiceContainer, get_current_user_id, get_services
from ...core.errors import NotFoundError
from ...database.models import STORAGE_STORED
from ...database.repositories.track_repository import TrackRepository
from ...database.schemas import (
    AudioUrlResponse,
    GroupTracksRequest,
    GroupingSummary,
    StorageSyncSummary,
    TrackResponse,
)

router = APIRouter()


@router.get("", response_model=List[TrackResponse])
async def list_tracks(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    async with services.session_factory() as session:
        return await TrackRepository(session).list_user_tracks(user_id, skip, limit)


@router.post("/group", response_model=GroupingSummary)
async def group_tracks(
    request: Optional[GroupTracksRequest] = Body(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """
    Group takes of the same provider task into variants.

    Without a task id every track of the caller is scanned. Safe to repeat.
    """
    task_id = request.task_id if request else None
    return await services.grouper.group_tracks(user_id, task_id)


@router.post("/sync-storage", response_model=StorageSyncSummary)
async def sync_storage(
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Retry copying externally hosted audio into storage"""
    return await services.bridge.sync_storage(
        user_id=user_id,
        limit=limit or services.settings.STORAGE_SYNC_BATCH_SIZE
    )


@router.get("/{track_id}", response_model=TrackResponse)
async def get_track(
    track_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    async with services.session_factory() as session:
        track = await TrackRepository(session).get_user_track(user_id, track_id)
    if track is None:
        raise NotFoundError(f"Track {track_id} not found")
    return track


@router.get("/{track_id}/audio-url", response_model=AudioUrlResponse)
async def get_audio_url(
    track_id: uuid.UUID,
    expires_in: Optional[int] = Query(None, ge=60, le=7 * 24 * 3600),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """
    Link for downloading a track. Stored audio gets a signed URL from the
    storage backend; audio still hosted by the provider is returned as is.
    """
    async with services.session_factory() as session:
        track = await TrackRepository(session).get_user_track(user_id, track_id)
    if track is None:
        raise NotFoundError(f"Track {track_id} not found")

    key = (track.meta or {}).get("local_storage_path")
    if track.storage_status == STORAGE_STORED and key:
        signed = await services.storage.signed_url(key, expires_in)
        return AudioUrlResponse(track_id=track.id, url=signed.url, stored=True, expires_at=signed.expires_at)

    if not track.audio_url:
        raise NotFoundError(f"Track {track_id} has no audio")
    return AudioUrlResponse(track_id=track.id, url=track.audio_url, stored=False)


@router.delete("/{track_id}", status_code=204)
async def delete_track(
    track_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Hide a track; the row and its audio are kept"""
    async with services.session_factory() as session:
        repo = TrackRepository(session)
        track = await repo.get_user_track(user_id, track_id)
        if track is None:
            raise NotFoundError(f"Track {track_id} not found")
        await repo.soft_delete(track)
        await session.commit()
    return Response(status_code=204)


@router.get("/{track_id}/variants", response_model=List[TrackResponse])
async def list_variants(
    track_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    return await services.grouper.list_variants(user_id, track_id)


@router.post("/{track_id}/master", response_model=List[TrackResponse])
async def set_master_variant(
    track_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Make this track the master of its variant group"""
    return await services.grouper.set_master_variant(user_id, track_id)
