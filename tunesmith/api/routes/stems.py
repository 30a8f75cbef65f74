"""
Tunesmith Stems API Routes
Provider stem separation for generated tracks
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..dependencies import ServiceContainer, get_current_user_id, get_services
from ...database.schemas import StemJobResponse, StemSeparationCreate, TrackStemResponse

router = APIRouter()


@router.post("/tracks/{track_id}/stems", response_model=StemJobResponse, status_code=202)
async def request_stem_separation(
    track_id: uuid.UUID,
    request: Optional[StemSeparationCreate] = Body(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """
    Start stem separation for a track.

    `simple` splits vocals from the instrumental, `detailed` asks for every
    stem the provider offers. Poll the job with the collect endpoint.
    """
    request = request or StemSeparationCreate()
    return await services.stems.request_separation(
        user_id,
        track_id,
        mode=request.mode,
        variant_number=request.variant_number
    )


@router.get("/tracks/{track_id}/stems", response_model=List[TrackStemResponse])
async def list_track_stems(
    track_id: uuid.UUID,
    variant_number: Optional[int] = Query(None, ge=1),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    return await services.stems.list_stems(user_id, track_id, variant_number)


@router.post("/stems/jobs/{job_id}/collect", response_model=StemJobResponse)
async def collect_stem_job(
    job_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Check a pending separation job and store its stems once ready"""
    return await services.stems.collect(user_id, job_id)
