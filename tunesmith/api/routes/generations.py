"""
Tunesmith Generation API Routes
Dispatch, inspection and cancellation of AI music generations
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import ServiceContainer, get_current_user_id, get_services
from ...core.errors import NotFoundError
from ...database.models import GenerationTask
from ...database.repositories.generation_repository import GenerationRepository
from ...database.schemas import GenerationCreate, GenerationResponse, PollSweepSummary

router = APIRouter()


async def _get_user_task(services: ServiceContainer, user_id: uuid.UUID, task_id: uuid.UUID) -> GenerationTask:
    async with services.session_factory() as session:
        task = (await GenerationRepository(session).get_user_task(user_id, task_id)).unwrap()
    if task is None:
        raise NotFoundError(f"Generation {task_id} not found")
    return task


@router.post("", response_model=GenerationResponse, status_code=201)
async def create_generation(
    request: GenerationCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """
    Start a generation with the requested provider.

    The task is returned as `pending`; progress arrives over the
    notification WebSocket and through `GET /api/generations/{id}`.
    """
    return await services.dispatcher.dispatch(user_id, request)


@router.get("", response_model=List[GenerationResponse])
async def list_generations(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    async with services.session_factory() as session:
        result = await GenerationRepository(session).list_user_tasks(user_id, status, limit, offset)
    return result.unwrap()


@router.post("/sweep", response_model=PollSweepSummary)
async def sweep_generations(
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Check every outstanding generation of the caller once"""
    return await services.scheduler.sweep(user_id)


@router.get("/{task_id}", response_model=GenerationResponse)
async def get_generation(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    return await _get_user_task(services, user_id, task_id)


@router.post("/{task_id}/cancel", response_model=GenerationResponse)
async def cancel_generation(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Stop polling a generation and mark it cancelled"""
    task = await _get_user_task(services, user_id, task_id)
    if task.is_terminal:
        raise HTTPException(status_code=409, detail=f"Generation is already {task.status}")

    if not await services.scheduler.cancel(task_id):
        raise HTTPException(status_code=409, detail="Generation finished before it could be cancelled")
    return await _get_user_task(services, user_id, task_id)
