"""
Generation Task Repository
Database operations for generation tasks with forward-only status changes
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models import (
    GenerationTask,
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_COMPLETED,
    STATUS_FAILED,
)
from ...core.result import Result
from ...core.timeutils import utcnow

# Target status -> statuses it may be entered from
ALLOWED_TRANSITIONS = {
    STATUS_PENDING: (STATUS_PENDING,),
    STATUS_RUNNING: (STATUS_PENDING, STATUS_RUNNING),
    STATUS_COMPLETED: (STATUS_PENDING, STATUS_RUNNING),
    STATUS_FAILED: (STATUS_PENDING, STATUS_RUNNING),
}


class GenerationRepository(BaseRepository[GenerationTask]):
    """Repository for generation task database operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(GenerationTask, session)

    async def create_task(
        self,
        user_id: uuid.UUID,
        service: str,
        prompt: str,
        external_task_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None
    ) -> Result[GenerationTask]:
        """Create a new pending generation task"""
        try:
            task = GenerationTask(
                user_id=user_id,
                service=service,
                prompt=prompt,
                external_task_id=external_task_id,
                status=STATUS_PENDING,
                progress=0,
                meta=meta or {}
            )
            return Result.ok(await self.add(task))

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to create generation task: {str(e)}")

    async def get_task(self, task_id: uuid.UUID) -> Result[Optional[GenerationTask]]:
        """Get generation task by ID, reloading any cached copy"""
        try:
            return Result.ok(await self.get(task_id, fresh=True))

        except Exception as e:
            return Result.err(f"Failed to get generation task: {str(e)}")

    async def get_user_task(
        self,
        user_id: uuid.UUID,
        task_id: uuid.UUID
    ) -> Result[Optional[GenerationTask]]:
        try:
            query = select(GenerationTask).where(
                GenerationTask.id == task_id,
                GenerationTask.user_id == user_id
            )
            result = await self.session.execute(query)
            return Result.ok(result.scalar_one_or_none())

        except Exception as e:
            return Result.err(f"Failed to get generation task: {str(e)}")

    async def find_by_external_id(
        self,
        external_task_id: str,
        service: Optional[str] = None
    ) -> Result[Optional[GenerationTask]]:
        """Look up a task by the provider-assigned id"""
        try:
            query = select(GenerationTask).where(GenerationTask.external_task_id == external_task_id)
            if service:
                query = query.where(GenerationTask.service == service)
            result = await self.session.execute(query.limit(1))
            return Result.ok(result.scalar_one_or_none())

        except Exception as e:
            return Result.err(f"Failed to find generation task: {str(e)}")

    async def list_user_tasks(
        self,
        user_id: uuid.UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Result[List[GenerationTask]]:
        """Get generation tasks for a user, newest first"""
        try:
            query = select(GenerationTask).where(GenerationTask.user_id == user_id)
            if status:
                query = query.where(GenerationTask.status == status)
            query = query.order_by(GenerationTask.created_at.desc()).limit(limit).offset(offset)
            return Result.ok(await self.fetch_all(query))

        except Exception as e:
            return Result.err(f"Failed to list generation tasks: {str(e)}")

    async def list_outstanding(self, user_id: Optional[uuid.UUID] = None) -> Result[List[GenerationTask]]:
        """Tasks that were dispatched but have not reached a terminal state"""
        try:
            query = select(GenerationTask).where(
                GenerationTask.status.in_([STATUS_PENDING, STATUS_RUNNING]),
                GenerationTask.external_task_id.is_not(None)
            )
            if user_id is not None:
                query = query.where(GenerationTask.user_id == user_id)

            return Result.ok(await self.fetch_all(query.order_by(GenerationTask.created_at)))

        except Exception as e:
            return Result.err(f"Failed to list outstanding tasks: {str(e)}")

    async def set_external_task_id(
        self,
        task_id: uuid.UUID,
        external_task_id: str
    ) -> Result[GenerationTask]:
        """Attach the provider task id; an id that is already set never changes"""
        try:
            stmt = (
                update(GenerationTask)
                .where(
                    GenerationTask.id == task_id,
                    GenerationTask.external_task_id.is_(None)
                )
                .values({GenerationTask.external_task_id: external_task_id})
            )
            await self.session.execute(stmt)
            await self.session.commit()

            task = (await self.get_task(task_id)).unwrap()
            if task is None:
                return Result.err(f"Generation task {task_id} not found")
            if task.external_task_id != external_task_id:
                return Result.err(
                    f"Generation task {task_id} already has provider id {task.external_task_id}",
                    error_code="external_id_conflict"
                )
            return Result.ok(task)

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to set provider task id: {str(e)}")

    async def transition(
        self,
        task_id: uuid.UUID,
        status: str,
        **fields: Any
    ) -> Result[Optional[GenerationTask]]:
        """
        Move a task forward to `status`.

        The update only applies while the task is in one of the allowed
        source states, so a terminal task is never changed. Returns ok(None)
        when the transition did not apply.
        """
        allowed_from = ALLOWED_TRANSITIONS.get(status)
        if allowed_from is None:
            return Result.err(f"Unsupported target status: {status}")

        values: Dict[str, Any] = dict(fields)
        values["status"] = status
        now = utcnow()
        if status in (STATUS_COMPLETED, STATUS_FAILED):
            values.setdefault("completed_at", now)
            if status == STATUS_COMPLETED:
                values.setdefault("progress", 100)

        try:
            stmt = (
                update(GenerationTask)
                .where(
                    GenerationTask.id == task_id,
                    GenerationTask.status.in_(allowed_from)
                )
                .values({getattr(GenerationTask, key): value for key, value in values.items()})
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                await self.session.rollback()
                return Result.ok(None)

            if status == STATUS_RUNNING:
                # started_at is recorded on the first move out of pending only
                await self.session.execute(
                    update(GenerationTask)
                    .where(GenerationTask.id == task_id, GenerationTask.started_at.is_(None))
                    .values({GenerationTask.started_at: now})
                    .execution_options(synchronize_session=False)
                )

            await self.session.commit()
            return await self.get_task(task_id)

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to update generation task: {str(e)}")

    async def merge_metadata(self, task_id: uuid.UUID, values: Dict[str, Any]) -> Result[GenerationTask]:
        """Shallow-merge keys into the task metadata"""
        try:
            task = (await self.get_task(task_id)).unwrap()
            if task is None:
                return Result.err(f"Generation task {task_id} not found")
            task.meta = {**(task.meta or {}), **values}
            await self.session.commit()
            await self.session.refresh(task)
            return Result.ok(task)

        except Exception as e:
            await self.session.rollback()
            return Result.err(f"Failed to update task metadata: {str(e)}")
