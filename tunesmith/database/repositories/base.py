"""
Base Repository
Lookups and inserts shared by the generation, track and stem repositories
"""

import uuid
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..connection import Base

ModelType = TypeVar("ModelType", bound=Base)


class RepositoryError(Exception):
    """Base repository error"""
    pass


class NotFoundError(RepositoryError):
    """Entity not found error"""
    pass


class ConflictError(RepositoryError):
    """Unique key collision"""
    pass


class BaseRepository(Generic[ModelType]):
    """Session-bound access to one model"""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def get(self, id: uuid.UUID, fresh: bool = False) -> Optional[ModelType]:
        """
        Get entity by ID.

        With `fresh`, rows already in the identity map are reloaded, which is
        needed after conditional UPDATE statements issued by this session.
        """
        query = select(self.model).where(self.model.id == id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_404(self, id: uuid.UUID) -> ModelType:
        obj = await self.get(id)
        if obj is None:
            raise NotFoundError(f"{self.model.__name__} with id {id} not found")
        return obj

    async def add(self, obj: ModelType, commit: bool = True) -> ModelType:
        """Insert a new row and return it refreshed"""
        self.session.add(obj)
        try:
            if commit:
                await self.session.commit()
            else:
                await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"{self.model.__name__} conflicts with an existing row: {e.orig}")
        await self.session.refresh(obj)
        return obj

    async def fetch_all(self, query: Select) -> List[ModelType]:
        result = await self.session.execute(query)
        return list(result.scalars().all())
