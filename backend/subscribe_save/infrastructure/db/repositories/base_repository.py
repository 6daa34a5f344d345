"""
Base Repository for Subscribe & Save

Generic async repository bound to one SQLModel table and one session.
Repositories never commit; the caller's unit of work owns the transaction.
"""

from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with the operations every table needs.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    async def get_model(self, id: UUID) -> Optional[ModelType]:
        """Get a single row by its primary key."""
        return await self._session.get(self._model, id)

    async def add_model(self, db_obj: ModelType) -> ModelType:
        """Stage a new row and flush so constraint violations surface here."""
        self._session.add(db_obj)
        await self._session.flush()
        return db_obj
