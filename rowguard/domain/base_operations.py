from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseOperations(Generic[ModelType]):
    """Base operations shared by the persisted policy tables."""

    def __init__(self, model: type[ModelType]):
        self.model = model

    async def get_multi(
        self,
        db: AsyncSession,
        *filters: Any,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ModelType]:
        """Get records newest first with pagination, narrowed by optional where-clauses."""
        statement = select(self.model)
        if filters:
            statement = statement.where(*filters)
        statement = (
            statement.order_by(self.model.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def delete_obj(self, db: AsyncSession, db_obj: ModelType) -> None:
        await db.delete(db_obj)
        await db.flush()
