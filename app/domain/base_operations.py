import uuid as uuid_pkg
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseOperations(Generic[ModelType]):
    """Shared lookups for models keyed by UUID and public id."""

    def __init__(self, model: type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: uuid_pkg.UUID) -> ModelType | None:
        """Get a single record by ID."""
        statement = select(self.model).where(self.model.id == id)  # type: ignore[attr-defined]
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_public_id(self, db: AsyncSession, public_id: str) -> ModelType | None:
        """Get a single record by its short public identifier."""
        statement = select(self.model).where(
            self.model.public_id == public_id  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_identifier(self, db: AsyncSession, identifier: str) -> ModelType | None:
        """Resolve either a UUID string or a public id."""
        try:
            return await self.get(db, uuid_pkg.UUID(identifier))
        except ValueError:
            return await self.get_by_public_id(db, identifier)
