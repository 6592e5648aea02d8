"""
Base repository with generic CRUD operations.
Repositories flush but never commit: the caller owns the transaction, so a
pipeline unit (person, assignment, activity, ledger row) commits or rolls
back together.
"""
import uuid
from typing import TypeVar, Generic, Type, Optional, List, Any
from datetime import datetime

from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository with CRUD operations.
    Inherit and specify the model class.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, obj_in: dict) -> ModelType:
        """Create a new record."""
        db_obj = self.model(**obj_in)
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def get(self, id: uuid.UUID, for_update: bool = False) -> Optional[ModelType]:
        """Get a record by ID, optionally locking the row."""
        if for_update:
            query = select(self.model).where(self.model.id == id).with_for_update()
            result = await self.session.exec(query)
            return result.first()
        return await self.session.get(self.model, id)

    async def get_by_field(self, field: str, value: Any) -> Optional[ModelType]:
        """Get a record by a specific field."""
        query = select(self.model).where(getattr(self.model, field) == value)
        result = await self.session.exec(query)
        return result.first()

    async def list(
        self,
        filters: Optional[dict] = None,
        order_by: str = "created_at",
        order_desc: bool = True
    ) -> List[ModelType]:
        """List all records with optional filters."""
        query = select(self.model)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model, field) and value is not None:
                    query = query.where(getattr(self.model, field) == value)

        if hasattr(self.model, order_by):
            order_column = getattr(self.model, order_by)
            query = query.order_by(order_column.desc() if order_desc else order_column)

        result = await self.session.exec(query)
        return result.all()

    async def update(self, id: uuid.UUID, obj_in: dict) -> Optional[ModelType]:
        """Update a record."""
        db_obj = await self.get(id)
        if not db_obj:
            return None

        for field, value in obj_in.items():
            if hasattr(db_obj, field) and value is not None:
                setattr(db_obj, field, value)

        if hasattr(db_obj, 'updated_at'):
            db_obj.updated_at = datetime.utcnow()

        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def delete(self, id: uuid.UUID) -> bool:
        """Delete a record."""
        db_obj = await self.get(id)
        if not db_obj:
            return False

        await self.session.delete(db_obj)
        await self.session.flush()
        return True
