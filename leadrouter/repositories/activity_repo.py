"""
Activity repository.
"""
import uuid
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.models.activity import Activity
from leadrouter.repositories.base import BaseRepository


class ActivityRepository(BaseRepository[Activity]):
    """Repository for Activity operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Activity, session)

    async def log(
        self,
        person_id: uuid.UUID,
        type: str,
        description: Optional[str] = None,
        created_by: str = "system",
        meta_data: Optional[dict] = None,
        dedupe_key: Optional[str] = None
    ) -> Activity:
        """Create an activity entry."""
        activity = Activity(
            person_id=person_id,
            type=type,
            description=description,
            created_by=created_by,
            meta_data=meta_data or {},
            dedupe_key=dedupe_key
        )
        self.session.add(activity)
        await self.session.flush()
        return activity

    async def upsert(
        self,
        person_id: uuid.UUID,
        type: str,
        dedupe_key: str,
        description: Optional[str] = None,
        created_by: str = "system",
        meta_data: Optional[dict] = None
    ) -> Activity:
        """Create the activity unless one with the same dedupe key already exists."""
        existing = await self.get_by_field("dedupe_key", dedupe_key)
        if existing:
            return existing
        return await self.log(
            person_id=person_id,
            type=type,
            description=description,
            created_by=created_by,
            meta_data=meta_data,
            dedupe_key=dedupe_key
        )

    async def get_for_person(self, person_id: uuid.UUID, limit: int = 50) -> List[Activity]:
        """Get activity for a specific person, newest first."""
        query = select(Activity).where(
            Activity.person_id == person_id
        ).order_by(Activity.created_at.desc()).limit(limit)
        result = await self.session.exec(query)
        return list(result.all())
