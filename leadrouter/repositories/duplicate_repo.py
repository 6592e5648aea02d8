"""
Duplicate flag repository.
"""
import uuid
from typing import Optional, List
from datetime import datetime

from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.models.duplicate import DuplicateFlag
from leadrouter.repositories.base import BaseRepository


class DuplicateFlagRepository(BaseRepository[DuplicateFlag]):
    """Repository for DuplicateFlag operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(DuplicateFlag, session)

    async def open_flag(
        self,
        person_ids: List[uuid.UUID],
        candidate: dict,
        target_person_id: Optional[uuid.UUID] = None,
        source_key: Optional[str] = None
    ) -> DuplicateFlag:
        """Record a set of people an administrator should review for merging."""
        return await self.create({
            "person_ids": [str(person_id) for person_id in person_ids],
            "candidate": candidate,
            "target_person_id": target_person_id,
            "source_key": source_key
        })

    async def resolve_for_people(self, person_ids: List[uuid.UUID]) -> int:
        """Resolve open flags whose people are all covered by a merge."""
        covered = {str(person_id) for person_id in person_ids}
        flags = await self.list(filters={"status": "open"})
        resolved = 0
        for flag in flags:
            if set(flag.person_ids) <= covered:
                flag.status = "resolved"
                flag.resolved_at = datetime.utcnow()
                self.session.add(flag)
                resolved += 1
        await self.session.flush()
        return resolved
