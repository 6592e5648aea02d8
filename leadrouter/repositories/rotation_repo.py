"""
Round robin repository: entries and the compare-and-swap cursor.
"""
import uuid
from typing import Optional, List
from datetime import datetime

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import update

from leadrouter.models.rotation import RotationEntry, RotationCursor, CURSOR_ID
from leadrouter.repositories.base import BaseRepository


class RotationRepository(BaseRepository[RotationEntry]):
    """Repository for RotationEntry and RotationCursor operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(RotationEntry, session)

    async def list_entries(self) -> List[RotationEntry]:
        """All entries in turn order."""
        query = select(RotationEntry).order_by(RotationEntry.priority, RotationEntry.agent_id)
        result = await self.session.exec(query)
        return sorted(result.all(), key=lambda entry: entry.sort_key)

    async def list_active_entries(self) -> List[RotationEntry]:
        """Active entries ordered by (priority asc, agent id asc)."""
        query = select(RotationEntry).where(RotationEntry.is_active == True)
        result = await self.session.exec(query)
        # Sorted in Python so the tie-break matches RotationEntry.sort_key on every backend
        return sorted(result.all(), key=lambda entry: entry.sort_key)

    async def get_by_agent(self, agent_id: uuid.UUID) -> Optional[RotationEntry]:
        return await self.get_by_field("agent_id", agent_id)

    async def ensure_cursor(self) -> RotationCursor:
        """Create the cursor row if it does not exist yet."""
        cursor = await self.session.get(RotationCursor, CURSOR_ID)
        if cursor is None:
            cursor = RotationCursor(id=CURSOR_ID)
            self.session.add(cursor)
            await self.session.flush()
        return cursor

    async def get_cursor(self, for_update: bool = True) -> RotationCursor:
        """Read the cursor, taking a row lock where the backend supports it."""
        query = select(RotationCursor).where(RotationCursor.id == CURSOR_ID).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.session.exec(query)
        cursor = result.first()
        if cursor is None:
            cursor = await self.ensure_cursor()
        return cursor

    async def advance_cursor(self, expected_version: int, agent_id: uuid.UUID, priority: int) -> bool:
        """
        Compare-and-swap the cursor to a new agent.
        Returns False when another writer advanced it first.
        """
        statement = (
            update(RotationCursor)
            .where(RotationCursor.id == CURSOR_ID, RotationCursor.version == expected_version)
            .values(
                last_agent_id=agent_id,
                last_priority=priority,
                version=expected_version + 1,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            return False
        # Keep the identity map in step with the row we just wrote
        cursor = await self.session.get(RotationCursor, CURSOR_ID)
        if cursor is not None:
            await self.session.refresh(cursor)
        return True

    async def add_entry(
        self,
        agent_id: uuid.UUID,
        priority: int = 0,
        is_active: bool = True,
        display_name: Optional[str] = None
    ) -> RotationEntry:
        """Add an agent to the rotation."""
        return await self.create({
            "agent_id": agent_id,
            "priority": priority,
            "is_active": is_active,
            "display_name": display_name
        })
