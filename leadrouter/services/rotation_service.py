"""
Rotation engine - fair, priority-ordered round robin over active agents.
"""
import uuid
import logging
from typing import Optional, List

from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.core.exceptions import NoEligibleAgent, RotationConflict, NotFoundError, ValidationError
from leadrouter.models.rotation import RotationEntry
from leadrouter.repositories.rotation_repo import RotationRepository
from leadrouter.schemas.rotation import RotationEntryCreate, RotationEntryUpdate

logger = logging.getLogger(__name__)


def pick_next(entries: List[RotationEntry], cursor_key: Optional[tuple]) -> RotationEntry:
    """
    First entry whose key sorts after the cursor, wrapping to the start.
    Entries must already be in sort_key order.
    """
    if cursor_key is not None:
        for entry in entries:
            if entry.sort_key > cursor_key:
                return entry
    return entries[0]


class RotationEngine:
    """
    Hands out the next agent and persists the cursor in the caller's transaction.
    claim_next() locks the cursor row, picks the successor and advances the
    cursor with a compare-and-swap on its version.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = RotationRepository(session)

    async def claim_next(self) -> uuid.UUID:
        """
        Claim the next assignee.

        Raises:
            NoEligibleAgent: no active entry
            RotationConflict: the cursor moved underneath this claim
        """
        cursor = await self.repo.get_cursor(for_update=True)
        entries = await self.repo.list_active_entries()
        if not entries:
            logger.warning("Rotation has no active agents")
            raise NoEligibleAgent()

        entry = pick_next(entries, cursor.sort_key)
        if not await self.repo.advance_cursor(cursor.version, entry.agent_id, entry.priority):
            raise RotationConflict()

        logger.info(f"Rotation picked agent {entry.agent_id} (priority {entry.priority})")
        return entry.agent_id

    async def peek_next(self) -> Optional[uuid.UUID]:
        """Who would be picked next, without claiming."""
        cursor = await self.repo.get_cursor(for_update=False)
        entries = await self.repo.list_active_entries()
        if not entries:
            return None
        return pick_next(entries, cursor.sort_key).agent_id

    # Admin operations

    async def list_entries(self) -> List[RotationEntry]:
        return await self.repo.list_entries()

    async def add_entry(self, data: RotationEntryCreate) -> RotationEntry:
        if await self.repo.get_by_agent(data.agent_id):
            raise ValidationError(f"Agent {data.agent_id} is already in the rotation", code="duplicate_agent")
        entry = await self.repo.add_entry(
            agent_id=data.agent_id,
            priority=data.priority,
            is_active=data.is_active,
            display_name=data.display_name
        )
        logger.info(f"Agent {entry.agent_id} added to rotation")
        return entry

    async def update_entry(self, agent_id: uuid.UUID, data: RotationEntryUpdate) -> RotationEntry:
        entry = await self.repo.get_by_agent(agent_id)
        if entry is None:
            raise NotFoundError("Rotation entry", str(agent_id))
        entry = await self.repo.update(entry.id, data.model_dump(exclude_unset=True))
        logger.info(f"Rotation entry for agent {agent_id} updated")
        return entry

    async def remove_entry(self, agent_id: uuid.UUID) -> None:
        entry = await self.repo.get_by_agent(agent_id)
        if entry is None:
            raise NotFoundError("Rotation entry", str(agent_id))
        await self.repo.delete(entry.id)
        logger.info(f"Agent {agent_id} removed from rotation")
