"""
Person service - lead status workflow, archive, deletion, manual assignment
and administrator merges of flagged duplicates.
Runs inside the caller's transaction.
"""
import uuid
import logging
from typing import List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.core.exceptions import NotFoundError, InvalidTransition, ValidationError
from leadrouter.models.person import Person, LeadStatus
from leadrouter.models.activity import Activity, ActivityTypes
from leadrouter.models.duplicate import DuplicateFlag
from leadrouter.repositories.person_repo import PersonRepository
from leadrouter.repositories.activity_repo import ActivityRepository
from leadrouter.repositories.duplicate_repo import DuplicateFlagRepository
from leadrouter.services.rotation_service import RotationEngine

logger = logging.getLogger(__name__)


# Moves an agent may make; "assigned" is only entered through the rotation
STATUS_TRANSITIONS = {
    LeadStatus.STAGING.value: {LeadStatus.LOST.value},
    LeadStatus.ASSIGNED.value: {LeadStatus.CONTACTED.value, LeadStatus.LOST.value},
    LeadStatus.CONTACTED.value: {LeadStatus.QUALIFIED.value, LeadStatus.LOST.value},
    LeadStatus.QUALIFIED.value: {LeadStatus.CONVERTED.value, LeadStatus.CONTACTED.value, LeadStatus.LOST.value},
    LeadStatus.LOST.value: {LeadStatus.CONTACTED.value, LeadStatus.QUALIFIED.value},
    LeadStatus.CONVERTED.value: set(),
}


def can_transition(current: str, requested: str) -> bool:
    return requested in STATUS_TRANSITIONS.get(current, set())


class PersonService:
    """Service for person lifecycle operations."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.person_repo = PersonRepository(session)
        self.activity_repo = ActivityRepository(session)
        self.flag_repo = DuplicateFlagRepository(session)

    async def get(self, person_id: uuid.UUID, for_update: bool = False) -> Person:
        person = await self.person_repo.get(person_id, for_update=for_update)
        if not person:
            raise NotFoundError("Person", str(person_id))
        return person

    async def get_activities(self, person_id: uuid.UUID, limit: int = 50) -> List[Activity]:
        await self.get(person_id)
        return await self.activity_repo.get_for_person(person_id, limit)

    async def change_status(self, person_id: uuid.UUID, status: str, actor: Optional[str] = None) -> Person:
        """Agent-driven status move."""
        person = await self.get(person_id, for_update=True)
        current = person.lead_status
        if not can_transition(current, status):
            raise InvalidTransition(current, status)

        await self.person_repo.set_status(person, status)
        await self.activity_repo.log(
            person_id=person.id,
            type=ActivityTypes.STATUS_CHANGED,
            description=f"Status changed from {current} to {status}",
            created_by=actor or "system",
            meta_data={"from": current, "to": status}
        )
        logger.info(f"Person {person.id} moved {current} -> {status}")
        return person

    async def archive(self, person_id: uuid.UUID, actor: Optional[str] = None) -> Person:
        """Soft delete."""
        person = await self.get(person_id, for_update=True)
        if person.is_archived:
            return person
        await self.person_repo.archive(person)
        await self.activity_repo.log(
            person_id=person.id,
            type=ActivityTypes.ARCHIVED,
            description="Lead archived",
            created_by=actor or "system"
        )
        return person

    async def delete_staging(self, person_id: uuid.UUID) -> None:
        """Hard delete, allowed only while the lead is still in staging."""
        person = await self.get(person_id, for_update=True)
        if person.lead_status != LeadStatus.STAGING.value:
            raise InvalidTransition(
                person.lead_status, "deleted",
                f"Only staging leads can be deleted; this lead is '{person.lead_status}'"
            )
        await self.person_repo.hard_delete(person)
        logger.info(f"Staging lead {person_id} deleted")

    async def assign_from_rotation(self, person_id: uuid.UUID, actor: Optional[str] = None) -> Person:
        """
        Hand a staging lead to the next agent in the rotation.
        Used when a lead was staged because no agent was active.
        """
        person = await self.get(person_id, for_update=True)
        if person.lead_status != LeadStatus.STAGING.value or person.is_archived:
            raise InvalidTransition(person.lead_status, LeadStatus.ASSIGNED.value)

        agent_id = await RotationEngine(self.session).claim_next()
        await self.person_repo.assign(person, agent_id)
        await self.activity_repo.log(
            person_id=person.id,
            type=ActivityTypes.ASSIGNED,
            description=f"Assigned to agent {agent_id} by rotation",
            created_by=actor or "system",
            meta_data={"agent_id": str(agent_id)}
        )
        return person

    async def reassign(self, person_id: uuid.UUID, agent_id: uuid.UUID, actor: Optional[str] = None) -> Person:
        """Move an already-assigned lead to a specific agent."""
        person = await self.get(person_id, for_update=True)
        if person.lead_status == LeadStatus.STAGING.value:
            raise InvalidTransition(
                person.lead_status, "reassigned",
                "Staging leads are assigned through the rotation"
            )
        previous = person.assigned_to
        await self.person_repo.assign(person, agent_id, status=person.lead_status)
        await self.activity_repo.log(
            person_id=person.id,
            type=ActivityTypes.REASSIGNED,
            description=f"Reassigned from {previous} to {agent_id}",
            created_by=actor or "system",
            meta_data={"from": str(previous) if previous else None, "to": str(agent_id)}
        )
        return person

    # Duplicate review

    async def list_duplicate_flags(self, status: str = "open") -> List[DuplicateFlag]:
        return await self.flag_repo.list(filters={"status": status})

    async def merge_people(self, primary_id: uuid.UUID, duplicate_ids: List[uuid.UUID]) -> Person:
        """
        Administrator merge: fold duplicates into the primary and archive them.
        """
        duplicate_ids = [person_id for person_id in duplicate_ids if person_id != primary_id]
        if not duplicate_ids:
            raise ValidationError("At least one duplicate is required", field="duplicate_person_ids")

        primary = await self.get(primary_id, for_update=True)
        if primary.is_archived:
            raise ValidationError("Primary person is archived", field="primary_person_id")

        for duplicate_id in duplicate_ids:
            duplicate = await self.get(duplicate_id, for_update=True)
            await self.person_repo.archive(duplicate)
            fields = {"notes": duplicate.notes} if not primary.notes else {}
            primary = await self.person_repo.merge_person(primary, duplicate.emails, duplicate.phones, fields)
            await self.activity_repo.log(
                person_id=duplicate.id,
                type=ActivityTypes.ARCHIVED,
                description=f"Merged into {primary.id}",
                created_by="admin"
            )

        await self.activity_repo.log(
            person_id=primary.id,
            type=ActivityTypes.MERGED,
            description=f"Merged {len(duplicate_ids)} duplicate record(s)",
            created_by="admin",
            meta_data={"merged_person_ids": [str(person_id) for person_id in duplicate_ids]}
        )
        resolved = await self.flag_repo.resolve_for_people([primary_id] + duplicate_ids)
        logger.info(f"Merged {len(duplicate_ids)} record(s) into {primary.id}; {resolved} flag(s) resolved")
        return primary
