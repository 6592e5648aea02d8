"""
Person repository with identity matching and lifecycle writes.
"""
import uuid
from typing import Optional, List, Iterable
from datetime import datetime

from sqlmodel import select, or_, and_
from sqlalchemy import delete, update, func
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.models.person import Person, PersonIdentity, IdentityKind, LeadStatus
from leadrouter.models.activity import Activity
from leadrouter.models.processed_email import ProcessedEmail
from leadrouter.models.duplicate import DuplicateFlag
from leadrouter.repositories.base import BaseRepository


def _union(existing: Iterable[str], new: Iterable[str]) -> List[str]:
    """Order-preserving union; existing values keep their positions."""
    merged = list(existing)
    for value in new:
        if value not in merged:
            merged.append(value)
    return merged


def identity_lock_keys(emails: Iterable[str], phones: Iterable[str]) -> List[str]:
    """Lock names for a set of identities, in the fixed order locks are taken."""
    keys = {f"{IdentityKind.EMAIL}:{value}" for value in emails}
    keys |= {f"{IdentityKind.PHONE}:{value}" for value in phones}
    return sorted(keys)


class PersonRepository(BaseRepository[Person]):
    """Repository for Person operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Person, session)

    async def lock_identities(self, emails: List[str], phones: List[str]) -> None:
        """
        Hold transaction-scoped advisory locks on the identities so concurrent
        candidates for the same email or phone match and write one at a time.
        SQLite needs none; BEGIN IMMEDIATE already serializes its writers.
        """
        if self.session.bind.dialect.name != "postgresql":
            return
        for key in identity_lock_keys(emails, phones):
            await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(key))))

    async def find_matches(self, emails: List[str], phones: List[str]) -> List[Person]:
        """
        Active people sharing at least one normalized email or phone.
        Newest first.
        """
        conditions = []
        if emails:
            conditions.append(and_(PersonIdentity.kind == IdentityKind.EMAIL, PersonIdentity.value.in_(emails)))
        if phones:
            conditions.append(and_(PersonIdentity.kind == IdentityKind.PHONE, PersonIdentity.value.in_(phones)))
        if not conditions:
            return []

        matching_ids = select(PersonIdentity.person_id).where(or_(*conditions))
        query = select(Person).where(
            Person.id.in_(matching_ids),
            Person.archived_at.is_(None)
        ).order_by(Person.created_at.desc())
        result = await self.session.exec(query)
        return list(result.all())

    async def find_by_email_or_phone(self, emails: List[str], phones: List[str]) -> Optional[Person]:
        """Most recently created active person claiming any of the identities."""
        matches = await self.find_matches(emails, phones)
        return matches[0] if matches else None

    async def create_person(self, data: dict) -> Person:
        """Create a person and register its identities."""
        person = Person(**data)
        self.session.add(person)
        await self.session.flush()
        await self._sync_identities(person)
        return person

    async def merge_person(
        self,
        person: Person,
        emails: List[str],
        phones: List[str],
        fields: Optional[dict] = None
    ) -> Person:
        """Union emails and phones into an existing person and apply field updates."""
        # JSON columns are reassigned, never mutated in place
        person.emails = _union(person.emails or [], emails)
        person.phones = _union(person.phones or [], phones)

        for field, value in (fields or {}).items():
            if hasattr(person, field) and value not in (None, "", {}):
                setattr(person, field, value)

        person.updated_at = datetime.utcnow()
        self.session.add(person)
        await self.session.flush()
        await self._sync_identities(person)
        return person

    async def assign(self, person: Person, agent_id: uuid.UUID, status: str = LeadStatus.ASSIGNED.value) -> Person:
        """Set the owning agent."""
        person.assigned_to = agent_id
        person.assigned_at = datetime.utcnow()
        person.lead_status = status
        person.updated_at = datetime.utcnow()
        self.session.add(person)
        await self.session.flush()
        return person

    async def set_status(self, person: Person, status: str) -> Person:
        person.lead_status = status
        person.updated_at = datetime.utcnow()
        self.session.add(person)
        await self.session.flush()
        return person

    async def archive(self, person: Person) -> Person:
        """Soft delete. The person stops claiming its identities for matching."""
        person.archived_at = datetime.utcnow()
        person.updated_at = datetime.utcnow()
        self.session.add(person)
        await self.session.flush()
        return person

    async def hard_delete(self, person: Person) -> None:
        """Remove a person and everything hanging off it."""
        await self.session.execute(delete(PersonIdentity).where(PersonIdentity.person_id == person.id))
        await self.session.execute(delete(Activity).where(Activity.person_id == person.id))
        await self.session.execute(
            update(ProcessedEmail).where(ProcessedEmail.person_id == person.id).values(person_id=None)
        )
        await self.session.execute(
            update(DuplicateFlag).where(DuplicateFlag.target_person_id == person.id).values(target_person_id=None)
        )
        await self.session.delete(person)
        await self.session.flush()

    async def _sync_identities(self, person: Person) -> None:
        """Make person_identities mirror the person's email and phone lists."""
        desired = {(IdentityKind.EMAIL, value) for value in person.emails or []}
        desired |= {(IdentityKind.PHONE, value) for value in person.phones or []}

        result = await self.session.exec(
            select(PersonIdentity).where(PersonIdentity.person_id == person.id)
        )
        existing = {(row.kind, row.value): row for row in result.all()}

        for key, row in existing.items():
            if key not in desired:
                await self.session.delete(row)
        for kind, value in desired - set(existing):
            self.session.add(PersonIdentity(person_id=person.id, kind=kind, value=value))
        await self.session.flush()
