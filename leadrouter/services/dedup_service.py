"""
Dedup resolver - decides whether a candidate creates a person, merges into
one, or is rejected, and performs the create/merge writes.
Runs inside the caller's transaction.
"""
import logging
from typing import List, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.config import settings
from leadrouter.core.exceptions import NotFoundError
from leadrouter.models.person import Person, ClientType, LeadStatus
from leadrouter.models.activity import ActivityTypes
from leadrouter.repositories.person_repo import PersonRepository
from leadrouter.repositories.activity_repo import ActivityRepository
from leadrouter.repositories.processed_email_repo import ProcessedEmailRepository
from leadrouter.repositories.duplicate_repo import DuplicateFlagRepository
from leadrouter.schemas.lead import LeadCandidate
from leadrouter.schemas.pipeline import Resolution

logger = logging.getLogger(__name__)


def rank_matches(matches: List[Person]) -> List[Person]:
    """Best canonical target first: non-staging before staging, then newest."""
    newest_first = sorted(matches, key=lambda person: person.created_at, reverse=True)
    return sorted(newest_first, key=lambda person: person.lead_status == LeadStatus.STAGING.value)


class DedupResolver:
    """Matches candidates against active people."""

    def __init__(self, session: AsyncSession, auto_merge_ambiguous: bool = None):
        self.session = session
        self.person_repo = PersonRepository(session)
        self.activity_repo = ActivityRepository(session)
        self.ledger_repo = ProcessedEmailRepository(session)
        self.flag_repo = DuplicateFlagRepository(session)
        if auto_merge_ambiguous is None:
            auto_merge_ambiguous = settings.AUTO_MERGE_AMBIGUOUS_MATCHES
        self.auto_merge_ambiguous = auto_merge_ambiguous

    async def resolve(self, candidate: LeadCandidate) -> Resolution:
        """
        Decide create, merge, reject or duplicate.

        The ledger is consulted first so a re-delivered event returns the
        stored result without touching people.
        """
        if candidate.idempotency_key:
            processed = await self.ledger_repo.get_by_message_id(candidate.idempotency_key)
            if processed:
                return Resolution(
                    action="duplicate",
                    target_person_id=processed.person_id,
                    reason=processed.outcome
                )

        await self.person_repo.lock_identities(candidate.emails, candidate.phones)
        matches = await self.person_repo.find_matches(candidate.emails, candidate.phones)
        if not matches:
            return Resolution(action="create")

        if len(matches) == 1:
            return Resolution(
                action="merge",
                target_person_id=matches[0].id,
                matched_person_ids=[matches[0].id]
            )

        ranked = rank_matches(matches)
        matched_ids = [person.id for person in ranked]
        if self.auto_merge_ambiguous:
            return Resolution(
                action="merge",
                target_person_id=ranked[0].id,
                matched_person_ids=matched_ids
            )
        return Resolution(action="reject", matched_person_ids=matched_ids, reason="ambiguous_match")

    async def apply(self, candidate: LeadCandidate, resolution: Resolution) -> Tuple[Person, bool]:
        """
        Perform a create or merge.

        Returns:
            (person, created)
        """
        if resolution.action == "create":
            return await self._create(candidate), True
        if resolution.action == "merge":
            return await self._merge(candidate, resolution), False
        raise ValueError(f"Cannot apply a '{resolution.action}' resolution")

    async def flag_ambiguous(self, candidate: LeadCandidate, resolution: Resolution):
        """Leave the matched people for an administrator to merge."""
        flag = await self.flag_repo.open_flag(
            person_ids=resolution.matched_person_ids,
            candidate=candidate.model_dump(mode="json"),
            target_person_id=resolution.target_person_id,
            source_key=candidate.idempotency_key
        )
        logger.warning(
            f"Candidate {candidate.idempotency_key or candidate.primary_email} matched "
            f"{len(resolution.matched_person_ids)} people; duplicate flag {flag.id} opened"
        )
        return flag

    async def _create(self, candidate: LeadCandidate) -> Person:
        person = await self.person_repo.create_person({
            "first_name": candidate.first_name,
            "last_name": candidate.last_name,
            "company": candidate.company,
            "emails": candidate.emails,
            "phones": candidate.phones,
            "client_type": ClientType.LEAD.value,
            "lead_status": LeadStatus.STAGING.value,
            "lead_source": candidate.lead_source,
            "source_kind": candidate.source_kind.value,
            "last_confidence": candidate.confidence,
            "lead_data": candidate.lead_data,
            "notes": candidate.notes or candidate.message
        })
        await self._log(
            candidate,
            person_id=person.id,
            type=ActivityTypes.CREATED,
            description=f"Lead created from {candidate.source_kind.value} ({candidate.lead_source})",
            meta_data=self._activity_meta(candidate),
            key_prefix="created"
        )
        logger.info(f"Created person {person.id} from {candidate.source_kind.value}")
        return person

    async def _merge(self, candidate: LeadCandidate, resolution: Resolution) -> Person:
        person = await self.person_repo.get(resolution.target_person_id, for_update=True)
        if person is None:
            raise NotFoundError("Person", str(resolution.target_person_id))

        fields = {}
        stored_confidence = person.last_confidence if person.last_confidence is not None else 0.0
        if candidate.confidence > stored_confidence:
            fields = {
                "first_name": candidate.first_name,
                "last_name": candidate.last_name,
                "company": candidate.company,
                "lead_data": {**(person.lead_data or {}), **candidate.lead_data},
                "last_confidence": candidate.confidence
            }
        if not person.notes and (candidate.notes or candidate.message):
            fields["notes"] = candidate.notes or candidate.message

        person = await self.person_repo.merge_person(person, candidate.emails, candidate.phones, fields)

        await self._log(
            candidate,
            person_id=person.id,
            type=ActivityTypes.NOTE_ADDED,
            description=candidate.message or f"New {candidate.source_kind.value} inquiry merged into this lead",
            meta_data={**self._activity_meta(candidate), "fields_updated": sorted(fields)},
            key_prefix="merged"
        )

        others = [person_id for person_id in resolution.matched_person_ids if person_id != person.id]
        if others:
            await self.flag_ambiguous(candidate, resolution)
        logger.info(f"Merged {candidate.source_kind.value} candidate into person {person.id}")
        return person

    async def _log(self, candidate: LeadCandidate, key_prefix: str, **fields):
        """Keyed candidates log each activity at most once."""
        if not candidate.idempotency_key:
            return await self.activity_repo.log(created_by="pipeline", **fields)
        return await self.activity_repo.upsert(
            dedupe_key=f"{key_prefix}:{candidate.idempotency_key}",
            created_by="pipeline",
            **fields
        )

    @staticmethod
    def _activity_meta(candidate: LeadCandidate) -> dict:
        return {
            "source_kind": candidate.source_kind.value,
            "lead_source": candidate.lead_source,
            "idempotency_key": candidate.idempotency_key,
            "confidence": candidate.confidence,
            "emails": candidate.emails,
            "phones": candidate.phones
        }
