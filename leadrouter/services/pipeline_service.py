"""
Pipeline orchestrator - runs each ingestion trigger through
Normalizer -> Dedup Resolver -> Rotation Engine and persists the result.

One candidate is one transaction: person upsert, cursor advance, assignment,
activities and the ledger row commit or roll back together.
"""
import uuid
import logging
from typing import Optional, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from leadrouter.config import settings
from leadrouter.core.exceptions import (
    ClassificationRejected, ValidationError, NoEligibleAgent, RotationConflict,
    UpstreamUnavailable, TokenInvalid, DuplicateAlreadyProcessed
)
from leadrouter.core.security import generate_secure_token
from leadrouter.models.person import LeadStatus
from leadrouter.models.token import MailboxToken
from leadrouter.models.activity import ActivityTypes
from leadrouter.repositories.person_repo import PersonRepository
from leadrouter.repositories.activity_repo import ActivityRepository
from leadrouter.repositories.processed_email_repo import ProcessedEmailRepository
from leadrouter.repositories.token_repo import MailboxTokenRepository, PollLeaseRepository
from leadrouter.schemas.lead import (
    LeadCandidate, EmailLeadPayload, WebhookLeadPayload, PixelCapturePayload, LeadSubmission
)
from leadrouter.schemas.mailbox import MessageRef
from leadrouter.schemas.pipeline import IngestionOutcome, MailboxPollResult, SweepReport
from leadrouter.services.dedup_service import DedupResolver
from leadrouter.services.lead_source_service import LeadSourceService
from leadrouter.services.normalizer import Normalizer
from leadrouter.services.rotation_service import RotationEngine
from leadrouter.services.token_service import TokenLifecycleManager
from leadrouter.services.integrations.base import MailboxClient, LeadClassifier

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Sequences ingestion for every trigger."""

    def __init__(
        self,
        session_factory: sessionmaker,
        mailbox_client: Optional[MailboxClient] = None,
        classifier: Optional[LeadClassifier] = None,
        normalizer: Optional[Normalizer] = None,
        token_manager: Optional[TokenLifecycleManager] = None,
        max_attempts: int = None
    ):
        self.session_factory = session_factory
        self.mailbox_client = mailbox_client
        self.classifier = classifier
        self.normalizer = normalizer or Normalizer()
        self.token_manager = token_manager
        if token_manager is None and mailbox_client is not None:
            self.token_manager = TokenLifecycleManager(session_factory, mailbox_client)
        self.max_attempts = max_attempts or settings.ROTATION_MAX_ATTEMPTS

    # -------------------------------------------------------------------------
    # Single-request triggers
    # -------------------------------------------------------------------------

    async def process_email(self, payload: EmailLeadPayload) -> IngestionOutcome:
        """Pushed email with its classification already attached."""
        lead_source = None
        if payload.ai_analysis.is_lead:
            lead_source, rejection = await self._match_source(payload.sender, payload.subject, payload.body)
            if rejection:
                return await self._reject(payload.email_id, rejection, agent_id=payload.user_id, sender=payload.sender)

        def build():
            candidate = self.normalizer.from_email_payload(payload)
            if lead_source:
                candidate.lead_source = lead_source
            return candidate

        return await self._process(payload.email_id, build, agent_id=payload.user_id, sender=payload.sender)

    async def ingest_webhook(self, payload: WebhookLeadPayload) -> IngestionOutcome:
        key = f"homestack:{payload.id}" if payload.id is not None else None
        return await self._process(key, lambda: self.normalizer.from_webhook(payload), source_kind="webhook")

    async def ingest_pixel(self, payload: PixelCapturePayload, key_name: Optional[str] = None) -> IngestionOutcome:
        submission_id = payload.lead_data.submission_id
        key = f"pixel:{submission_id}" if submission_id else None
        return await self._process(key, lambda: self.normalizer.from_pixel(payload, key_name), source_kind="pixel")

    async def ingest_submission(
        self,
        payload: LeadSubmission,
        idempotency_key: Optional[str] = None
    ) -> IngestionOutcome:
        key = f"api:{idempotency_key}" if idempotency_key else None
        return await self._process(
            key, lambda: self.normalizer.from_submission(payload, idempotency_key), source_kind="api"
        )

    # -------------------------------------------------------------------------
    # Mailbox polling
    # -------------------------------------------------------------------------

    async def sweep_mailboxes(self) -> SweepReport:
        """Poll every mailbox with an active token."""
        async with self.session_factory() as session:
            tokens = await MailboxTokenRepository(session).list_active()

        report = SweepReport()
        for token in tokens:
            result = await self.poll_mailbox(token)
            report.per_source_results.append(result)
            report.total_processed += result.processed
            if result.error and not result.skipped:
                report.failed += 1
            else:
                report.succeeded += 1

        logger.info(
            f"Mailbox sweep: {len(tokens)} mailbox(es), {report.total_processed} message(s) processed, "
            f"{report.failed} mailbox failure(s)"
        )
        return report

    async def poll_mailbox(self, token: MailboxToken) -> MailboxPollResult:
        """Process unseen messages of one mailbox under an exclusive lease."""
        result = MailboxPollResult(agent_id=token.agent_id, mailbox_email=token.mailbox_email)
        holder = generate_secure_token(12)

        if not await self._acquire_lease(token.agent_id, holder):
            logger.info(f"Mailbox of agent {token.agent_id} is already being polled; skipping")
            result.skipped = True
            result.error = "poll already in progress"
            return result

        try:
            token = await self.token_manager.ensure_fresh(token)
            refs = await self.mailbox_client.list_recent_messages(
                token.access_token, settings.MAILBOX_POLL_MAX_RESULTS
            )
            async with self.session_factory() as session:
                seen = await ProcessedEmailRepository(session).get_processed_ids([ref.id for ref in refs])

            for ref in refs:
                if ref.id in seen:
                    continue
                if not await self._renew_lease(token.agent_id, holder):
                    logger.error(f"Lost the poll lease of agent {token.agent_id}; stopping after {result.processed} messages")
                    result.error = "poll lease lost"
                    break
                outcome = await self._process_message(token, ref)
                result.count(outcome)

            async with self.session_factory() as session, session.begin():
                await MailboxTokenRepository(session).mark_polled(token.id)
        except (TokenInvalid, UpstreamUnavailable) as e:
            logger.error(f"Polling mailbox of agent {token.agent_id} failed: {e.message}")
            result.error = e.message
        finally:
            await self._release_lease(token.agent_id, holder)

        return result

    async def _process_message(self, token: MailboxToken, ref: MessageRef) -> IngestionOutcome:
        try:
            message = await self.mailbox_client.get_message(token.access_token, ref.id)
            verdict = await self.classifier.classify(message)
        except UpstreamUnavailable as e:
            logger.error(f"Message {ref.id} left for the next poll: {e.message}")
            return IngestionOutcome(status="failed", message_id=ref.id, code=e.code, message=e.message)

        lead_source = None
        if verdict.is_lead:
            lead_source, rejection = await self._match_source(message.sender, message.subject, message.body)
            if rejection:
                return await self._reject(ref.id, rejection, agent_id=token.agent_id, sender=message.sender)

        return await self._process(
            ref.id,
            lambda: self.normalizer.from_email(message, verdict, agent_id=token.agent_id, lead_source=lead_source),
            agent_id=token.agent_id,
            sender=message.sender,
            confidence=verdict.confidence
        )

    async def _acquire_lease(self, agent_id: uuid.UUID, holder: str) -> bool:
        try:
            async with self.session_factory() as session, session.begin():
                return await PollLeaseRepository(session).acquire(agent_id, holder, settings.POLL_LEASE_SECONDS)
        except IntegrityError:
            # Lost the race to create the first lease row
            return False

    async def _renew_lease(self, agent_id: uuid.UUID, holder: str) -> bool:
        async with self.session_factory() as session, session.begin():
            return await PollLeaseRepository(session).renew(agent_id, holder, settings.POLL_LEASE_SECONDS)

    async def _release_lease(self, agent_id: uuid.UUID, holder: str) -> None:
        async with self.session_factory() as session, session.begin():
            await PollLeaseRepository(session).release(agent_id, holder)

    async def _match_source(self, sender: str, subject: str, body: str):
        """
        Label an email with its lead source.

        Returns:
            (source name or None, rejection or None)
        """
        async with self.session_factory() as session:
            match = await LeadSourceService(session).match(sender, subject, body)
        if match.matched:
            return match.source_name, None
        if settings.REQUIRE_LEAD_SOURCE_MATCH:
            return None, ValidationError("Sender does not match any configured lead source", code="no_lead_source_match")
        return None, None

    # -------------------------------------------------------------------------
    # Candidate units
    # -------------------------------------------------------------------------

    async def _process(
        self,
        key: Optional[str],
        build: Callable[[], LeadCandidate],
        source_kind: str = "email",
        agent_id: Optional[uuid.UUID] = None,
        sender: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> IngestionOutcome:
        """Normalize, then ingest; terminal rejections go to the ledger."""
        try:
            candidate = build()
        except (ClassificationRejected, ValidationError) as e:
            if isinstance(e, ClassificationRejected):
                confidence = e.confidence
            return await self._reject(
                key, e, source_kind=source_kind, agent_id=agent_id, sender=sender, confidence=confidence
            )

        try:
            return await self.ingest(candidate)
        except (RotationConflict, SQLAlchemyError) as e:
            logger.error(f"Candidate {key or candidate.primary_email} failed: {e}")
            return IngestionOutcome(status="failed", message_id=key, code="storage_error", message=str(e))

    async def ingest(self, candidate: LeadCandidate) -> IngestionOutcome:
        """Run one candidate, retrying the whole unit on a cursor or key conflict."""
        attempt = 1
        while True:
            try:
                return await self._ingest_once(candidate)
            except (RotationConflict, IntegrityError) as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(f"Retrying candidate {candidate.idempotency_key} after conflict ({attempt}): {e}")
                attempt += 1

    async def _ingest_once(self, candidate: LeadCandidate) -> IngestionOutcome:
        key = candidate.idempotency_key
        async with self.session_factory() as session, session.begin():
            resolver = DedupResolver(session)
            resolution = await resolver.resolve(candidate)

            if resolution.action == "duplicate":
                logger.info(f"Event {key} already processed; returning stored result")
                return self._duplicate(key, resolution.target_person_id, resolution.reason)

            if resolution.action == "reject":
                await resolver.flag_ambiguous(candidate, resolution)
                if key:
                    await self._record(session, candidate, "rejected", None, reason=resolution.reason)
                return IngestionOutcome(
                    status="rejected",
                    message_id=key,
                    code=resolution.reason,
                    message="Candidate matches several people; flagged for review",
                    flagged_duplicates=len(resolution.matched_person_ids)
                )

            person, created = await resolver.apply(candidate, resolution)
            status = "created" if created else "merged"

            if person.assigned_to is None and person.lead_status == LeadStatus.STAGING.value:
                try:
                    agent_id = await RotationEngine(session).claim_next()
                except NoEligibleAgent:
                    status = "staged"
                else:
                    await PersonRepository(session).assign(person, agent_id)
                    await ActivityRepository(session).log(
                        person_id=person.id,
                        type=ActivityTypes.ASSIGNED,
                        description=f"Assigned to agent {agent_id} by rotation",
                        created_by="pipeline",
                        meta_data={"agent_id": str(agent_id)}
                    )

            if key:
                await self._record(session, candidate, status, person.id)

        logger.info(f"Candidate {key or person.id}: {status} (person {person.id}, agent {person.assigned_to})")
        return IngestionOutcome(
            status=status,
            person_id=person.id,
            assigned_to=person.assigned_to,
            message_id=key,
            flagged_duplicates=max(len(resolution.matched_person_ids) - 1, 0)
        )

    async def _record(self, session, candidate: LeadCandidate, outcome: str, person_id, reason: str = None):
        await ProcessedEmailRepository(session).record(
            message_id=candidate.idempotency_key,
            outcome=outcome,
            person_id=person_id,
            agent_id=candidate.agent_id,
            source_kind=candidate.source_kind.value,
            reason=reason,
            confidence=candidate.confidence,
            sender=candidate.source_id,
            classification=candidate.lead_data
        )

    async def _reject(
        self,
        key: Optional[str],
        error,
        source_kind: str = "email",
        agent_id: Optional[uuid.UUID] = None,
        sender: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> IngestionOutcome:
        """Record a terminal rejection once; a replayed key returns the stored result."""
        logger.warning(f"Rejected {source_kind} event {key}: {error.code}")
        outcome = IngestionOutcome(status="rejected", message_id=key, code=error.code, message=error.message)
        if not key:
            return outcome

        try:
            async with self.session_factory() as session, session.begin():
                repo = ProcessedEmailRepository(session)
                existing = await repo.get_by_message_id(key)
                if existing:
                    return self._duplicate(key, existing.person_id, existing.outcome)
                await repo.record(
                    message_id=key,
                    outcome="rejected",
                    agent_id=agent_id,
                    source_kind=source_kind,
                    reason=error.code,
                    confidence=confidence,
                    sender=sender
                )
        except IntegrityError:
            # A concurrent delivery recorded it first
            return self._duplicate(key)
        return outcome

    @staticmethod
    def _duplicate(key: str, person_id=None, previous: Optional[str] = None) -> IngestionOutcome:
        error = DuplicateAlreadyProcessed(key, person_id)
        message = f"{error.message} ({previous})" if previous else error.message
        return IngestionOutcome(
            status="duplicate", person_id=error.person_id, message_id=key, code=error.code, message=message
        )
