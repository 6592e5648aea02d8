from datetime import datetime, timedelta

from sqlalchemy import func
from sqlmodel import select

from leadrouter.config import settings
from leadrouter.models.activity import Activity, ActivityTypes
from leadrouter.models.person import Person, LeadStatus
from leadrouter.models.token import MailboxPollLease
from leadrouter.repositories.lead_source_repo import LeadSourceRepository
from leadrouter.repositories.processed_email_repo import ProcessedEmailRepository
from leadrouter.repositories.rotation_repo import RotationRepository
from leadrouter.repositories.token_repo import PollLeaseRepository
from leadrouter.schemas.lead import (
    ClassifierResult, EmailLeadPayload, WebhookLeadPayload, LeadSubmission
)
from leadrouter.services.integrations.base import LeadClassifier
from leadrouter.services.pipeline_service import PipelineOrchestrator


def _lead(email, confidence=0.9, **lead_data):
    return ClassifierResult(is_lead=True, confidence=confidence, lead_data={"email": [email], **lead_data})


async def _count_people(session_factory):
    async with session_factory() as session:
        return (await session.exec(select(func.count()).select_from(Person))).one()


async def _cursor_version(session_factory):
    async with session_factory() as session:
        return (await RotationRepository(session).get_cursor(for_update=False)).version


async def test_webhook_creates_and_assigns(session_factory, add_agents):
    agents = await add_agents(2)
    pipeline = PipelineOrchestrator(session_factory)

    outcome = await pipeline.ingest_webhook(WebhookLeadPayload.model_validate({"id": 7, "email": "a@x.com"}))

    assert outcome.status == "created"
    assert outcome.assigned_to == agents[0]
    async with session_factory() as session:
        person = await session.get(Person, outcome.person_id)
        ledger = await ProcessedEmailRepository(session).get_by_message_id("homestack:7")
        activity_types = {
            activity.type for activity in
            (await session.exec(select(Activity).where(Activity.person_id == person.id))).all()
        }
    assert person.lead_status == LeadStatus.ASSIGNED.value
    assert person.assigned_to == agents[0]
    assert ledger.outcome == "created"
    assert ledger.person_id == person.id
    assert activity_types == {ActivityTypes.CREATED, ActivityTypes.ASSIGNED}


async def test_redelivery_is_idempotent(session_factory, add_agents):
    await add_agents(2)
    pipeline = PipelineOrchestrator(session_factory)
    payload = WebhookLeadPayload.model_validate({"id": "abc", "email": "a@x.com"})

    first = await pipeline.ingest_webhook(payload)
    version = await _cursor_version(session_factory)
    second = await pipeline.ingest_webhook(payload)

    assert second.status == "duplicate"
    assert second.person_id == first.person_id
    assert await _count_people(session_factory) == 1
    assert await _cursor_version(session_factory) == version


async def test_rejection_is_recorded_once(session_factory):
    pipeline = PipelineOrchestrator(session_factory)
    payload = WebhookLeadPayload.model_validate({"id": 9, "name": "No Contact"})

    first = await pipeline.ingest_webhook(payload)
    second = await pipeline.ingest_webhook(payload)

    assert first.status == "rejected"
    assert first.code == "missing_identity"
    assert second.status == "duplicate"
    async with session_factory() as session:
        ledger = await ProcessedEmailRepository(session).get_by_message_id("homestack:9")
    assert ledger.outcome == "rejected"
    assert ledger.reason == "missing_identity"


async def test_lead_is_staged_without_agents(session_factory):
    pipeline = PipelineOrchestrator(session_factory)

    outcome = await pipeline.ingest_submission(LeadSubmission(emails=["a@x.com"]), idempotency_key="k1")

    assert outcome.status == "staged"
    assert outcome.assigned_to is None
    async with session_factory() as session:
        person = await session.get(Person, outcome.person_id)
        ledger = await ProcessedEmailRepository(session).get_by_message_id("api:k1")
    assert person.lead_status == LeadStatus.STAGING.value
    assert ledger.outcome == "staged"


async def test_repeat_lead_merges_without_second_assignment(session_factory, add_agents):
    agents = await add_agents(2)
    pipeline = PipelineOrchestrator(session_factory)

    first = await pipeline.ingest_submission(LeadSubmission(emails=["a@x.com"]))
    version = await _cursor_version(session_factory)
    second = await pipeline.ingest_submission(LeadSubmission(emails=["b@x.com", "a@x.com"], phones=["5550102000"]))

    assert second.status == "merged"
    assert second.person_id == first.person_id
    assert second.assigned_to == agents[0]
    assert await _cursor_version(session_factory) == version
    async with session_factory() as session:
        person = await session.get(Person, first.person_id)
    assert person.emails == ["a@x.com", "b@x.com"]
    assert person.phones == ["5550102000"]


async def test_ambiguous_candidate_is_rejected_and_flagged(session_factory):
    pipeline = PipelineOrchestrator(session_factory)
    await pipeline.ingest_submission(LeadSubmission(emails=["a@x.com"]))
    await pipeline.ingest_submission(LeadSubmission(phones=["5550102000"]))

    outcome = await pipeline.ingest_submission(
        LeadSubmission(emails=["a@x.com"], phones=["5550102000"]), idempotency_key="amb"
    )

    assert outcome.status == "rejected"
    assert outcome.code == "ambiguous_match"
    assert outcome.flagged_duplicates == 2
    assert await _count_people(session_factory) == 2
    async with session_factory() as session:
        ledger = await ProcessedEmailRepository(session).get_by_message_id("api:amb")
    assert ledger.reason == "ambiguous_match"


async def test_pushed_email(session_factory, add_agents):
    agents = await add_agents(1)
    pipeline = PipelineOrchestrator(session_factory)
    payload = EmailLeadPayload.model_validate({
        "email_id": "gmail-1",
        "from": "Ada <ada@example.com>",
        "subject": "Question about listing",
        "body": "Is it still available?",
        "ai_analysis": {"is_lead": True, "confidence": 0.8, "lead_data": {"phone": ["555 010 2000"]}},
    })

    outcome = await pipeline.process_email(payload)

    assert outcome.status == "created"
    assert outcome.assigned_to == agents[0]
    async with session_factory() as session:
        person = await session.get(Person, outcome.person_id)
    assert person.emails == ["ada@example.com"]
    assert person.lead_source == "Email"


async def test_poll_mailbox_processes_unseen_messages(
    session_factory, mailbox_client, classifier, add_agents, add_token
):
    agents = await add_agents(2)
    token = await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    mailbox_client.add_message("m1")
    mailbox_client.add_message("m2")
    mailbox_client.add_message("m3")
    classifier.results["m1"] = _lead("buyer@x.com")
    classifier.results["m2"] = _lead("maybe@x.com", confidence=0.3)
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    result = await pipeline.poll_mailbox(token)

    assert (result.processed, result.created, result.rejected, result.failed) == (3, 1, 2, 0)
    assert result.error is None
    async with session_factory() as session:
        ledger = await ProcessedEmailRepository(session).get_stats()
        lease = await session.get(MailboxPollLease, token.agent_id)
    assert ledger["by_outcome"] == {"created": 1, "rejected": 2}
    assert lease is None

    classifier.calls.clear()
    again = await pipeline.poll_mailbox(token)

    assert again.processed == 0
    assert classifier.calls == []


async def test_poll_skips_when_lease_is_held(session_factory, mailbox_client, classifier, add_token):
    token = await add_token()
    async with session_factory() as session, session.begin():
        await PollLeaseRepository(session).acquire(token.agent_id, "other-worker", 300)
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    result = await pipeline.poll_mailbox(token)

    assert result.skipped
    assert classifier.calls == []


class _LeaseTamperingClassifier(LeadClassifier):
    """Not-lead verdicts; before each one, hands the lease to `tamper`."""

    def __init__(self, session_factory, agent_id, tamper):
        self.session_factory = session_factory
        self.agent_id = agent_id
        self.tamper = tamper
        self.calls = []
        self.seen_expiries = []

    async def classify(self, message):
        self.calls.append(message.id)
        async with self.session_factory() as session, session.begin():
            lease = await session.get(MailboxPollLease, self.agent_id)
            self.seen_expiries.append(lease.expires_at)
            self.tamper(lease)
            session.add(lease)
        return ClassifierResult(is_lead=False, confidence=0.05)


def _expire(lease):
    lease.expires_at = datetime.utcnow() - timedelta(seconds=1)


def _steal(lease):
    lease.holder = "other-worker"
    lease.expires_at = datetime.utcnow() + timedelta(seconds=300)


async def test_poll_renews_lease_before_each_message(session_factory, mailbox_client, add_token):
    token = await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    for message_id in ("m1", "m2", "m3"):
        mailbox_client.add_message(message_id)
    classifier = _LeaseTamperingClassifier(session_factory, token.agent_id, _expire)
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    started = datetime.utcnow()
    result = await pipeline.poll_mailbox(token)

    assert result.processed == 3
    assert result.error is None
    assert len(classifier.seen_expiries) == 3
    floor = started + timedelta(seconds=settings.POLL_LEASE_SECONDS - 60)
    assert all(expires_at > floor for expires_at in classifier.seen_expiries)


async def test_poll_stops_when_lease_is_taken_over(session_factory, mailbox_client, add_token):
    token = await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    for message_id in ("m1", "m2", "m3"):
        mailbox_client.add_message(message_id)
    classifier = _LeaseTamperingClassifier(session_factory, token.agent_id, _steal)
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    result = await pipeline.poll_mailbox(token)

    assert result.processed == 1
    assert result.error == "poll lease lost"
    assert classifier.calls == ["m1"]
    async with session_factory() as session:
        seen = await ProcessedEmailRepository(session).get_processed_ids(["m1", "m2", "m3"])
        lease = await session.get(MailboxPollLease, token.agent_id)
    assert set(seen) == {"m1"}
    assert lease.holder == "other-worker"


async def test_sweep_collects_failures_per_mailbox(session_factory, mailbox_client, classifier, add_token):
    await add_token(access_token="good")
    await add_token(access_token="good")
    mailbox_client.unavailable = True
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    report = await pipeline.sweep_mailboxes()

    assert report.total_processed == 0
    assert report.failed == 2
    assert len(report.per_source_results) == 2
    assert all(result.error for result in report.per_source_results)


async def test_sweep_totals(session_factory, mailbox_client, classifier, add_agents, add_token):
    await add_agents(1)
    await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    mailbox_client.add_message("m1")
    mailbox_client.add_message("m2")
    classifier.results["m1"] = _lead("one@x.com")
    classifier.results["m2"] = _lead("two@x.com")
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    report = await pipeline.sweep_mailboxes()

    assert report.total_processed == 2
    assert report.succeeded == 1
    assert report.per_source_results[0].created == 2


async def test_lead_source_labels_and_gates_email(session_factory, mailbox_client, classifier, add_token, monkeypatch):
    async with session_factory() as session, session.begin():
        await LeadSourceRepository(session).create({"name": "Zillow", "email_patterns": ["*@zillow.com"]})
    token = await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    mailbox_client.add_message("z1", sender="Zillow <leads@zillow.com>")
    mailbox_client.add_message("o1", sender="someone@other.com")
    classifier.results["z1"] = _lead("buyer@x.com")
    classifier.results["o1"] = _lead("other@x.com")
    monkeypatch.setattr(settings, "REQUIRE_LEAD_SOURCE_MATCH", True)
    pipeline = PipelineOrchestrator(session_factory, mailbox_client=mailbox_client, classifier=classifier)

    result = await pipeline.poll_mailbox(token)

    assert (result.staged, result.rejected) == (1, 1)
    async with session_factory() as session:
        person = (await session.exec(select(Person))).one()
        rejected = await ProcessedEmailRepository(session).get_by_message_id("o1")
    assert person.lead_source == "Zillow"
    assert rejected.reason == "no_lead_source_match"
