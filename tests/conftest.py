import os
import tempfile
import uuid
from datetime import datetime, timedelta

# Settings are read at import time, so the environment is prepared first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/import.db"
os.environ["ADMIN_API_TOKEN"] = "admin-token"
os.environ["CRON_SECRET_TOKEN"] = "cron-secret"
os.environ["LEAD_API_KEY"] = "lead-key"
os.environ["WEBHOOK_SECRET"] = "hook-secret"
os.environ["EMAIL_PUSH_TOKEN"] = "push-token"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["OPENAI_API_KEY"] = "test-openai-key"

import pytest

from leadrouter.core.exceptions import UpstreamUnavailable, TokenInvalid
from leadrouter.database import build_engine, build_session_factory, init_db
from leadrouter.repositories.rotation_repo import RotationRepository
from leadrouter.repositories.token_repo import MailboxTokenRepository
from leadrouter.schemas.lead import ClassifierResult
from leadrouter.schemas.mailbox import MessageRef, RawMessage, NewToken
from leadrouter.services.integrations.base import MailboxClient, LeadClassifier


class FakeMailboxClient(MailboxClient):
    """In-memory mailbox provider."""

    def __init__(self):
        self.messages = {}
        self.valid_tokens = set()
        self.refreshable = {}  # refresh token -> new access token
        self.unavailable = False
        self.refresh_calls = 0

    def add_message(self, message_id, sender="Jane Doe <jane@example.com>", subject="Inquiry", body="Hello"):
        self.messages[message_id] = RawMessage(id=message_id, sender=sender, subject=subject, body=body)

    async def list_recent_messages(self, access_token, max_results=20):
        if self.unavailable:
            raise UpstreamUnavailable("Fake mailbox", "down")
        return [MessageRef(id=message_id) for message_id in list(self.messages)[:max_results]]

    async def get_message(self, access_token, message_id):
        if self.unavailable:
            raise UpstreamUnavailable("Fake mailbox", "down")
        return self.messages[message_id]

    async def validate_token(self, access_token):
        if self.unavailable:
            raise UpstreamUnavailable("Fake mailbox", "down")
        return access_token in self.valid_tokens

    async def refresh_token(self, refresh_token):
        self.refresh_calls += 1
        if self.unavailable:
            raise UpstreamUnavailable("Fake mailbox", "down")
        if refresh_token not in self.refreshable:
            raise TokenInvalid("Refresh token")
        access_token = self.refreshable[refresh_token]
        self.valid_tokens.add(access_token)
        return NewToken(access_token=access_token, expires_at=datetime.utcnow() + timedelta(hours=1))

    async def get_authorization_url(self, state):
        return f"https://auth.example.com/consent?state={state}"

    async def exchange_code(self, code):
        if code == "bad-code":
            raise TokenInvalid("Authorization code")
        return NewToken(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.utcnow() + timedelta(hours=1),
            mailbox_email="agent@example.com"
        )


class FakeClassifier(LeadClassifier):
    """Returns canned verdicts keyed by message id; unknown messages are not leads."""

    def __init__(self):
        self.results = {}
        self.calls = []

    async def classify(self, message):
        self.calls.append(message.id)
        return self.results.get(message.id, ClassifierResult(is_lead=False, confidence=0.05))


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def mailbox_client():
    return FakeMailboxClient()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def add_agents(session_factory):
    """Add agents to the rotation; returns their ids in turn order."""
    async def _add(count, priority=0):
        agent_ids = sorted((uuid.uuid4() for _ in range(count)), key=str)
        async with session_factory() as session, session.begin():
            repo = RotationRepository(session)
            for agent_id in agent_ids:
                await repo.add_entry(agent_id, priority=priority)
        return agent_ids
    return _add


@pytest.fixture
def add_token(session_factory):
    async def _add(agent_id=None, access_token="access-1", refresh_token="refresh-1", expires_at=None):
        async with session_factory() as session, session.begin():
            token = await MailboxTokenRepository(session).create_token(
                agent_id=agent_id or uuid.uuid4(),
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at or datetime.utcnow() + timedelta(hours=1),
                mailbox_email="agent@example.com"
            )
        return token
    return _add
