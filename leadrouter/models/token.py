"""
Mailbox OAuth credentials and the per-agent poll lease.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field


class MailboxToken(SQLModel, table=True):
    """
    OAuth credentials for an agent's mailbox.
    At most one active row per agent; a new grant deactivates older rows.
    """
    __tablename__ = "user_mailbox_tokens"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    agent_id: uuid.UUID = Field(index=True)
    mailbox_email: Optional[str] = None

    # OAuth tokens
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    # Status
    is_active: bool = Field(default=True, index=True)
    last_polled_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= datetime.utcnow()


class MailboxPollLease(SQLModel, table=True):
    """
    Exclusive "poll in progress" marker for one agent's mailbox.
    A lease past expires_at may be taken over by another poller.
    """
    __tablename__ = "mailbox_poll_leases"

    agent_id: uuid.UUID = Field(primary_key=True)
    holder: str
    acquired_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime
