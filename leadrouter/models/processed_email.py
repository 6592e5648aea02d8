"""
Idempotency ledger - one row per processed source event.
"""
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column

from leadrouter.models.types import JSONVariant


class ProcessedEmail(SQLModel, table=True):
    """
    Append-only record of a processed message id (or any source idempotency key).
    Re-delivery of the same id returns this row instead of reprocessing.
    """
    __tablename__ = "processed_emails"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    message_id: str = Field(unique=True, index=True)

    agent_id: Optional[uuid.UUID] = Field(default=None, index=True)  # mailbox owner, if polled
    person_id: Optional[uuid.UUID] = Field(default=None, foreign_key="people.id")

    source_kind: str = Field(default="email")
    outcome: str  # created, merged, staged, rejected
    reason: Optional[str] = None
    confidence: Optional[float] = None
    sender: Optional[str] = None
    classification: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))

    processed_at: datetime = Field(default_factory=datetime.utcnow)
