"""
Activity model - audit trail attached to people.
"""
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column

from leadrouter.models.types import JSONVariant


class Activity(SQLModel, table=True):
    """
    Activity entry for a person: creation, merges, assignment, status moves.
    dedupe_key makes a write idempotent when the same event is replayed.
    """
    __tablename__ = "activities"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    person_id: uuid.UUID = Field(foreign_key="people.id", index=True)

    type: str = Field(index=True)
    description: Optional[str] = None
    created_by: str = Field(default="system")  # system, pipeline, pixel_tracking or an agent id

    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    # Example: {"message_id": "18c2...", "confidence": 0.92}

    dedupe_key: Optional[str] = Field(default=None, unique=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)


# Activity type constants for consistency
class ActivityTypes:
    CREATED = "created"
    NOTE_ADDED = "note_added"
    MERGED = "merged"
    ASSIGNED = "assigned"
    REASSIGNED = "reassigned"
    STATUS_CHANGED = "status_changed"
    ARCHIVED = "archived"
    DUPLICATE_FLAGGED = "duplicate_flagged"
