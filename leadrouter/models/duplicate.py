"""
Duplicate flags - ambiguous matches left for an administrator to merge.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column

from leadrouter.models.types import JSONVariant


class DuplicateFlag(SQLModel, table=True):
    __tablename__ = "duplicate_flags"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Record the candidate was folded into, if any
    target_person_id: Optional[uuid.UUID] = Field(default=None, foreign_key="people.id")
    person_ids: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))

    candidate: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    source_key: Optional[str] = None

    status: str = Field(default="open", index=True)  # open, resolved

    created_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
