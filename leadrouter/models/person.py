"""
Person model - the durable lead/contact record.
Emails and phones are kept as ordered lists for display and mirrored into
person_identities for matching.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Index

from leadrouter.models.types import JSONVariant


class ClientType(str, Enum):
    CONTACT = "contact"
    LEAD = "lead"


class LeadStatus(str, Enum):
    STAGING = "staging"
    ASSIGNED = "assigned"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"


class Person(SQLModel, table=True):
    """
    Person entity - a contact or a lead moving through the status workflow.
    Never hard-deleted outside staging; archived_at is the soft delete.
    """
    __tablename__ = "people"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Identity
    first_name: str = Field(default="")
    last_name: str = Field(default="")
    company: Optional[str] = None

    # First element is the primary for display only
    emails: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    phones: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))

    # Workflow
    client_type: str = Field(default=ClientType.LEAD.value, index=True)
    lead_status: str = Field(default=LeadStatus.STAGING.value, index=True)
    lead_source: Optional[str] = Field(default=None, index=True)
    source_kind: Optional[str] = None  # email, webhook, pixel, api

    # Assignment
    assigned_to: Optional[uuid.UUID] = Field(default=None, index=True)
    assigned_at: Optional[datetime] = None

    # Classification
    last_confidence: Optional[float] = None
    lead_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))

    notes: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    archived_at: Optional[datetime] = Field(default=None, index=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class PersonIdentity(SQLModel, table=True):
    """
    Normalized email address or phone digit-string claimed by a person.
    Dedup matching runs against these rows, covering every email and phone,
    not just the primary.
    """
    __tablename__ = "person_identities"
    __table_args__ = (Index("ix_person_identities_kind_value", "kind", "value"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    person_id: uuid.UUID = Field(foreign_key="people.id", index=True)

    kind: str  # email, phone
    value: str

    created_at: datetime = Field(default_factory=datetime.utcnow)


class IdentityKind:
    EMAIL = "email"
    PHONE = "phone"
