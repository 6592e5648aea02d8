"""
Person schemas.
"""
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel

from leadrouter.models.person import LeadStatus


class PersonResponse(BaseModel):
    """Person response."""
    id: uuid.UUID
    first_name: str
    last_name: str
    company: Optional[str]
    emails: List[str]
    phones: List[str]
    client_type: str
    lead_status: str
    lead_source: Optional[str]
    source_kind: Optional[str]
    assigned_to: Optional[uuid.UUID]
    assigned_at: Optional[datetime]
    last_confidence: Optional[float]
    lead_data: Dict[str, Any]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    archived_at: Optional[datetime]

    class Config:
        from_attributes = True


class ActivityResponse(BaseModel):
    id: uuid.UUID
    person_id: uuid.UUID
    type: str
    description: Optional[str]
    created_by: str
    meta_data: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    """Agent-driven status move."""
    status: LeadStatus
    actor: Optional[str] = None


class ReassignRequest(BaseModel):
    agent_id: uuid.UUID
    actor: Optional[str] = None


class DuplicateFlagResponse(BaseModel):
    id: uuid.UUID
    target_person_id: Optional[uuid.UUID]
    person_ids: List[str]
    candidate: Dict[str, Any]
    source_key: Optional[str]
    status: str
    created_at: datetime
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


class MergeRequest(BaseModel):
    """Administrator merge of existing records."""
    primary_person_id: uuid.UUID
    duplicate_person_ids: List[uuid.UUID]
