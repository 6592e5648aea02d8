"""
Rotation admin schemas.
"""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import BaseModel


class RotationEntryCreate(BaseModel):
    agent_id: uuid.UUID
    priority: int = 0
    is_active: bool = True
    display_name: Optional[str] = None


class RotationEntryUpdate(BaseModel):
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    display_name: Optional[str] = None


class RotationEntryResponse(BaseModel):
    id: uuid.UUID
    agent_id: uuid.UUID
    display_name: Optional[str]
    is_active: bool
    priority: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
