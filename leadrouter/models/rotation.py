"""
Round robin configuration and cursor.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field


class RotationEntry(SQLModel, table=True):
    """
    One eligible agent in the rotation.
    Lower priority takes an earlier turn; ties are broken by agent id.
    """
    __tablename__ = "round_robin_config"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    agent_id: uuid.UUID = Field(unique=True, index=True)
    display_name: Optional[str] = None

    is_active: bool = Field(default=True, index=True)
    priority: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def sort_key(self) -> tuple:
        return (self.priority, str(self.agent_id))


CURSOR_ID = 1


class RotationCursor(SQLModel, table=True):
    """
    Single-row cursor: who got the last lead, at which priority.
    version is bumped on every advance and used for compare-and-swap.
    """
    __tablename__ = "round_robin_cursor"

    id: int = Field(default=CURSOR_ID, primary_key=True)
    last_agent_id: Optional[uuid.UUID] = None
    last_priority: Optional[int] = None
    version: int = Field(default=0)

    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def sort_key(self) -> Optional[tuple]:
        if self.last_agent_id is None:
            return None
        return (self.last_priority or 0, str(self.last_agent_id))
