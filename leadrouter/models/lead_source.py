"""
Lead source definitions and pixel API keys.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import SQLModel, Field
from sqlalchemy import Column

from leadrouter.models.types import JSONVariant


class LeadSource(SQLModel, table=True):
    """
    Known origin of lead emails (portals, brokerages, forms).
    Used to label and optionally gate email candidates.
    """
    __tablename__ = "lead_sources"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(unique=True, index=True)

    email_patterns: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    # Example: ["*@zillow.com", "leads@realtor.com"]
    domain_patterns: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    keywords: List[str] = Field(default_factory=list, sa_column=Column(JSONVariant))

    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PixelApiKey(SQLModel, table=True):
    """API key embedded in a website's tracking pixel."""
    __tablename__ = "pixel_api_keys"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    key: str = Field(unique=True, index=True)
    name: str
    website: Optional[str] = None

    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
