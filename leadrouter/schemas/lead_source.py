"""
Lead source and pixel key schemas.
"""
import uuid
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel


class LeadSourceCreate(BaseModel):
    name: str
    email_patterns: List[str] = []
    domain_patterns: List[str] = []
    keywords: List[str] = []
    is_active: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Zillow",
                "email_patterns": ["*@zillow.com"],
                "domain_patterns": ["zillow"],
                "keywords": ["premier agent", "new lead"]
            }
        }


class LeadSourceResponse(BaseModel):
    id: uuid.UUID
    name: str
    email_patterns: List[str]
    domain_patterns: List[str]
    keywords: List[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class LeadSourceMatch(BaseModel):
    matched: bool
    source_name: Optional[str] = None
    confidence: float = 0.0
    reasons: List[str] = []


class PixelKeyCreate(BaseModel):
    name: str
    website: Optional[str] = None


class PixelKeyResponse(BaseModel):
    id: uuid.UUID
    key: str
    name: str
    website: Optional[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
