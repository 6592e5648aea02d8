"""
Lead schemas.
One payload model per ingestion source, validated at the normalizer boundary,
and the canonical LeadCandidate they all normalize into.
"""
import uuid
from enum import Enum
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field, AliasChoices, ConfigDict, field_validator


class SourceKind(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"
    PIXEL = "pixel"
    API = "api"


def _as_list(value: Any) -> List[str]:
    """Accept a single value, a list, or nothing."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if item not in (None, "")]
    return [str(value)]


class ExtractedLead(BaseModel):
    """Structured fields the classifier pulled out of an email."""
    model_config = ConfigDict(extra="allow")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    email: List[str] = []
    phone: List[str] = []
    company: Optional[str] = None
    message: Optional[str] = None
    lead_source: Optional[str] = None

    @field_validator("email", "phone", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)


class ClassifierResult(BaseModel):
    """Output of a LeadClassifier."""
    is_lead: bool
    confidence: float = Field(ge=0.0, le=1.0)
    lead_data: ExtractedLead = ExtractedLead()
    reasons: List[str] = []

    class Config:
        json_schema_extra = {
            "example": {
                "is_lead": True,
                "confidence": 0.92,
                "lead_data": {
                    "first_name": "Ada",
                    "last_name": "Lovelace",
                    "email": ["ada@example.com"],
                    "phone": ["(555) 010-2000"],
                    "message": "Interested in the 3 bed on Elm St"
                }
            }
        }


class LeadCandidate(BaseModel):
    """
    Canonical, normalized lead produced per ingestion event.
    Emails are lower-cased and phones are digit strings; the first element of
    each list is the primary for display only.
    """
    source_kind: SourceKind
    first_name: str = ""
    last_name: str = ""
    company: Optional[str] = None
    emails: List[str] = []
    phones: List[str] = []
    message: Optional[str] = None
    notes: Optional[str] = None
    lead_source: Optional[str] = None
    source_id: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    lead_data: Dict[str, Any] = {}
    idempotency_key: Optional[str] = None
    agent_id: Optional[uuid.UUID] = None  # mailbox owner for polled email

    @property
    def primary_email(self) -> Optional[str]:
        return self.emails[0] if self.emails else None

    @property
    def primary_phone(self) -> Optional[str]:
        return self.phones[0] if self.phones else None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AttachmentRef(BaseModel):
    filename: str
    size: int = 0
    mime_type: Optional[str] = None


class EmailLeadPayload(BaseModel):
    """Email pushed by an automation workflow, already classified."""
    model_config = ConfigDict(populate_by_name=True)

    email_id: str
    sender: str = Field(validation_alias=AliasChoices("from", "sender"))
    subject: str
    body: str = ""
    date: Optional[str] = None
    ai_analysis: ClassifierResult
    user_id: Optional[uuid.UUID] = None
    attachments: List[AttachmentRef] = []


class WebhookLeadPayload(BaseModel):
    """
    Lead pushed by the third-party platform.
    The platform is inconsistent about key names, so each field accepts
    the spellings seen in practice.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[Union[str, int]] = Field(default=None, validation_alias=AliasChoices("id", "guid", "lead_id"))
    event: Optional[str] = Field(default=None, validation_alias=AliasChoices("event", "event_type", "type"))
    first_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    name: Optional[str] = None
    email: List[str] = Field(default=[], validation_alias=AliasChoices("email", "emails", "email_address"))
    phone: List[str] = Field(default=[], validation_alias=AliasChoices("phone", "phones", "phone_number"))
    message: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "notes", "comments", "description"))
    property_address: Optional[str] = Field(default=None, validation_alias=AliasChoices("property_address", "address"))
    property_details: Optional[str] = Field(default=None, validation_alias=AliasChoices("property_details", "listing_details", "property_type"))
    budget: Optional[str] = None
    timeline: Optional[str] = None
    lead_source: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("email", "phone", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "WebhookLeadPayload":
        """Unwrap the envelope ({"event": ..., "data": {...}}) when present."""
        inner = body.get("data") or body.get("lead") or body.get("user")
        if isinstance(inner, dict):
            merged = dict(inner)
            for key in ("event", "event_type", "type"):
                if key in body and key not in merged:
                    merged[key] = body[key]
            return cls.model_validate(merged)
        return cls.model_validate(body)


class PixelLeadData(BaseModel):
    """Form fields captured by the tracking pixel."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    message: Optional[str] = None

    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None

    bedrooms: Optional[Union[str, int]] = None
    bathrooms: Optional[Union[str, int, float]] = None
    square_feet: Optional[Union[str, int]] = None
    acreage: Optional[Union[str, int, float]] = None
    price: Optional[str] = None
    additional_criteria: Optional[str] = None
    areas_of_interest: Optional[str] = None

    source_url: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    submission_id: Optional[str] = None
    raw_fields: Dict[str, Any] = {}


class PixelCapturePayload(BaseModel):
    lead_data: PixelLeadData
    source: Optional[str] = None


class LeadSubmission(BaseModel):
    """Direct API submission."""
    first_name: str = ""
    last_name: str = ""
    emails: List[str] = Field(default=[], validation_alias=AliasChoices("emails", "email"))
    phones: List[str] = Field(default=[], validation_alias=AliasChoices("phones", "phone"))
    company: Optional[str] = None
    message: Optional[str] = None
    lead_source: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    lead_data: Dict[str, Any] = {}

    @field_validator("emails", "phones", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)

    class Config:
        json_schema_extra = {
            "example": {
                "first_name": "Grace",
                "last_name": "Hopper",
                "emails": ["grace@example.com"],
                "phones": ["+1 555 010 3000"],
                "message": "Looking to sell in Q3",
                "lead_source": "website"
            }
        }
