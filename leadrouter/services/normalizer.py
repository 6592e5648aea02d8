"""
Normalizer - turns raw source payloads into a canonical LeadCandidate.
"""
import re
import logging
from email.utils import parseaddr
from typing import Optional, List, Iterable, Tuple

from leadrouter.config import settings
from leadrouter.core.exceptions import ClassificationRejected, ValidationError
from leadrouter.schemas.lead import (
    SourceKind, LeadCandidate, ClassifierResult, EmailLeadPayload,
    WebhookLeadPayload, PixelCapturePayload, LeadSubmission
)
from leadrouter.schemas.mailbox import RawMessage

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PHONE_DIGITS = 7


def normalize_emails(values: Iterable[str]) -> List[str]:
    """Trim, lower-case, shape-check and de-duplicate, keeping order."""
    result = []
    for value in values:
        if not value:
            continue
        # "Jane Doe <jane@x.com>" -> "jane@x.com"
        address = parseaddr(str(value))[1] or str(value)
        address = address.strip().lower()
        if EMAIL_PATTERN.match(address) and address not in result:
            result.append(address)
    return result


def normalize_phones(values: Iterable[str]) -> List[str]:
    """Reduce to digit strings and de-duplicate, keeping order."""
    result = []
    for value in values:
        if value is None:
            continue
        digits = re.sub(r"\D", "", str(value))
        if len(digits) >= MIN_PHONE_DIGITS and digits not in result:
            result.append(digits)
    return result


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """Split "First Last Names" into (first, rest)."""
    if not full_name:
        return "", ""
    cleaned = re.sub(r"[<>\"']", "", full_name).strip()
    parts = cleaned.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


class Normalizer:
    """
    Builds LeadCandidates and rejects unusable input.
    Rejections are checked in order: not_a_lead, low_confidence, missing_identity.
    """

    def __init__(self, confidence_threshold: float = None):
        if confidence_threshold is None:
            confidence_threshold = settings.LEAD_CONFIDENCE_THRESHOLD
        self.confidence_threshold = confidence_threshold

    def check_classification(self, is_lead: bool, confidence: float) -> None:
        if not is_lead:
            raise ClassificationRejected("not_a_lead", confidence)
        if confidence < self.confidence_threshold:
            raise ClassificationRejected("low_confidence", confidence)

    def _build(self, raw_emails: Iterable[str], raw_phones: Iterable[str], **fields) -> LeadCandidate:
        emails = normalize_emails(raw_emails)
        phones = normalize_phones(raw_phones)
        if not emails and not phones:
            raise ValidationError("No usable email address or phone number", code="missing_identity")
        return LeadCandidate(emails=emails, phones=phones, **fields)

    # -------------------------------------------------------------------------
    # Email
    # -------------------------------------------------------------------------

    def from_email(
        self,
        message: RawMessage,
        result: ClassifierResult,
        agent_id=None,
        lead_source: Optional[str] = None
    ) -> LeadCandidate:
        """Polled email plus the classifier's verdict."""
        self.check_classification(result.is_lead, result.confidence)
        data = result.lead_data

        first_name, last_name = data.first_name or "", data.last_name or ""
        if not first_name and not last_name:
            first_name, last_name = split_name(data.name or parseaddr(message.sender)[0])

        # The sender is only a fallback; portal notifications name the prospect in the body
        emails = data.email or [message.sender]

        return self._build(
            emails,
            data.phone,
            source_kind=SourceKind.EMAIL,
            first_name=first_name,
            last_name=last_name,
            company=data.company,
            message=data.message or message.body[:1000],
            lead_source=lead_source or data.lead_source or "Email",
            source_id=message.sender,
            confidence=result.confidence,
            lead_data=data.model_dump(exclude_none=True),
            idempotency_key=message.id,
            agent_id=agent_id
        )

    def from_email_payload(self, payload: EmailLeadPayload) -> LeadCandidate:
        """Email pushed by the automation workflow with its classification attached."""
        message = RawMessage(
            id=payload.email_id,
            sender=payload.sender,
            subject=payload.subject,
            body=payload.body,
            date=payload.date,
            attachments=payload.attachments
        )
        return self.from_email(message, payload.ai_analysis, agent_id=payload.user_id)

    # -------------------------------------------------------------------------
    # Webhook, pixel, API
    # -------------------------------------------------------------------------

    def from_webhook(self, payload: WebhookLeadPayload) -> LeadCandidate:
        confidence = 1.0 if payload.confidence is None else payload.confidence
        self.check_classification(True, confidence)

        first_name, last_name = payload.first_name or "", payload.last_name or ""
        if not first_name and not last_name:
            first_name, last_name = split_name(payload.name)

        extras = {
            "property_address": payload.property_address,
            "property_details": payload.property_details,
            "budget": payload.budget,
            "timeline": payload.timeline,
            "event": payload.event
        }
        return self._build(
            payload.email,
            payload.phone,
            source_kind=SourceKind.WEBHOOK,
            first_name=first_name,
            last_name=last_name,
            message=payload.message,
            lead_source=payload.lead_source or "HomeStack",
            source_id=str(payload.id) if payload.id is not None else None,
            confidence=confidence,
            lead_data={key: value for key, value in extras.items() if value},
            idempotency_key=f"homestack:{payload.id}" if payload.id is not None else None
        )

    def from_pixel(self, payload: PixelCapturePayload, key_name: Optional[str] = None) -> LeadCandidate:
        self.check_classification(True, 1.0)
        data = payload.lead_data
        first_name, last_name = split_name(data.name)

        details = []
        if data.bedrooms:
            details.append(f"{data.bedrooms} bedrooms")
        if data.bathrooms:
            details.append(f"{data.bathrooms} bathrooms")
        if data.square_feet:
            details.append(f"{data.square_feet} sq ft")
        if data.acreage:
            details.append(f"{data.acreage} acres")

        address = ", ".join(part for part in (data.address, data.city, data.state, data.zipcode) if part)

        notes = []
        if data.message:
            notes.append(data.message)
        if data.additional_criteria:
            notes.append(f"Additional Criteria: {data.additional_criteria}")
        if data.areas_of_interest:
            notes.append(f"Areas of Interest: {data.areas_of_interest}")
        if details:
            notes.append(f"Property Details: {', '.join(details)}")
        if data.price:
            notes.append(f"Price Range: {data.price}")
        if address:
            notes.append(f"Address: {address}")

        return self._build(
            [data.email] if data.email else [],
            [data.phone] if data.phone else [],
            source_kind=SourceKind.PIXEL,
            first_name=first_name,
            last_name=last_name,
            company=data.company,
            message=data.message,
            notes="\n".join(notes) or None,
            lead_source=f"pixel_{key_name or payload.source or 'unknown'}",
            source_id=data.source_url,
            confidence=1.0,
            lead_data={
                "source_url": data.source_url,
                "referrer": data.referrer,
                "user_agent": data.user_agent,
                "address": address or None,
                "raw_fields": data.raw_fields
            },
            idempotency_key=f"pixel:{data.submission_id}" if data.submission_id else None
        )

    def from_submission(self, payload: LeadSubmission, idempotency_key: Optional[str] = None) -> LeadCandidate:
        confidence = 1.0 if payload.confidence is None else payload.confidence
        self.check_classification(True, confidence)
        return self._build(
            payload.emails,
            payload.phones,
            source_kind=SourceKind.API,
            first_name=payload.first_name.strip(),
            last_name=payload.last_name.strip(),
            company=payload.company,
            message=payload.message,
            lead_source=payload.lead_source or "API",
            confidence=confidence,
            lead_data=payload.lead_data,
            idempotency_key=f"api:{idempotency_key}" if idempotency_key else None
        )
