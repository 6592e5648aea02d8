"""
Lead classifier implementations and provider factories.
"""
import json
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from leadrouter.config import settings
from leadrouter.core.exceptions import UpstreamUnavailable
from leadrouter.schemas.lead import ClassifierResult
from leadrouter.schemas.mailbox import RawMessage
from leadrouter.services.integrations.base import LeadClassifier

logger = logging.getLogger(__name__)


CLASSIFY_PROMPT = """You screen a real estate agent's inbox for new leads.
A lead is a prospective buyer, seller or renter asking about a property or
service, including notifications forwarded by listing portals.

From: {sender}
Subject: {subject}

{body}

Return JSON only:
{{
    "is_lead": <true|false>,
    "confidence": <number 0-1>,
    "reasons": [<short strings>],
    "lead_data": {{
        "first_name": <string or null>,
        "last_name": <string or null>,
        "email": [<addresses of the prospect, not the portal>],
        "phone": [<phone numbers>],
        "company": <string or null>,
        "message": <the prospect's request, one paragraph>,
        "property_address": <string or null>,
        "timeline": <string or null>
    }}
}}
"""


class OpenAILeadClassifier(LeadClassifier):
    """Chat-completions classifier with JSON output."""

    def __init__(self, api_key: str = None, model: str = None, client: Optional[AsyncOpenAI] = None):
        self.model = model or settings.AI_MODEL
        self.client = client or AsyncOpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            timeout=settings.HTTP_TIMEOUT_SECONDS
        )

    async def classify(self, message: RawMessage) -> ClassifierResult:
        prompt = CLASSIFY_PROMPT.format(
            sender=message.sender,
            subject=message.subject,
            body=message.body[:4000]
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.2
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI classification failed for message {message.id}: {e}")
            raise UpstreamUnavailable("OpenAI", str(e))

        content = response.choices[0].message.content or "{}"
        try:
            return ClassifierResult.model_validate(json.loads(content))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            # Left out of the ledger so the next poll classifies the message again
            logger.error(f"Classifier returned malformed output for message {message.id}: {e}")
            raise UpstreamUnavailable("OpenAI", "malformed classifier output")


# Provider factory
_classifier: Optional[LeadClassifier] = None


def get_lead_classifier() -> LeadClassifier:
    """Get the configured classifier."""
    global _classifier
    if _classifier is None:
        _classifier = OpenAILeadClassifier()
    return _classifier


def set_lead_classifier(classifier: Optional[LeadClassifier]):
    """Set a custom classifier (None restores the default)."""
    global _classifier
    _classifier = classifier

