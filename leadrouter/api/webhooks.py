"""
Third-party platform webhook routes.
"""
import json
import logging

from fastapi import APIRouter, Depends
from pydantic import ValidationError as PydanticValidationError

from leadrouter.api.deps import get_pipeline, require_webhook_signature, outcome_response
from leadrouter.core.exceptions import ValidationError
from leadrouter.schemas.lead import WebhookLeadPayload
from leadrouter.services.pipeline_service import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Events that carry a person; anything else is acknowledged and ignored
LEAD_EVENTS = {
    "new_user", "update_user",
    "user.created", "user.registered",
    "lead.created", "lead.updated",
    "contact.created", "contact.updated",
}


@router.post("/homestack")
async def homestack_webhook(
    body: bytes = Depends(require_webhook_signature),
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Signed lead webhook."""
    try:
        data = json.loads(body)
    except ValueError:
        raise ValidationError("Body is not valid JSON", code="invalid_payload")
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object", code="invalid_payload")

    try:
        payload = WebhookLeadPayload.from_body(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e), code="invalid_payload")

    if payload.event and payload.event not in LEAD_EVENTS:
        logger.info(f"Ignoring webhook event '{payload.event}'")
        return {"status": "ignored", "event": payload.event}

    outcome = await pipeline.ingest_webhook(payload)
    return outcome_response(outcome)
