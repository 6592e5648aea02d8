"""
Direct lead submission routes.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header

from leadrouter.api.deps import get_pipeline, require_lead_api_key, outcome_response
from leadrouter.schemas.lead import LeadSubmission
from leadrouter.services.pipeline_service import PipelineOrchestrator

router = APIRouter(prefix="/api/leads", tags=["leads"])


@router.post("/submit", dependencies=[Depends(require_lead_api_key)])
async def submit_lead(
    payload: LeadSubmission,
    idempotency_key: Optional[str] = Header(None),
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """
    Submit a lead directly.
    Send an Idempotency-Key header to make retries safe.
    """
    outcome = await pipeline.ingest_submission(payload, idempotency_key)
    return outcome_response(outcome)
