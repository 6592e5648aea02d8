"""
Pixel tracking routes.
"""
from fastapi import APIRouter, Depends

from leadrouter.api.deps import get_pipeline, require_pixel_key, outcome_response
from leadrouter.models.lead_source import PixelApiKey
from leadrouter.schemas.lead import PixelCapturePayload
from leadrouter.services.pipeline_service import PipelineOrchestrator

router = APIRouter(prefix="/api/pixel", tags=["pixel"])


@router.post("/capture")
async def capture(
    payload: PixelCapturePayload,
    api_key: PixelApiKey = Depends(require_pixel_key),
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Form submission captured on a customer website."""
    outcome = await pipeline.ingest_pixel(payload, key_name=api_key.name)
    return outcome_response(outcome)
