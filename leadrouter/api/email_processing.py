"""
Email processing routes: pushed emails, mailbox sweeps and token sweeps.
"""
from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.api.deps import (
    get_session, get_pipeline, get_polling_pipeline, get_token_manager,
    require_admin, require_cron, require_email_push, outcome_response
)
from leadrouter.repositories.processed_email_repo import ProcessedEmailRepository
from leadrouter.schemas.lead import EmailLeadPayload
from leadrouter.schemas.pipeline import SweepReport, TokenSweepReport
from leadrouter.services.pipeline_service import PipelineOrchestrator
from leadrouter.services.token_service import TokenLifecycleManager

router = APIRouter(tags=["email-processing"])


@router.post("/api/email/process", dependencies=[Depends(require_email_push)])
async def process_email(
    payload: EmailLeadPayload,
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Email pushed by the automation workflow, already classified."""
    outcome = await pipeline.process_email(payload)
    return outcome_response(outcome)


@router.post("/api/cron/email-processing", response_model=SweepReport, dependencies=[Depends(require_cron)])
async def cron_email_processing(pipeline: PipelineOrchestrator = Depends(get_polling_pipeline)):
    """Scheduled sweep of every connected mailbox."""
    return await pipeline.sweep_mailboxes()


@router.post(
    "/api/admin/email-processing/trigger",
    response_model=SweepReport,
    dependencies=[Depends(require_admin)]
)
async def trigger_email_processing(pipeline: PipelineOrchestrator = Depends(get_polling_pipeline)):
    """Manually run a mailbox sweep."""
    return await pipeline.sweep_mailboxes()


@router.get("/api/admin/email-processing/stats", dependencies=[Depends(require_admin)])
async def email_processing_stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    session: AsyncSession = Depends(get_session)
):
    """Ledger outcome counts."""
    return await ProcessedEmailRepository(session).get_stats(hours)


@router.get("/api/admin/email-processing/ledger", dependencies=[Depends(require_admin)])
async def email_processing_ledger(
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session)
):
    """Most recent ledger rows."""
    return await ProcessedEmailRepository(session).list_recent(limit)


@router.post("/api/cron/mailbox-tokens/sweep", response_model=TokenSweepReport, dependencies=[Depends(require_cron)])
async def sweep_mailbox_tokens(manager: TokenLifecycleManager = Depends(get_token_manager)):
    """Validate, refresh or deactivate every active mailbox token."""
    return await manager.sweep()
