"""
API dependencies - shared across all routes.
Shared-secret checks per caller type, sessions and pipeline construction.
"""
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.config import settings
from leadrouter.database import get_session_factory
from leadrouter.core.exceptions import UnauthorizedError
from leadrouter.core.security import verify_bearer, verify_shared_secret, verify_signature
from leadrouter.models.lead_source import PixelApiKey
from leadrouter.repositories.lead_source_repo import PixelApiKeyRepository
from leadrouter.schemas.pipeline import IngestionOutcome
from leadrouter.services.integrations.base import MailboxClient, LeadClassifier
from leadrouter.services.integrations.classifier import get_lead_classifier
from leadrouter.services.integrations.gmail import get_mailbox_client
from leadrouter.services.pipeline_service import PipelineOrchestrator
from leadrouter.services.token_service import TokenLifecycleManager


# Sessions and providers

def get_db_session_factory() -> sessionmaker:
    return get_session_factory()


async def get_session(factory: sessionmaker = Depends(get_db_session_factory)) -> AsyncSession:
    async with factory() as session:
        yield session


def get_mailbox() -> MailboxClient:
    return get_mailbox_client()


def get_classifier() -> LeadClassifier:
    return get_lead_classifier()


def get_pipeline(factory: sessionmaker = Depends(get_db_session_factory)) -> PipelineOrchestrator:
    """Pipeline for pushed leads; needs no mailbox or classifier."""
    return PipelineOrchestrator(factory)


def get_polling_pipeline(
    factory: sessionmaker = Depends(get_db_session_factory),
    mailbox: MailboxClient = Depends(get_mailbox),
    classifier: LeadClassifier = Depends(get_classifier)
) -> PipelineOrchestrator:
    return PipelineOrchestrator(factory, mailbox_client=mailbox, classifier=classifier)


def get_token_manager(
    factory: sessionmaker = Depends(get_db_session_factory),
    mailbox: MailboxClient = Depends(get_mailbox)
) -> TokenLifecycleManager:
    return TokenLifecycleManager(factory, mailbox)


# Caller authentication

async def require_admin(authorization: Optional[str] = Header(None)) -> None:
    if not verify_bearer(authorization, settings.ADMIN_API_TOKEN):
        raise UnauthorizedError("Admin token required")


async def require_cron(
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None)
) -> None:
    """Scheduler calls send the cron secret as a bearer token or X-Cron-Secret."""
    if verify_bearer(authorization, settings.CRON_SECRET_TOKEN):
        return
    if verify_shared_secret(x_cron_secret, settings.CRON_SECRET_TOKEN):
        return
    raise UnauthorizedError("Cron secret required")


async def require_email_push(authorization: Optional[str] = Header(None)) -> None:
    if not verify_bearer(authorization, settings.EMAIL_PUSH_TOKEN):
        raise UnauthorizedError("Email push token required")


async def require_lead_api_key(x_lead_api_key: Optional[str] = Header(None)) -> None:
    if not verify_shared_secret(x_lead_api_key, settings.LEAD_API_KEY):
        raise UnauthorizedError("Invalid lead API key")


async def require_pixel_key(
    x_api_key: Optional[str] = Header(None),
    factory: sessionmaker = Depends(get_db_session_factory)
) -> PixelApiKey:
    if not x_api_key:
        raise UnauthorizedError("API key required")
    # Closed before the pipeline opens its own transactions
    async with factory() as session:
        key = await PixelApiKeyRepository(session).get_active_by_key(x_api_key)
    if not key:
        raise UnauthorizedError("Invalid API key")
    return key


async def require_webhook_signature(
    request: Request,
    x_homestack_signature: Optional[str] = Header(None)
) -> bytes:
    """Verify the HMAC of the raw body; returns the body."""
    body = await request.body()
    if not verify_signature(body, x_homestack_signature, settings.WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid webhook signature")
    return body


# Responses

def outcome_response(outcome: IngestionOutcome) -> JSONResponse:
    """Rejected and failed outcomes use the structured error body."""
    if outcome.status == "rejected":
        return JSONResponse(
            status_code=422,
            content={"error": {"code": outcome.code, "message": outcome.message}, "outcome": outcome.model_dump(mode="json")}
        )
    if outcome.status == "failed":
        return JSONResponse(
            status_code=503,
            content={"error": {"code": outcome.code, "message": outcome.message}, "outcome": outcome.model_dump(mode="json")}
        )
    status_code = 201 if outcome.status == "created" else 200
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json"))
