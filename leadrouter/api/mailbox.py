"""
Mailbox connection routes (OAuth grant, callback, disconnect).
"""
import uuid
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from leadrouter.api.deps import get_mailbox, get_token_manager, require_admin
from leadrouter.core.exceptions import UnauthorizedError, NotFoundError
from leadrouter.core.security import create_oauth_state, decode_oauth_state
from leadrouter.schemas.mailbox import AuthUrlResponse, MailboxTokenResponse
from leadrouter.services.integrations.base import MailboxClient
from leadrouter.services.token_service import TokenLifecycleManager

router = APIRouter(prefix="/api/mailbox", tags=["mailbox"])


class DisconnectRequest(BaseModel):
    agent_id: uuid.UUID


@router.get("/auth-url", response_model=AuthUrlResponse, dependencies=[Depends(require_admin)])
async def get_auth_url(
    agent_id: uuid.UUID = Query(...),
    mailbox: MailboxClient = Depends(get_mailbox)
):
    """Consent URL for connecting an agent's mailbox."""
    state = create_oauth_state(agent_id)
    return AuthUrlResponse(auth_url=await mailbox.get_authorization_url(state), state=state)


@router.get("/callback", response_model=MailboxTokenResponse)
async def oauth_callback(
    code: str = Query(...),
    state: str = Query(...),
    mailbox: MailboxClient = Depends(get_mailbox),
    manager: TokenLifecycleManager = Depends(get_token_manager)
):
    """Provider redirect after consent; replaces the agent's previous token."""
    agent_id = decode_oauth_state(state)
    if agent_id is None:
        raise UnauthorizedError("Invalid or expired OAuth state")
    new_token = await mailbox.exchange_code(code)
    return await manager.grant(agent_id, new_token)


@router.get("/status/{agent_id}", response_model=MailboxTokenResponse, dependencies=[Depends(require_admin)])
async def mailbox_status(
    agent_id: uuid.UUID,
    manager: TokenLifecycleManager = Depends(get_token_manager)
):
    token = await manager.get_status(agent_id)
    if token is None:
        raise NotFoundError("Active mailbox token for agent", str(agent_id))
    return token


@router.post("/disconnect", dependencies=[Depends(require_admin)])
async def disconnect(
    request: DisconnectRequest,
    manager: TokenLifecycleManager = Depends(get_token_manager)
):
    """Deactivate the agent's mailbox tokens."""
    count = await manager.disconnect(request.agent_id)
    return {"agent_id": str(request.agent_id), "deactivated": count}
