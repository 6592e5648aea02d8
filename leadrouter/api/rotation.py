"""
Rotation admin routes.
"""
import uuid
from typing import List
from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.api.deps import get_session, require_admin
from leadrouter.schemas.common import MessageResponse
from leadrouter.schemas.rotation import RotationEntryCreate, RotationEntryUpdate, RotationEntryResponse
from leadrouter.services.rotation_service import RotationEngine

router = APIRouter(prefix="/api/admin/rotation", tags=["rotation"], dependencies=[Depends(require_admin)])


@router.get("/", response_model=List[RotationEntryResponse])
async def list_entries(session: AsyncSession = Depends(get_session)):
    """All entries in turn order."""
    return await RotationEngine(session).list_entries()


@router.get("/next")
async def peek_next(session: AsyncSession = Depends(get_session)):
    """Agent the next lead would go to."""
    agent_id = await RotationEngine(session).peek_next()
    return {"agent_id": str(agent_id) if agent_id else None}


@router.post("/", response_model=RotationEntryResponse, status_code=201)
async def add_entry(data: RotationEntryCreate, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        entry = await RotationEngine(session).add_entry(data)
    return entry


@router.patch("/{agent_id}", response_model=RotationEntryResponse)
async def update_entry(
    agent_id: uuid.UUID,
    data: RotationEntryUpdate,
    session: AsyncSession = Depends(get_session)
):
    """Activate, deactivate or re-prioritize an agent."""
    async with session.begin():
        entry = await RotationEngine(session).update_entry(agent_id, data)
    return entry


@router.delete("/{agent_id}", response_model=MessageResponse)
async def remove_entry(agent_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        await RotationEngine(session).remove_entry(agent_id)
    return MessageResponse(message="Agent removed from rotation")
