"""
Person lifecycle routes.
"""
import uuid
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.api.deps import get_session, require_admin
from leadrouter.schemas.common import MessageResponse
from leadrouter.schemas.person import PersonResponse, ActivityResponse, StatusUpdate, ReassignRequest
from leadrouter.services.person_service import PersonService

router = APIRouter(prefix="/api/people", tags=["people"], dependencies=[Depends(require_admin)])


@router.get("/{person_id}", response_model=PersonResponse)
async def get_person(person_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    return await PersonService(session).get(person_id)


@router.get("/{person_id}/activities", response_model=List[ActivityResponse])
async def get_activities(
    person_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_session)
):
    return await PersonService(session).get_activities(person_id, limit)


@router.post("/{person_id}/status", response_model=PersonResponse)
async def change_status(
    person_id: uuid.UUID,
    update: StatusUpdate,
    session: AsyncSession = Depends(get_session)
):
    async with session.begin():
        person = await PersonService(session).change_status(person_id, update.status.value, update.actor)
    return person


@router.post("/{person_id}/archive", response_model=PersonResponse)
async def archive_person(person_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        person = await PersonService(session).archive(person_id)
    return person


@router.post("/{person_id}/assign", response_model=PersonResponse)
async def assign_person(person_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Give a staging lead to the next agent in the rotation."""
    async with session.begin():
        person = await PersonService(session).assign_from_rotation(person_id)
    return person


@router.post("/{person_id}/reassign", response_model=PersonResponse)
async def reassign_person(
    person_id: uuid.UUID,
    request: ReassignRequest,
    session: AsyncSession = Depends(get_session)
):
    async with session.begin():
        person = await PersonService(session).reassign(person_id, request.agent_id, request.actor)
    return person


@router.delete("/{person_id}", response_model=MessageResponse)
async def delete_person(person_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Hard delete; staging leads only."""
    async with session.begin():
        await PersonService(session).delete_staging(person_id)
    return MessageResponse(message="Lead deleted")
