"""
Duplicate review routes.
"""
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.api.deps import get_session, require_admin
from leadrouter.schemas.person import DuplicateFlagResponse, MergeRequest, PersonResponse
from leadrouter.services.person_service import PersonService

router = APIRouter(prefix="/api/admin/duplicates", tags=["duplicates"], dependencies=[Depends(require_admin)])


@router.get("/", response_model=List[DuplicateFlagResponse])
async def list_duplicates(
    status: str = Query("open", pattern="^(open|resolved)$"),
    session: AsyncSession = Depends(get_session)
):
    return await PersonService(session).list_duplicate_flags(status)


@router.post("/merge", response_model=PersonResponse)
async def merge_duplicates(request: MergeRequest, session: AsyncSession = Depends(get_session)):
    """Fold duplicates into the primary record and archive them."""
    async with session.begin():
        person = await PersonService(session).merge_people(request.primary_person_id, request.duplicate_person_ids)
    return person
