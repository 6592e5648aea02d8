"""
Lead source and pixel key admin routes.
"""
import uuid
from typing import List
from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.api.deps import get_session, require_admin
from leadrouter.schemas.common import MessageResponse
from leadrouter.schemas.lead_source import (
    LeadSourceCreate, LeadSourceResponse, PixelKeyCreate, PixelKeyResponse
)
from leadrouter.services.lead_source_service import LeadSourceService

router = APIRouter(prefix="/api/admin", tags=["lead-sources"], dependencies=[Depends(require_admin)])


# Lead sources

@router.get("/lead-sources", response_model=List[LeadSourceResponse])
async def list_lead_sources(session: AsyncSession = Depends(get_session)):
    return await LeadSourceService(session).list_sources()


@router.post("/lead-sources", response_model=LeadSourceResponse, status_code=201)
async def create_lead_source(data: LeadSourceCreate, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        source = await LeadSourceService(session).create_source(data)
    return source


@router.delete("/lead-sources/{source_id}", response_model=MessageResponse)
async def delete_lead_source(source_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        await LeadSourceService(session).delete_source(source_id)
    return MessageResponse(message="Lead source deleted")


# Pixel keys

@router.get("/pixel-keys", response_model=List[PixelKeyResponse])
async def list_pixel_keys(session: AsyncSession = Depends(get_session)):
    return await LeadSourceService(session).list_pixel_keys()


@router.post("/pixel-keys", response_model=PixelKeyResponse, status_code=201)
async def create_pixel_key(data: PixelKeyCreate, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        key = await LeadSourceService(session).create_pixel_key(data)
    return key


@router.delete("/pixel-keys/{key_id}", response_model=PixelKeyResponse)
async def deactivate_pixel_key(key_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        key = await LeadSourceService(session).deactivate_pixel_key(key_id)
    return key
