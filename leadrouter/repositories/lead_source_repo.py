"""
Lead source and pixel key repositories.
"""
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.models.lead_source import LeadSource, PixelApiKey
from leadrouter.repositories.base import BaseRepository
from leadrouter.core.security import generate_secure_token


class LeadSourceRepository(BaseRepository[LeadSource]):
    """Repository for LeadSource operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(LeadSource, session)

    async def get_active(self) -> List[LeadSource]:
        query = select(LeadSource).where(LeadSource.is_active == True).order_by(LeadSource.name)
        result = await self.session.exec(query)
        return list(result.all())


class PixelApiKeyRepository(BaseRepository[PixelApiKey]):
    """Repository for PixelApiKey operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(PixelApiKey, session)

    async def get_active_by_key(self, key: str) -> Optional[PixelApiKey]:
        query = select(PixelApiKey).where(PixelApiKey.key == key, PixelApiKey.is_active == True)
        result = await self.session.exec(query)
        return result.first()

    async def create_key(self, name: str, website: Optional[str] = None) -> PixelApiKey:
        """Issue a new pixel key."""
        return await self.create({
            "key": f"px_{generate_secure_token(24)}",
            "name": name,
            "website": website
        })
