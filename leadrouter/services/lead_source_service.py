"""
Lead source service - labels email leads with their origin and manages
lead sources and pixel keys.
"""
import uuid
import logging
from typing import List

from sqlmodel.ext.asyncio.session import AsyncSession

from leadrouter.config import settings
from leadrouter.core.exceptions import NotFoundError
from leadrouter.models.lead_source import LeadSource, PixelApiKey
from leadrouter.repositories.lead_source_repo import LeadSourceRepository, PixelApiKeyRepository
from leadrouter.schemas.lead_source import LeadSourceCreate, LeadSourceMatch, PixelKeyCreate

logger = logging.getLogger(__name__)


def score_source(source: LeadSource, sender: str, subject: str, body: str) -> LeadSourceMatch:
    """
    Score one source against an email.
    Exact address +1.0, "*@domain" wildcard +0.8, domain pattern +0.6,
    keyword in subject or body +0.4; capped at 1.0.
    """
    sender = (sender or "").lower()
    domain = sender.rsplit("@", 1)[1].rstrip(">") if "@" in sender else ""
    text = f"{subject or ''} {body or ''}".lower()

    confidence = 0.0
    reasons = []
    for pattern in source.email_patterns or []:
        pattern = pattern.lower()
        if "*" in pattern:
            pattern_domain = pattern.split("@", 1)[-1]
            if pattern_domain and pattern_domain in sender:
                confidence += 0.8
                reasons.append(f"Email domain matches pattern: {pattern}")
        elif pattern in (sender, sender.strip("<>")) or f"<{pattern}>" in sender:
            confidence += 1.0
            reasons.append(f"Exact email match: {pattern}")

    for pattern in source.domain_patterns or []:
        if domain and pattern.lower() in domain:
            confidence += 0.6
            reasons.append(f"Domain matches pattern: {pattern}")

    for keyword in source.keywords or []:
        if keyword.lower() in text:
            confidence += 0.4
            reasons.append(f"Keyword found: {keyword}")

    return LeadSourceMatch(
        matched=confidence >= settings.LEAD_SOURCE_MATCH_THRESHOLD,
        source_name=source.name,
        confidence=min(confidence, 1.0),
        reasons=reasons
    )


class LeadSourceService:
    """Service for lead source matching and administration."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.source_repo = LeadSourceRepository(session)
        self.pixel_repo = PixelApiKeyRepository(session)

    async def match(self, sender: str, subject: str, body: str) -> LeadSourceMatch:
        """Best-scoring active source for an email."""
        best = LeadSourceMatch(matched=False)
        best_raw = 0.0
        for source in await self.source_repo.get_active():
            result = score_source(source, sender, subject, body)
            # Ties keep the first source in name order
            if result.confidence > best_raw:
                best, best_raw = result, result.confidence
        if not best.matched:
            return LeadSourceMatch(matched=False, confidence=best.confidence, reasons=best.reasons)
        return best

    # Lead sources
    async def list_sources(self) -> List[LeadSource]:
        return await self.source_repo.list(order_by="name", order_desc=False)

    async def create_source(self, data: LeadSourceCreate) -> LeadSource:
        source = await self.source_repo.create(data.model_dump())
        logger.info(f"Lead source '{source.name}' created")
        return source

    async def delete_source(self, source_id: uuid.UUID) -> None:
        if not await self.source_repo.delete(source_id):
            raise NotFoundError("Lead source", str(source_id))

    # Pixel keys
    async def list_pixel_keys(self) -> List[PixelApiKey]:
        return await self.pixel_repo.list()

    async def create_pixel_key(self, data: PixelKeyCreate) -> PixelApiKey:
        key = await self.pixel_repo.create_key(data.name, data.website)
        logger.info(f"Pixel key issued for '{key.name}'")
        return key

    async def deactivate_pixel_key(self, key_id: uuid.UUID) -> PixelApiKey:
        key = await self.pixel_repo.update(key_id, {"is_active": False})
        if key is None:
            raise NotFoundError("Pixel key", str(key_id))
        return key
