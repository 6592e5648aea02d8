"""
Idempotency ledger repository.
"""
import uuid
from typing import Optional, List, Set
from datetime import datetime, timedelta

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func

from leadrouter.models.processed_email import ProcessedEmail
from leadrouter.repositories.base import BaseRepository


class ProcessedEmailRepository(BaseRepository[ProcessedEmail]):
    """Repository for ProcessedEmail operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProcessedEmail, session)

    async def get_by_message_id(self, message_id: str) -> Optional[ProcessedEmail]:
        """Get the ledger row for a message id."""
        query = select(ProcessedEmail).where(ProcessedEmail.message_id == message_id)
        result = await self.session.exec(query)
        return result.first()

    async def get_processed_ids(self, message_ids: List[str]) -> Set[str]:
        """Subset of the given ids already in the ledger."""
        if not message_ids:
            return set()
        query = select(ProcessedEmail.message_id).where(ProcessedEmail.message_id.in_(message_ids))
        result = await self.session.exec(query)
        return set(result.all())

    async def list_recent(self, limit: int = 50) -> List[ProcessedEmail]:
        query = select(ProcessedEmail).order_by(ProcessedEmail.processed_at.desc()).limit(limit)
        result = await self.session.exec(query)
        return list(result.all())

    async def record(
        self,
        message_id: str,
        outcome: str,
        person_id: Optional[uuid.UUID] = None,
        agent_id: Optional[uuid.UUID] = None,
        source_kind: str = "email",
        reason: Optional[str] = None,
        confidence: Optional[float] = None,
        sender: Optional[str] = None,
        classification: Optional[dict] = None
    ) -> ProcessedEmail:
        """
        Append a ledger row.
        A concurrent insert of the same message id fails on the unique constraint.
        """
        row = ProcessedEmail(
            message_id=message_id,
            outcome=outcome,
            person_id=person_id,
            agent_id=agent_id,
            source_kind=source_kind,
            reason=reason,
            confidence=confidence,
            sender=sender,
            classification=classification or {}
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_stats(self, since_hours: int = 24) -> dict:
        """Outcome counts for the processing dashboard."""
        since = datetime.utcnow() - timedelta(hours=since_hours)
        query = select(ProcessedEmail.outcome, func.count()).where(
            ProcessedEmail.processed_at >= since
        ).group_by(ProcessedEmail.outcome)
        result = await self.session.exec(query)
        by_outcome = {outcome: count for outcome, count in result.all()}
        return {
            "since_hours": since_hours,
            "total": sum(by_outcome.values()),
            "by_outcome": by_outcome
        }
