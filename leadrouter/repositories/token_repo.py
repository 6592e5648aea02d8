"""
Mailbox token and poll lease repositories.
"""
import uuid
from typing import Optional, List
from datetime import datetime, timedelta

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import update, delete

from leadrouter.models.token import MailboxToken, MailboxPollLease
from leadrouter.repositories.base import BaseRepository


class MailboxTokenRepository(BaseRepository[MailboxToken]):
    """Repository for MailboxToken operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(MailboxToken, session)

    async def list_active(self) -> List[MailboxToken]:
        """All active tokens, oldest first."""
        query = select(MailboxToken).where(
            MailboxToken.is_active == True
        ).order_by(MailboxToken.created_at)
        result = await self.session.exec(query)
        return list(result.all())

    async def get_active_for_agent(self, agent_id: uuid.UUID) -> Optional[MailboxToken]:
        query = select(MailboxToken).where(
            MailboxToken.agent_id == agent_id,
            MailboxToken.is_active == True
        ).order_by(MailboxToken.created_at.desc())
        result = await self.session.exec(query)
        return result.first()

    async def deactivate_all_for_agent(self, agent_id: uuid.UUID) -> int:
        """Deactivate every active token of an agent."""
        statement = (
            update(MailboxToken)
            .where(MailboxToken.agent_id == agent_id, MailboxToken.is_active == True)
            .values(is_active=False, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(statement)
        return result.rowcount

    async def create_token(
        self,
        agent_id: uuid.UUID,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[datetime] = None,
        mailbox_email: Optional[str] = None
    ) -> MailboxToken:
        """Insert a new active token."""
        token = MailboxToken(
            agent_id=agent_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            mailbox_email=mailbox_email
        )
        self.session.add(token)
        await self.session.flush()
        return token

    async def update_access_token(
        self,
        token: MailboxToken,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None
    ) -> MailboxToken:
        """Replace the access token and expiry in place; a rotated refresh token is kept too."""
        token.access_token = access_token
        token.expires_at = expires_at
        if refresh_token:
            token.refresh_token = refresh_token
        token.updated_at = datetime.utcnow()
        self.session.add(token)
        await self.session.flush()
        return token

    async def deactivate(self, token: MailboxToken) -> MailboxToken:
        token.is_active = False
        token.updated_at = datetime.utcnow()
        self.session.add(token)
        await self.session.flush()
        return token

    async def mark_polled(self, token_id: uuid.UUID) -> None:
        token = await self.get(token_id)
        if token:
            token.last_polled_at = datetime.utcnow()
            self.session.add(token)
            await self.session.flush()


class PollLeaseRepository(BaseRepository[MailboxPollLease]):
    """Repository for per-agent mailbox poll leases."""

    def __init__(self, session: AsyncSession):
        super().__init__(MailboxPollLease, session)

    async def acquire(self, agent_id: uuid.UUID, holder: str, ttl_seconds: int) -> bool:
        """
        Take the lease unless someone else holds an unexpired one.
        Two first-time acquirers race on the primary key; the loser's
        transaction fails with an integrity error.
        """
        now = datetime.utcnow()
        query = select(MailboxPollLease).where(
            MailboxPollLease.agent_id == agent_id
        ).with_for_update()
        result = await self.session.exec(query)
        lease = result.first()

        if lease is None:
            self.session.add(MailboxPollLease(
                agent_id=agent_id,
                holder=holder,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds)
            ))
            await self.session.flush()
            return True

        if lease.holder != holder and lease.expires_at > now:
            return False

        lease.holder = holder
        lease.acquired_at = now
        lease.expires_at = now + timedelta(seconds=ttl_seconds)
        self.session.add(lease)
        await self.session.flush()
        return True

    async def renew(self, agent_id: uuid.UUID, holder: str, ttl_seconds: int) -> bool:
        """Push the expiry out if this holder still owns the lease."""
        statement = update(MailboxPollLease).where(
            MailboxPollLease.agent_id == agent_id,
            MailboxPollLease.holder == holder
        ).values(
            expires_at=datetime.utcnow() + timedelta(seconds=ttl_seconds)
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(statement)
        return result.rowcount == 1

    async def release(self, agent_id: uuid.UUID, holder: str) -> bool:
        """Drop the lease if this holder still owns it."""
        statement = delete(MailboxPollLease).where(
            MailboxPollLease.agent_id == agent_id,
            MailboxPollLease.holder == holder
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(statement)
        return result.rowcount == 1
