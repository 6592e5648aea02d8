"""
Token lifecycle manager - validates, refreshes and deactivates mailbox OAuth tokens.

Provider calls happen outside any transaction. Each row write is its own
short transaction that re-reads the token under a row lock and skips it if
it was deactivated in the meantime.
"""
import uuid
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import sessionmaker

from leadrouter.core.exceptions import UpstreamUnavailable, TokenInvalid
from leadrouter.models.token import MailboxToken
from leadrouter.repositories.token_repo import MailboxTokenRepository
from leadrouter.schemas.mailbox import NewToken
from leadrouter.schemas.pipeline import TokenSweepReport
from leadrouter.services.integrations.base import MailboxClient

logger = logging.getLogger(__name__)

# Per-token sweep results
UNCHANGED = "unchanged"
REFRESHED = "refreshed"
DEACTIVATED = "deactivated"
FAILED = "failed"


class TokenLifecycleManager:
    """Keeps mailbox credentials usable, or retires them."""

    def __init__(self, session_factory: sessionmaker, mailbox_client: MailboxClient):
        self.session_factory = session_factory
        self.mailbox_client = mailbox_client

    async def sweep(self) -> TokenSweepReport:
        """Check every active token once."""
        async with self.session_factory() as session:
            tokens = await MailboxTokenRepository(session).list_active()

        report = TokenSweepReport()
        for token in tokens:
            report.processed += 1
            result = await self._check(token)
            if result == REFRESHED:
                report.refreshed += 1
            elif result == DEACTIVATED:
                report.deactivated += 1
            elif result == FAILED:
                report.failed += 1

        logger.info(
            f"Token sweep: {report.processed} processed, {report.refreshed} refreshed, "
            f"{report.deactivated} deactivated, {report.failed} failed"
        )
        return report

    async def _check(self, token: MailboxToken) -> str:
        if not token.access_token:
            result, _ = await self._refresh(token)
            return result

        try:
            valid = await self.mailbox_client.validate_token(token.access_token)
        except UpstreamUnavailable as e:
            logger.error(f"Could not validate token {token.id} for agent {token.agent_id}: {e.message}")
            return FAILED

        if valid:
            return UNCHANGED
        result, _ = await self._refresh(token)
        return result

    async def _refresh(self, token: MailboxToken) -> Tuple[str, Optional[MailboxToken]]:
        if not token.refresh_token:
            await self._deactivate(token.id, "no refresh token")
            return DEACTIVATED, None

        try:
            new_token = await self.mailbox_client.refresh_token(token.refresh_token)
        except TokenInvalid as e:
            await self._deactivate(token.id, e.message)
            return DEACTIVATED, None
        except UpstreamUnavailable as e:
            logger.error(f"Could not refresh token {token.id} for agent {token.agent_id}: {e.message}")
            return FAILED, None

        async with self.session_factory() as session, session.begin():
            repo = MailboxTokenRepository(session)
            row = await repo.get(token.id, for_update=True)
            if row is None or not row.is_active:
                logger.info(f"Token {token.id} was deactivated during refresh; leaving it")
                return UNCHANGED, None
            row = await repo.update_access_token(
                row, new_token.access_token, new_token.expires_at, new_token.refresh_token
            )
        logger.info(f"Refreshed mailbox token for agent {token.agent_id}")
        return REFRESHED, row

    async def _deactivate(self, token_id: uuid.UUID, reason: str) -> None:
        async with self.session_factory() as session, session.begin():
            repo = MailboxTokenRepository(session)
            row = await repo.get(token_id, for_update=True)
            if row is None or not row.is_active:
                return
            await repo.deactivate(row)
        logger.warning(f"Deactivated mailbox token {token_id}: {reason}")

    async def ensure_fresh(self, token: MailboxToken) -> MailboxToken:
        """
        Return a token usable for polling, refreshing it first when expired.

        Raises:
            TokenInvalid: the token could not be refreshed and is now inactive
            UpstreamUnavailable: the provider could not be reached
        """
        if token.access_token and not token.is_expired:
            return token

        result, row = await self._refresh(token)
        if result == DEACTIVATED:
            raise TokenInvalid("Mailbox token", f"Mailbox token for agent {token.agent_id} could not be refreshed")
        if result == FAILED:
            raise UpstreamUnavailable("Mailbox provider", "token refresh failed")
        if row is None:
            raise TokenInvalid("Mailbox token", f"Mailbox token for agent {token.agent_id} is no longer active")
        return row

    async def grant(self, agent_id: uuid.UUID, new_token: NewToken) -> MailboxToken:
        """Replace all of an agent's tokens with a freshly granted one."""
        async with self.session_factory() as session, session.begin():
            repo = MailboxTokenRepository(session)
            replaced = await repo.deactivate_all_for_agent(agent_id)
            token = await repo.create_token(
                agent_id=agent_id,
                access_token=new_token.access_token,
                refresh_token=new_token.refresh_token,
                expires_at=new_token.expires_at,
                mailbox_email=new_token.mailbox_email
            )
        logger.info(f"Mailbox connected for agent {agent_id} ({replaced} previous token(s) deactivated)")
        return token

    async def disconnect(self, agent_id: uuid.UUID) -> int:
        """Deactivate every token of an agent."""
        async with self.session_factory() as session, session.begin():
            count = await MailboxTokenRepository(session).deactivate_all_for_agent(agent_id)
        logger.info(f"Mailbox disconnected for agent {agent_id}")
        return count

    async def get_status(self, agent_id: uuid.UUID) -> Optional[MailboxToken]:
        async with self.session_factory() as session:
            return await MailboxTokenRepository(session).get_active_for_agent(agent_id)
