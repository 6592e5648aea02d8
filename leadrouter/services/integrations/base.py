"""
Base interfaces for integration providers.
Abstract base classes for the mailbox provider and the lead classifier.
"""
from abc import ABC, abstractmethod
from typing import List

from leadrouter.schemas.lead import ClassifierResult
from leadrouter.schemas.mailbox import MessageRef, RawMessage, NewToken


class MailboxClient(ABC):
    """
    Base interface for mailbox providers (Gmail, etc.)
    Implementations raise UpstreamUnavailable when the provider cannot be
    reached and TokenInvalid when it rejects a credential.
    """

    @abstractmethod
    async def list_recent_messages(self, access_token: str, max_results: int = 20) -> List[MessageRef]:
        """List the newest messages in the inbox."""
        pass

    @abstractmethod
    async def get_message(self, access_token: str, message_id: str) -> RawMessage:
        """Fetch one message decoded to plain text."""
        pass

    @abstractmethod
    async def validate_token(self, access_token: str) -> bool:
        """Check the token with the provider; False when the access token is rejected."""
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> NewToken:
        """
        Exchange a refresh token for a new access token.

        Raises:
            TokenInvalid: the provider rejected the refresh token
            UpstreamUnavailable: the provider could not be reached
        """
        pass

    @abstractmethod
    async def get_authorization_url(self, state: str) -> str:
        """Consent screen URL for connecting a mailbox."""
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> NewToken:
        """Exchange an authorization code for the initial token pair."""
        pass


class LeadClassifier(ABC):
    """Base interface for lead classifiers (OpenAI, rules, etc.)"""

    @abstractmethod
    async def classify(self, message: RawMessage) -> ClassifierResult:
        """
        Decide whether a message is a lead and extract its contact fields.

        Returns:
            ClassifierResult with is_lead, confidence (0..1) and lead_data
        """
        pass
