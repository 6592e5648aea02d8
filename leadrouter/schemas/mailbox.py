"""
Mailbox provider schemas.
"""
import uuid
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel

from leadrouter.schemas.lead import AttachmentRef


class MessageRef(BaseModel):
    """Entry of a message listing."""
    id: str
    thread_id: Optional[str] = None


class RawMessage(BaseModel):
    """A fetched message, decoded to plain text."""
    id: str
    thread_id: Optional[str] = None
    sender: str = ""
    to: Optional[str] = None
    subject: str = ""
    body: str = ""
    date: Optional[str] = None
    attachments: List[AttachmentRef] = []


class NewToken(BaseModel):
    """Result of a successful refresh or code exchange."""
    access_token: str
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    mailbox_email: Optional[str] = None


class MailboxTokenResponse(BaseModel):
    """Token status (secrets omitted)."""
    id: uuid.UUID
    agent_id: uuid.UUID
    mailbox_email: Optional[str]
    is_active: bool
    expires_at: Optional[datetime]
    last_polled_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str
