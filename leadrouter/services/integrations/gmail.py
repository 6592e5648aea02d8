"""
Gmail mailbox client.
Talks to the Gmail REST API and Google's OAuth token endpoint over httpx.
"""
import base64
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from urllib.parse import urlencode

import httpx

from leadrouter.config import settings
from leadrouter.core.exceptions import UpstreamUnavailable, TokenInvalid
from leadrouter.schemas.lead import AttachmentRef
from leadrouter.schemas.mailbox import MessageRef, RawMessage, NewToken
from leadrouter.services.integrations.base import MailboxClient

logger = logging.getLogger(__name__)


def _decode_body(data: Optional[str]) -> str:
    """Gmail bodies are base64url without padding."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _extract_text(payload: Dict[str, Any]) -> str:
    """Prefer text/plain, fall back to text/html, walking nested parts."""
    mime_type = payload.get("mimeType", "")
    body = payload.get("body", {})
    if mime_type == "text/plain" and body.get("data"):
        return _decode_body(body["data"])

    parts = payload.get("parts") or []
    for part in parts:
        if part.get("mimeType") == "text/plain" and part.get("body", {}).get("data"):
            return _decode_body(part["body"]["data"])
    for part in parts:
        text = _extract_text(part)
        if text:
            return text

    if body.get("data"):
        return _decode_body(body["data"])
    return ""


def _extract_attachments(payload: Dict[str, Any]) -> List[AttachmentRef]:
    attachments = []
    for part in payload.get("parts") or []:
        if part.get("filename") and part.get("body", {}).get("attachmentId"):
            attachments.append(AttachmentRef(
                filename=part["filename"],
                size=part["body"].get("size", 0),
                mime_type=part.get("mimeType")
            ))
        attachments.extend(_extract_attachments(part))
    return attachments


class GmailMailboxClient(MailboxClient):
    """
    Gmail implementation of MailboxClient.
    Every call uses a bounded timeout; transport errors surface as
    UpstreamUnavailable so the caller can retry on the next trigger.
    """

    API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    SCOPES = [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        redirect_uri: str = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.client_id = client_id or settings.GMAIL_CLIENT_ID
        self.client_secret = client_secret or settings.GMAIL_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.GMAIL_REDIRECT_URI
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Gmail request failed: {method} {url}: {e}")
            raise UpstreamUnavailable("Gmail", str(e))

    async def _get_json(self, access_token: str, path: str, params: dict = None) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            f"{self.API_URL}{path}",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.status_code == 401:
            raise TokenInvalid("Gmail access token")
        if response.status_code >= 400:
            raise UpstreamUnavailable("Gmail", f"HTTP {response.status_code}")
        return response.json()

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def list_recent_messages(self, access_token: str, max_results: int = 20) -> List[MessageRef]:
        data = await self._get_json(access_token, "/messages", {"maxResults": max_results, "labelIds": "INBOX"})
        return [
            MessageRef(id=item["id"], thread_id=item.get("threadId"))
            for item in data.get("messages", [])
        ]

    async def get_message(self, access_token: str, message_id: str) -> RawMessage:
        data = await self._get_json(access_token, f"/messages/{message_id}", {"format": "full"})
        payload = data.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        return RawMessage(
            id=data["id"],
            thread_id=data.get("threadId"),
            sender=headers.get("from", ""),
            to=headers.get("to"),
            subject=headers.get("subject", ""),
            body=_extract_text(payload) or data.get("snippet", ""),
            date=headers.get("date"),
            attachments=_extract_attachments(payload)
        )

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    async def validate_token(self, access_token: str) -> bool:
        response = await self._request(
            "GET",
            f"{self.API_URL}/profile",
            headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.status_code == 200:
            return True
        if response.status_code in (401, 403):
            return False
        raise UpstreamUnavailable("Gmail", f"HTTP {response.status_code}")

    async def refresh_token(self, refresh_token: str) -> NewToken:
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret
        })
        return self._to_token(data)

    async def get_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> NewToken:
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret
        })
        token = self._to_token(data)
        try:
            profile = await self._get_json(token.access_token, "/profile")
            token.mailbox_email = profile.get("emailAddress")
        except (TokenInvalid, UpstreamUnavailable) as e:
            logger.warning(f"Could not read mailbox address after code exchange: {e.message}")
        return token

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            self.TOKEN_URL,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        if response.status_code in (400, 401):
            # invalid_grant: revoked or expired refresh token, or a reused code
            raise TokenInvalid("Gmail refresh token", response.text)
        if response.status_code >= 400:
            raise UpstreamUnavailable("Google OAuth", f"HTTP {response.status_code}")
        return response.json()

    @staticmethod
    def _to_token(data: Dict[str, Any]) -> NewToken:
        expires_in = data.get("expires_in")
        return NewToken(
            access_token=data["access_token"],
            expires_at=datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
            refresh_token=data.get("refresh_token")
        )


# Provider factory
_mailbox_client: Optional[MailboxClient] = None


def get_mailbox_client() -> MailboxClient:
    """Get the configured mailbox client."""
    global _mailbox_client
    if _mailbox_client is None:
        _mailbox_client = GmailMailboxClient()
    return _mailbox_client


def set_mailbox_client(client: Optional[MailboxClient]):
    """Set a custom mailbox client (None restores the default)."""
    global _mailbox_client
    _mailbox_client = client
