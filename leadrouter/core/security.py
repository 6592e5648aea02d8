"""
Security utilities for the lead router.
Webhook signatures, shared-secret checks and signed OAuth state.
"""
from datetime import datetime, timedelta
from typing import Optional
import hashlib
import hmac
import uuid
import secrets

import jwt

from leadrouter.config import settings


def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of a raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a webhook signature header.
    Accepts both the bare hex digest and the "sha256=<hex>" form.
    """
    if not secret or not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(compute_signature(body, secret), signature)


def verify_shared_secret(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison; an unset secret never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_bearer(authorization: Optional[str], expected: str) -> bool:
    """Check an "Authorization: Bearer <token>" header against a configured token."""
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return verify_shared_secret(authorization[len("Bearer "):], expected)


def create_oauth_state(agent_id: uuid.UUID, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create the signed state parameter for a mailbox OAuth grant.

    Args:
        agent_id: Agent connecting the mailbox
        expires_delta: Custom expiration time

    Returns:
        Encoded JWT string
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.OAUTH_STATE_EXPIRE_MINUTES))
    to_encode = {
        "agent_id": str(agent_id),
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "oauth_state",
        "jti": str(uuid.uuid4())
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_oauth_state(state: str) -> Optional[uuid.UUID]:
    """
    Decode a state parameter.

    Returns:
        Agent id if the state is valid, unexpired and of the right type, None otherwise
    """
    try:
        payload = jwt.decode(state, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "oauth_state":
        return None
    try:
        return uuid.UUID(payload["agent_id"])
    except (KeyError, ValueError):
        return None


def generate_secure_token(length: int = 32) -> str:
    """Generate a secure random token for pixel API keys and lease holders."""
    return secrets.token_urlsafe(length)
