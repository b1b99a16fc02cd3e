"""
Signed session cookie values.

A cookie is a base64-encoded JSON payload signed with HMAC-SHA256.
The secret comes from ``config.session_secret`` (env var: ``SESSION_SECRET``).
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import logging
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

logger = logging.getLogger(__name__)


def _sign(secret: str, raw: bytes) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_session_token(session_id: str, secret: str, expiry_seconds: int) -> str:
    """Create a signed cookie value carrying ``session_id`` and expiry."""
    payload = {
        "sid": session_id,
        "exp": int(time.time()) + expiry_seconds,
    }
    raw = json.dumps(payload).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(secret, raw)


def verify_session_token(token: str, secret: str) -> Optional[str]:
    """
    Return the session id of a valid cookie value.

    Tampered, malformed or expired values return ``None``; the caller then
    starts a fresh session.
    """
    parts = token.split(".", 1)
    if len(parts) != 2:
        return None
    try:
        raw = urlsafe_b64decode(parts[0].encode())
    except (binascii.Error, ValueError):
        return None
    if not hmac.compare_digest(parts[1], _sign(secret, raw)):
        logger.info("Rejected session cookie with a bad signature")
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        return None
    session_id = payload.get("sid")
    return session_id if isinstance(session_id, str) else None
