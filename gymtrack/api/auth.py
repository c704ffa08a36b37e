"""
Short-lived access tokens for the live gym snapshot endpoint.

Internal callers exchange INTERNAL_API_SECRET for a token that expires after
ACCESS_TOKEN_TTL_SEC; tokens live in process memory only.
"""

import hmac
import secrets
import threading
import time
from typing import Dict, Optional

from ..util.logging import logger


class TokenStore:
    """In-memory token registry with expiry."""

    def __init__(self, ttl_sec: int = 60, clock=time.monotonic):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._tokens: Dict[str, float] = {}
        self._lock = threading.Lock()

    def cleanup(self):
        """Drop expired tokens."""
        now = self._clock()
        with self._lock:
            for token, expires_at in list(self._tokens.items()):
                if expires_at <= now:
                    del self._tokens[token]

    def issue(self) -> str:
        token = secrets.token_hex(24)
        with self._lock:
            self._tokens[token] = self._clock() + self.ttl_sec
        return token

    def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        self.cleanup()
        with self._lock:
            expires_at = self._tokens.get(token)
        return expires_at is not None and self._clock() < expires_at


def secret_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time secret comparison; a missing value never matches."""
    if not provided or not expected:
        return False
    matches = hmac.compare_digest(provided.encode(), expected.encode())
    if not matches:
        logger.warning("Internal API secret mismatch")
    return matches
