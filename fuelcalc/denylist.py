"""
Deny-list for logged-out JWTs.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Entries expire together with the token.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

import redis


class TokenDenylist(Protocol):
    """Minimal interface for recording and checking revoked tokens."""

    def add(self, token: str, ttl_seconds: int) -> None:
        ...

    def contains(self, token: str) -> bool:
        ...


@dataclass
class InMemoryTokenDenylist:
    """Dict of token -> expiry timestamp, for testing/dev."""

    items: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, token: str, ttl_seconds: int) -> None:
        with self._lock:
            self.items[token] = time.time() + ttl_seconds

    def contains(self, token: str) -> bool:
        with self._lock:
            expires_at = self.items.get(token)
            if expires_at is None:
                return False
            if expires_at <= time.time():
                del self.items[token]
                return False
            return True


@dataclass
class RedisTokenDenylist:
    """Redis-backed deny-list using SET with an expiry per token."""

    url: str
    key_prefix: str = "fuelcalc."

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, token: str) -> str:
        return f"{self.key_prefix}jwt.{token}"

    def add(self, token: str, ttl_seconds: int) -> None:
        self.client.set(self._key(token), "blacklisted", ex=max(int(ttl_seconds), 1))

    def contains(self, token: str) -> bool:
        return bool(self.client.exists(self._key(token)))
