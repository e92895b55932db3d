"""Single-use store for OAuth state nonces.

The signed state token carries the nonce; the store remembers each issued
nonce (with its PKCE code verifier) until the callback consumes it, so a
state can be redeemed once. Memory for a single process, Redis when several
workers share callbacks.
"""
from __future__ import annotations
from typing import Protocol, Optional, Dict, Any, List, Callable
import logging
import time

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

NONCE_TTL_SECONDS = 600
MAX_PENDING_NONCES = 500


class StateStore(Protocol):
    def put(self, nonce: str, code_verifier: str, created_at: float) -> None: ...
    def pop(self, nonce: str) -> Optional[Dict[str, Any]]: ...
    def prune(self) -> None: ...
    def size(self) -> int: ...


class MemoryStateStore:
    def __init__(self, ttl_seconds: int = NONCE_TTL_SECONDS, max_entries: int = MAX_PENDING_NONCES,
                 time_provider: Optional[Callable[[], float]] = None):
        self._data: Dict[str, Dict[str, Any]] = {}
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.time_provider = time_provider or time.time

    def put(self, nonce: str, code_verifier: str, created_at: Optional[float] = None) -> None:
        self._data[nonce] = {
            "code_verifier": code_verifier,
            "created_at": self.time_provider() if created_at is None else created_at,
        }
        self.prune()

    def pop(self, nonce: str) -> Optional[Dict[str, Any]]:
        self.prune()
        return self._data.pop(nonce, None)

    def prune(self) -> None:
        now_ts = self.time_provider()
        expired = [k for k, v in self._data.items() if now_ts - v["created_at"] > self.ttl_seconds]
        for k in expired:
            self._data.pop(k, None)
        # oldest first when over capacity
        while len(self._data) > self.max_entries:
            oldest = min(self._data.items(), key=lambda kv: kv[1]["created_at"])[0]
            self._data.pop(oldest, None)

    def size(self) -> int:
        return len(self._data)


class RedisStateStore:
    """Redis-backed nonce store.

    Key layout:
      miniorg:oauth:nonce:<nonce> -> code verifier (TTL applied)
      miniorg:oauth:nonces (sorted set) -> member=nonce, score=created_at

    Expiry is handled by Redis key TTLs; ``prune`` trims the index to
    ``max_entries`` and drops members whose key already expired.
    """
    KEY_PREFIX = "miniorg:oauth:nonce:"
    INDEX_KEY = "miniorg:oauth:nonces"

    def __init__(self, redis_client, ttl_seconds: int = NONCE_TTL_SECONDS, max_entries: int = MAX_PENDING_NONCES):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries

    @staticmethod
    def _text(value) -> str:
        return value.decode() if isinstance(value, bytes) else value

    def put(self, nonce: str, code_verifier: str, created_at: Optional[float] = None) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self.KEY_PREFIX + nonce, code_verifier, ex=self.ttl_seconds)
        pipe.zadd(self.INDEX_KEY, {nonce: created_at if created_at is not None else time.time()})
        pipe.execute()
        self.prune()

    def pop(self, nonce: str) -> Optional[Dict[str, Any]]:
        key = self.KEY_PREFIX + nonce
        pipe = self.redis.pipeline()
        pipe.get(key)
        pipe.delete(key)
        pipe.zrem(self.INDEX_KEY, nonce)
        val, *_ = pipe.execute()
        if val is None:
            return None
        return {"code_verifier": self._text(val)}

    def prune(self) -> None:
        size = self.redis.zcard(self.INDEX_KEY)
        if size and size > self.max_entries:
            oldest: List[bytes] = self.redis.zrange(self.INDEX_KEY, 0, size - self.max_entries - 1) or []
            if oldest:
                pipe = self.redis.pipeline()
                for member in oldest:
                    nonce = self._text(member)
                    pipe.delete(self.KEY_PREFIX + nonce)
                    pipe.zrem(self.INDEX_KEY, nonce)
                pipe.execute()
        members = self.redis.zrange(self.INDEX_KEY, 0, -1) or []
        dangling = [self._text(m) for m in members if not self.redis.exists(self.KEY_PREFIX + self._text(m))]
        if dangling:
            self.redis.zrem(self.INDEX_KEY, *dangling)

    def size(self) -> int:
        return int(self.redis.zcard(self.INDEX_KEY) or 0)


_store: Optional[StateStore] = None


def build_state_store(settings: Optional[Settings] = None) -> StateStore:
    settings = settings or get_settings()
    if settings.oauth_state_backend == "redis":
        import redis

        return RedisStateStore(redis.from_url(settings.redis_url))
    return MemoryStateStore()


def get_state_store() -> StateStore:
    """Process-wide store, created on first use from settings."""
    global _store
    if _store is None:
        _store = build_state_store()
        logger.info("OAuth state store backend: %s", type(_store).__name__)
    return _store


def set_state_store(store: Optional[StateStore]) -> None:
    global _store
    _store = store


def backend_name(store: StateStore) -> str:
    return "redis" if isinstance(store, RedisStateStore) else "memory"
