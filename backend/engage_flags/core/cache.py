"""
Process-wide cache for flag definitions.

Payloads are stored as JSON text so the memory and redis backends behave the
same way. Only definitions go through here; overrides are always read fresh,
and a definition write drops every cached copy of that key.
"""

from __future__ import annotations

import json
import logging
import os
import time
from hashlib import sha1
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder

from engage_flags.core.config import settings
from engage_flags.core.metrics import (
    record_cache_hit,
    record_cache_key_count,
    record_cache_miss,
    record_cache_set,
)


logger = logging.getLogger(__name__)

DISABLED_BACKENDS = frozenset({"none", "disabled", "off"})


class CacheBackend(Protocol):
    backend_name: str

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, ttl: int) -> None:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...

    def count_keys(self) -> int:
        ...


class InMemoryCache:
    backend_name = "memory"

    def __init__(self) -> None:
        # key -> (monotonic deadline, payload)
        self._entries: dict[str, tuple[float, str]] = {}

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        deadline, payload = entry
        if time.monotonic() >= deadline:
            del self._entries[key]
            return None
        return payload

    def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (time.monotonic() + ttl, value)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def count_keys(self) -> int:
        return len(self._entries)


class NullCache:
    backend_name = "none"

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl: int) -> None:
        return None

    def delete_prefix(self, prefix: str) -> int:
        return 0

    def count_keys(self) -> int:
        return 0


class RedisCache:
    backend_name = "redis"

    def __init__(self, url: str) -> None:
        import redis  # optional dependency, installed with the redis extra

        self._client = redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self._client.setex(key, ttl, value)

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self._client.scan_iter(match=f"{prefix}*"))
        if keys:
            self._client.delete(*keys)
        return len(keys)

    def count_keys(self) -> int:
        return sum(1 for _ in self._client.scan_iter(match=f"{settings.CACHE_NAMESPACE}:*"))


def _backend_name() -> str:
    configured = os.getenv("CACHE_BACKEND")
    if configured is None and os.getenv("PYTEST_CURRENT_TEST"):
        # Tests opt in to caching explicitly.
        return "none"
    return (configured or settings.CACHE_BACKEND or "memory").strip().lower()


def _build_backend(name: str) -> CacheBackend:
    if name in DISABLED_BACKENDS:
        return NullCache()
    if name == "redis":
        if settings.REDIS_URL:
            return RedisCache(settings.REDIS_URL)
        logger.warning("cache.redis_url_missing", extra={"fallback": InMemoryCache.backend_name})
    return InMemoryCache()


def _encode(value: Any) -> str | None:
    try:
        return json.dumps(jsonable_encoder(value), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        logger.warning("cache.encode_failed", exc_info=True)
        return None


def _decode(payload: str) -> Any | None:
    try:
        return json.loads(payload)
    except ValueError:
        return None


_BACKEND: CacheBackend | None = None
_SERVICE: CacheService | None = None


def _shared_backend() -> CacheBackend:
    global _BACKEND
    if _BACKEND is None:
        _BACKEND = _build_backend(_backend_name())
    return _BACKEND


class CacheService:
    """JSON encoding, TTL policy and cache metrics over one backend."""

    def __init__(
        self,
        *,
        backend: CacheBackend | None = None,
        default_ttl: int | None = None,
    ) -> None:
        self._backend = backend
        self._default_ttl = default_ttl

    @property
    def backend(self) -> CacheBackend:
        return self._backend or _shared_backend()

    def _report_size(self) -> None:
        backend = self.backend
        record_cache_key_count(backend.backend_name, backend.count_keys())

    def get(self, key: str, *, cache_name: str = "default") -> Any | None:
        payload = self.backend.get(key)
        value = None if payload is None else _decode(payload)
        if value is None:
            record_cache_miss(cache_name)
        else:
            record_cache_hit(cache_name)
        return value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        cache_name: str = "default",
    ) -> None:
        if ttl is None:
            ttl = settings.FLAG_CACHE_TTL_SECONDS if self._default_ttl is None else self._default_ttl
        # Zero switches caching off rather than meaning "no expiry".
        if ttl <= 0:
            return
        payload = _encode(value)
        if payload is None:
            return
        self.backend.set(key, payload, ttl)
        record_cache_set(cache_name, len(payload))
        self._report_size()

    def delete_prefix(self, prefix: str) -> int:
        removed = self.backend.delete_prefix(prefix)
        self._report_size()
        return removed


def get_cache_service() -> CacheService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = CacheService()
    return _SERVICE


def reset_cache_backend() -> None:
    """Forget the configured backend so the next call re-reads CACHE_BACKEND."""
    global _BACKEND, _SERVICE
    _BACKEND = None
    _SERVICE = None


def cache_get(key: str, *, cache_name: str = "default") -> Any | None:
    return get_cache_service().get(key, cache_name=cache_name)


def cache_set(key: str, value: Any, *, cache_name: str = "default") -> None:
    get_cache_service().set(key, value, cache_name=cache_name)


def db_scope_id(db) -> str:
    # Short stable id for the database a session is bound to.
    url = db.get_bind().engine.url
    return sha1(str(url).encode("utf-8")).hexdigest()[:12]


def flag_cache_prefix(flag_key: str | None = None) -> str:
    if flag_key is None:
        return f"{settings.CACHE_NAMESPACE}:flag:"
    return f"{settings.CACHE_NAMESPACE}:flag:{flag_key}:"


def build_flag_cache_key(flag_key: str, *, db_scope: str | None = None) -> str:
    # The db scope keeps two databases served by one process (tests,
    # read replicas) from sharing definitions.
    return f"{flag_cache_prefix(flag_key)}{db_scope or 'default'}"


def invalidate_flag_cache(flag_key: str | None = None) -> int:
    """
    Drop cached flag definitions, for one key or all of them.

    Called on every definition write so the next evaluation rereads the row.
    """
    return get_cache_service().delete_prefix(flag_cache_prefix(flag_key))
