"""JSON value cache on Redis with key prefixes, tag invalidation and metrics."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import redis

_CONNECT_TIMEOUT_SECONDS = 5.0


class CacheError(Exception):
    """Raised when a cache operation fails."""


class CacheKeyNotFoundError(CacheError):
    """Raised when a requested key is not in the cache."""

    def __init__(self, key: str = "") -> None:
        super().__init__("cache key not found")
        self.key = key


@dataclass
class WarmupKey:
    """A value to preload into the cache, with its lifetime and tags."""

    key: str
    value: Any
    ttl: timedelta | float | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CacheMetrics:
    """A snapshot of cache operation counters."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    total_ops: int = 0
    hit_rate: float = 0.0
    average_time: timedelta = timedelta(0)


def _meta(name: str, validate: str = "") -> dict[str, Any]:
    return {"yaml": name, "validate": validate, "inline": False}


@dataclass
class CacheConfig:
    """Redis connection settings for the cache; timeouts are in seconds, 0 means default."""

    addr: str = field(default="", metadata=_meta("addr", "required"))
    password: str = field(default="", metadata=_meta("password"))
    db: int = field(default=0, metadata=_meta("db"))
    key_prefix: str = field(default="", metadata=_meta("key_prefix"))
    dial_timeout: float = field(default=0.0, metadata=_meta("dial_timeout"))
    read_timeout: float = field(default=0.0, metadata=_meta("read_timeout"))
    write_timeout: float = field(default=0.0, metadata=_meta("write_timeout"))
    pool_size: int = field(default=0, metadata=_meta("pool_size"))
    min_idle_conns: int = field(default=0, metadata=_meta("min_idle_conns"))


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, 6379
    try:
        return host or "localhost", int(port)
    except ValueError:
        raise CacheError(f"invalid redis address: {addr}") from None


def _connect(config: CacheConfig) -> redis.Redis:
    host, port = _split_addr(config.addr)
    password = config.password or None
    return redis.Redis(
        host=host,
        port=port,
        password=password,
        db=config.db,
        socket_connect_timeout=config.dial_timeout or _CONNECT_TIMEOUT_SECONDS,
        socket_timeout=config.read_timeout or None,
        max_connections=config.pool_size or None,
    )


def _ttl_millis(ttl: timedelta | float | None) -> int | None:
    if ttl is None:
        return None
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
    if seconds <= 0:
        return None
    return max(1, int(seconds * 1000))


class _Metrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.ops = 0
        self.total_seconds = 0.0

    def hit(self) -> None:
        with self._lock:
            self.hits += 1

    def miss(self) -> None:
        with self._lock:
            self.misses += 1

    def error(self) -> None:
        with self._lock:
            self.errors += 1

    def observe(self, seconds: float) -> None:
        with self._lock:
            self.ops += 1
            self.total_seconds += seconds

    def snapshot(self) -> CacheMetrics:
        with self._lock:
            lookups = self.hits + self.misses
            return CacheMetrics(
                hits=self.hits,
                misses=self.misses,
                errors=self.errors,
                total_ops=self.ops,
                hit_rate=self.hits / lookups if lookups else 0.0,
                average_time=timedelta(seconds=self.total_seconds / self.ops) if self.ops else timedelta(0),
            )


class RedisCache:
    """A cache storing JSON-encoded values in Redis."""

    def __init__(self, config: CacheConfig, service_name: str = "", client: Any = None) -> None:
        self.service_name = service_name
        self._client = client if client is not None else _connect(config)
        self._key_prefix = config.key_prefix
        self._metrics = _Metrics()
        self._tag_index: dict[str, set[str]] = {}
        self._tag_lock = threading.Lock()
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise CacheError(f"failed to connect to redis: {exc}") from exc

    def _build_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}" if self._key_prefix else key

    @contextmanager
    def _timed(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self._metrics.observe(time.perf_counter() - start)

    def get(self, key: str) -> Any:
        """Return the decoded value stored under ``key``."""
        with self._timed():
            try:
                data = self._client.get(self._build_key(key))
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache get error: {exc}") from exc
            if data is None:
                self._metrics.miss()
                raise CacheKeyNotFoundError(key)
            self._metrics.hit()
            try:
                return json.loads(data)
            except (ValueError, TypeError) as exc:
                self._metrics.error()
                raise CacheError(f"cache unmarshal error: {exc}") from exc

    def set(self, key: str, value: Any, ttl: timedelta | float | None = None) -> None:
        """Store ``value`` as JSON under ``key``; a missing or non-positive ttl never expires."""
        with self._timed():
            try:
                data = json.dumps(value)
            except (TypeError, ValueError) as exc:
                self._metrics.error()
                raise CacheError(f"cache marshal error: {exc}") from exc
            try:
                self._client.set(self._build_key(key), data, px=_ttl_millis(ttl))
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache set error: {exc}") from exc

    def set_with_tags(
        self, key: str, value: Any, ttl: timedelta | float | None, tags: Iterable[str]
    ) -> None:
        """Store a value and record it under each of ``tags``."""
        self.set(key, value, ttl)
        with self._tag_lock:
            for tag in tags:
                self._tag_index.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> None:
        """Remove ``key`` from the cache."""
        with self._timed():
            try:
                self._client.delete(self._build_key(key))
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache delete error: {exc}") from exc

    def delete_pattern(self, pattern: str) -> None:
        """Remove every key matching the glob ``pattern``."""
        with self._timed():
            try:
                keys = self._client.keys(self._build_key(pattern))
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache keys scan error: {exc}") from exc
            if not keys:
                return
            try:
                self._client.delete(*keys)
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache pattern delete error: {exc}") from exc

    def exists(self, key: str) -> bool:
        """Return whether ``key`` is in the cache."""
        with self._timed():
            try:
                count = self._client.exists(self._build_key(key))
            except redis.RedisError as exc:
                self._metrics.error()
                raise CacheError(f"cache exists error: {exc}") from exc
            return count > 0

    def get_metrics(self) -> CacheMetrics:
        """Return a snapshot of the operation counters."""
        return self._metrics.snapshot()

    def warm(self, keys: Iterable[WarmupKey]) -> None:
        """Preload the given entries, stopping at the first failure."""
        for item in keys:
            try:
                self.set_with_tags(item.key, item.value, item.ttl, item.tags)
            except CacheError as exc:
                raise CacheError(f"cache warmup error for key {item.key}: {exc}") from exc

    def invalidate_by_tags(self, tags: Iterable[str]) -> None:
        """Delete every key recorded under any of ``tags`` and forget those tags."""
        to_delete: list[str] = []
        with self._tag_lock:
            for tag in tags:
                keys = self._tag_index.pop(tag, None)
                if keys:
                    to_delete.extend(keys)
        for key in to_delete:
            try:
                self.delete(key)
            except CacheError as exc:
                raise CacheError(f"cache invalidation error for key {key}: {exc}") from exc


@dataclass(frozen=True)
class CacheKeyBuilder:
    """Builds namespaced cache keys for common entities."""

    prefix: str

    def user_key(self, user_id: str) -> str:
        return f"{self.prefix}:user:{user_id}"

    def test_key(self, test_id: str) -> str:
        return f"{self.prefix}:test:{test_id}"

    def user_tests_key(self, user_id: str) -> str:
        return f"{self.prefix}:user:{user_id}:tests"

    def leaderboard_key(self, category: str) -> str:
        return f"{self.prefix}:leaderboard:{category}"

    def stats_key(self, user_id: str, period: str) -> str:
        return f"{self.prefix}:stats:{user_id}:{period}"