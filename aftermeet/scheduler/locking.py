"""Sweep locks so only one instance runs a given reconciliation sweep at a time.

Two implementations share the ``acquire(name) -> Optional[token]`` /
``release(name, token)`` contract:

- ``LocalSweepLock``: process-local token per sweep name.
- ``RedisSweepLock``: ``SET key token NX EX ttl`` so several API instances can
  share one database without double-sweeping. The TTL bounds how long a crashed
  holder can block the sweep. When Redis is unreachable the lock falls back to
  the local implementation and keeps sweeping.
"""
from __future__ import annotations

import threading
import uuid
from typing import Dict, Optional, Union

import redis

from aftermeet.config import SCHEDULER_SETTINGS
from aftermeet.utils import get_logger

logger = get_logger(__name__)

# Compare-and-delete so a holder never frees a lock that expired and was re-taken.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LocalSweepLock:
    def __init__(self) -> None:
        self._holders: Dict[str, str] = {}
        self._guard = threading.Lock()

    def acquire(self, name: str) -> Optional[str]:
        with self._guard:
            if name in self._holders:
                return None
            token = self._holders[name] = uuid.uuid4().hex
            return token

    def release(self, name: str, token: str) -> bool:
        """Free ``name`` if ``token`` is the one it was issued with; returns whether it was freed."""
        with self._guard:
            if self._holders.get(name) != token:
                return False
            del self._holders[name]
            return True


class RedisSweepLock:
    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._redis_url = str(redis_url or SCHEDULER_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._prefix = str(prefix or SCHEDULER_SETTINGS.get("lock_prefix", "aftermeet:sweep:"))
        self._ttl = int(ttl_seconds or SCHEDULER_SETTINGS.get("lock_ttl_seconds", 300))  # type: ignore[arg-type]
        self._health_check_timeout = float(SCHEDULER_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._fallback = LocalSweepLock()
        self._redis_client: Optional[redis.Redis] = None
        self._is_redis_active = False
        self._init_redis_client()

    def _init_redis_client(self) -> None:
        try:
            self._redis_client = redis.from_url(
                self._redis_url,
                socket_timeout=self._health_check_timeout,
                socket_connect_timeout=self._health_check_timeout,
            )
            self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis for sweep locks", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._is_redis_active = False
            self._redis_client = None
            logger.warning("Failed to connect to Redis, using local sweep locks", error=str(e))

    @property
    def is_redis_active(self) -> bool:
        return self._is_redis_active

    def _key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    def acquire(self, name: str) -> Optional[str]:
        if not self._is_redis_active or self._redis_client is None:
            return self._fallback.acquire(name)
        token = uuid.uuid4().hex
        try:
            acquired = self._redis_client.set(self._key(name), token, nx=True, ex=self._ttl)
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis sweep lock unavailable, falling back to local lock", sweep=name, error=str(e))
            self._is_redis_active = False
            return self._fallback.acquire(name)
        return token if acquired else None

    def release(self, name: str, token: str) -> None:
        # Tokens issued before a switch to the fallback still live in Redis.
        if self._fallback.release(name, token) or self._redis_client is None:
            return
        try:
            self._redis_client.eval(_RELEASE_SCRIPT, 1, self._key(name), token)
        except (redis.RedisError, ConnectionError) as e:
            # The TTL releases it eventually
            logger.warning("Failed to release Redis sweep lock", sweep=name, error=str(e))


SweepLock = Union[LocalSweepLock, RedisSweepLock]


def create_sweep_lock() -> SweepLock:
    """Lock implementation selected by ``SCHEDULER_SETTINGS['use_redis_lock']``."""
    if bool(SCHEDULER_SETTINGS.get("use_redis_lock", False)):
        return RedisSweepLock()
    return LocalSweepLock()


__all__ = ["LocalSweepLock", "RedisSweepLock", "SweepLock", "create_sweep_lock"]
