"""Redis-backed sliding window limiter shared by every API replica."""

from __future__ import annotations

import math
import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisAttemptLimiter:
    """Attempt limiter stored in Redis sorted sets scored by epoch milliseconds."""

    _RECORD_ATTEMPT: Final[str] = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local max_attempts = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= max_attempts then
        return 0
    end
    local seq = redis.call('INCR', key .. ':seq')
    redis.call('PEXPIRE', key .. ':seq', window_ms)
    redis.call('ZADD', key, now_ms, tostring(now_ms) .. ':' .. tostring(seq))
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        window_seconds: int,
        key_prefix: str = "auth-attempts",
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._RECORD_ATTEMPT)

    def allow(self, key: str) -> bool:
        """Record an attempt for ``key`` unless its window is already full."""
        now_ms = int(time.time() * 1000)
        redis_key = self._redis_key(key)
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_attempts, now_ms])
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command" in message and "eval" in message:
                return self._allow_without_lua(redis_key, now_ms)
            raise

    def retry_after(self, key: str) -> int:
        now_ms = int(time.time() * 1000)
        redis_key = self._redis_key(key)
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) < self._max_attempts:
            return 0
        oldest = self._client.zrange(redis_key, 0, 0, withscores=True)
        if not oldest:
            return 0
        remaining_ms = self._window_ms - (now_ms - int(oldest[0][1]))
        return max(1, math.ceil(remaining_ms / 1000))

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _allow_without_lua(self, redis_key: str, now_ms: int) -> bool:
        """Non-atomic variant for Redis deployments with scripting disabled."""
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_attempts:
            return False
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True
