"""Sliding-window rate limiting on Redis."""

import logging
import random
import time
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Evict, count, admit-or-reject and record in one atomic step
RATE_LIMIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window_start = tonumber(ARGV[2])
local max_requests = tonumber(ARGV[3])
local window_seconds = tonumber(ARGV[4])
local member = ARGV[5]

redis.call('ZREMRANGEBYSCORE', key, 0, window_start)
local count = redis.call('ZCARD', key)

if count >= max_requests then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  local oldest_timestamp = oldest[2] or now
  return {0, 0, tostring(oldest_timestamp)}
end

redis.call('ZADD', key, now, member)
redis.call('EXPIRE', key, window_seconds * 2)

return {1, max_requests - count - 1, tostring(now)}
"""


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    key_prefix: str


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds


async def check_rate_limit(redis: Redis, identifier: str, config: RateLimitConfig) -> RateLimitResult:
    """Admit or reject one request for ``identifier``.

    Store errors admit the request: an unavailable Redis must not block all
    traffic.

    Args:
        redis: Redis client
        identifier: Who is being limited (installation id, client address, ...)
        config: Limit and window

    Returns:
        RateLimitResult; ``reset_at`` is when the window frees up again
    """
    now_ms = int(time.time() * 1000)
    window_ms = config.window_seconds * 1000
    key = f"{config.key_prefix}:{identifier}"
    member = f"{now_ms}:{random.random()}"

    try:
        allowed, remaining, timestamp = await redis.eval(
            RATE_LIMIT_SCRIPT,
            1,
            key,
            now_ms,
            now_ms - window_ms,
            config.max_requests,
            config.window_seconds,
            member,
        )
    except RedisError as e:
        logger.error(f"Rate limiter Redis error for {identifier}, allowing request: {e}")
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests,
            reset_at=(now_ms + window_ms) / 1000,
        )

    allowed = int(allowed) == 1
    reset_ms = (now_ms if allowed else float(timestamp)) + window_ms
    return RateLimitResult(allowed=allowed, remaining=int(remaining), reset_at=reset_ms / 1000)


class StartRateLimiter:
    """In-process limit on how many jobs may start per time window."""

    def __init__(self, max_starts: int = 10, window_seconds: float = 1.0) -> None:
        self.max_starts = max_starts
        self.window_seconds = window_seconds
        self._starts: list[float] = []

    def delay(self, now: float | None = None) -> float:
        """Seconds to wait before the next start is allowed (0 if allowed now).

        A start is recorded whenever the returned delay is 0.
        """
        now = time.monotonic() if now is None else now
        self._starts = [t for t in self._starts if now - t < self.window_seconds]
        if len(self._starts) < self.max_starts:
            self._starts.append(now)
            return 0.0
        return self.window_seconds - (now - self._starts[0])
