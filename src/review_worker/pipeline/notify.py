"""Best-effort side effects: things that must never fail a job."""

import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from review_worker.models.execution import utc_now_iso

logger = logging.getLogger(__name__)

EVENTS_CHANNEL_PREFIX = "review-worker:events"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class NotifyResult(Enum):
    """Outcome of a best-effort operation."""

    OK = "ok"
    DEGRADED = "degraded"


async def best_effort(description: str, action: Callable[[], Awaitable[Any]]) -> NotifyResult:
    """Run ``action`` and turn any failure into a logged ``DEGRADED`` result.

    Args:
        description: What the action does, for the log line
        action: Zero-argument coroutine function

    Returns:
        NotifyResult.OK, or NotifyResult.DEGRADED if the action raised
    """
    try:
        await action()
    except Exception as e:
        logger.warning(f"{description} failed: {e}")
        return NotifyResult.DEGRADED
    return NotifyResult.OK


def events_channel(job_id: str) -> str:
    return f"{EVENTS_CHANNEL_PREFIX}:{job_id}"


class EventPublisher:
    """Publishes pipeline progress to a per-job Redis pub/sub channel."""

    def __init__(self, redis: Redis | None = None) -> None:
        self.redis = redis

    async def publish(
        self, job_id: str, message: str, level: str = "info", **fields: Any
    ) -> NotifyResult:
        """Publish one event; logging it locally happens regardless.

        Returns:
            NotifyResult.DEGRADED when the event could not be published
        """
        logger.log(_LEVELS.get(level, logging.INFO), f"[{job_id}] {message}")
        if self.redis is None:
            return NotifyResult.OK

        payload = json.dumps(
            {"job_id": job_id, "level": level, "message": message, "timestamp": utc_now_iso(), **fields}
        )
        return await best_effort(
            f"Publishing event for {job_id}",
            lambda: self.redis.publish(events_channel(job_id), payload),
        )
