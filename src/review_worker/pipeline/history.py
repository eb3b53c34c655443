"""Storage for finalized execution histories."""

import json
import logging
from typing import Any

from redis.asyncio import Redis

from review_worker.models.execution import ExecutionHistory

logger = logging.getLogger(__name__)

HISTORY_KEY_PREFIX = "review-worker:history"
HISTORY_TTL_SECONDS = 7 * 24 * 60 * 60


def history_key(job_id: str) -> str:
    return f"{HISTORY_KEY_PREFIX}:{job_id}"


class ExecutionHistoryStore:
    """Keeps each job's execution history in Redis for a week."""

    def __init__(self, redis: Redis, ttl_seconds: int = HISTORY_TTL_SECONDS) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def save(self, job_id: str, history: ExecutionHistory) -> None:
        await self.redis.set(history_key(job_id), json.dumps(history.to_dict()), ex=self.ttl_seconds)
        logger.debug(f"Stored execution history for {job_id}")

    async def get(self, job_id: str) -> dict[str, Any] | None:
        raw = await self.redis.get(history_key(job_id))
        if raw is None:
            return None
        return json.loads(raw)
