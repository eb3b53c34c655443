"""Durable job queue on Redis.

Layout (all keys share ``prefix``):

- ``{prefix}:jobs``      hash, job id -> job JSON
- ``{prefix}:states``    hash, job id -> JobState value
- ``{prefix}:waiting``   list, oldest job at the right
- ``{prefix}:active``    list of claimed job ids
- ``{prefix}:leases``    sorted set, claimed job id -> last heartbeat
- ``{prefix}:delayed``   sorted set, job id -> time it becomes due
- ``{prefix}:completed`` / ``{prefix}:failed``  sorted sets by finish time

Delivery is at least once: a job whose worker disappears stays in the
active list until ``requeue_active`` hands it out again.
"""

import logging
import time

from redis.asyncio import Redis

from review_worker.models.job import Job, JobState

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "review-worker:queue"
DEFAULT_LEASE_SECONDS = 15 * 60
KEEP_COMPLETED = 1000
KEEP_FAILED = 5000


def create_redis_client(url: str) -> Redis:
    """Redis client returning ``str`` values."""
    return Redis.from_url(url, decode_responses=True)


class JobQueue:
    """Enqueue, claim and settle jobs."""

    def __init__(self, redis: Redis, prefix: str = DEFAULT_PREFIX) -> None:
        self.redis = redis
        self.prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    async def enqueue(self, job: Job) -> bool:
        """Add a job unless one with the same id already exists.

        Returns:
            True if the job was added, False for a duplicate
        """
        added = await self.redis.hsetnx(self._key("jobs"), job.id, job.to_json())
        if not added:
            logger.info(f"Job {job.id} already queued, skipping")
            return False
        await self.redis.hset(self._key("states"), job.id, JobState.WAITING.value)
        await self.redis.lpush(self._key("waiting"), job.id)
        logger.info(f"Enqueued job {job.id}")
        return True

    async def promote_delayed(self, now: float | None = None) -> int:
        """Move delayed jobs whose backoff has elapsed back to waiting."""
        now = time.time() if now is None else now
        due = await self.redis.zrangebyscore(self._key("delayed"), "-inf", now)
        promoted = 0
        for job_id in due:
            # Only the caller that removes the entry promotes it
            if await self.redis.zrem(self._key("delayed"), job_id):
                await self.redis.hset(self._key("states"), job_id, JobState.WAITING.value)
                await self.redis.lpush(self._key("waiting"), job_id)
                promoted += 1
        return promoted

    async def claim(self, timeout: float = 1.0) -> Job | None:
        """Take the oldest waiting job, blocking up to ``timeout`` seconds.

        Returns:
            The claimed job, or None if nothing became available
        """
        await self.promote_delayed()
        job_id = await self.redis.blmove(
            self._key("waiting"), self._key("active"), timeout, src="RIGHT", dest="LEFT"
        )
        if job_id is None:
            return None

        raw = await self.redis.hget(self._key("jobs"), job_id)
        if raw is None:
            logger.warning(f"Claimed job {job_id} has no data, dropping it")
            await self.redis.lrem(self._key("active"), 0, job_id)
            return None

        await self.redis.hset(self._key("states"), job_id, JobState.ACTIVE.value)
        await self.redis.zadd(self._key("leases"), {job_id: time.time()})
        return Job.from_json(raw)

    async def touch(self, job_ids: list[str]) -> None:
        """Renew the leases of jobs that are still being processed."""
        if job_ids:
            now = time.time()
            await self.redis.zadd(self._key("leases"), {job_id: now for job_id in job_ids})

    async def _release(self, job_id: str) -> None:
        await self.redis.lrem(self._key("active"), 0, job_id)
        await self.redis.zrem(self._key("leases"), job_id)

    async def ack(self, job: Job) -> None:
        """Mark a claimed job completed."""
        await self._release(job.id)
        await self.redis.hset(self._key("states"), job.id, JobState.COMPLETED.value)
        await self.redis.zadd(self._key("completed"), {job.id: time.time()})
        await self._trim("completed", KEEP_COMPLETED)

    async def fail(self, job: Job, error: str, retryable: bool = True) -> bool:
        """Record a failed attempt and schedule a retry if any are left.

        Args:
            job: The claimed job
            error: Error message kept on the job
            retryable: False fails the job immediately, whatever attempts remain

        Returns:
            True if the job will be retried, False if it is now failed
        """
        job.attempts_made += 1
        job.last_error = error
        await self.redis.hset(self._key("jobs"), job.id, job.to_json())
        await self._release(job.id)

        if retryable and job.attempts_made < job.max_attempts:
            delay = job.backoff.delay_for(job.attempts_made)
            await self.redis.hset(self._key("states"), job.id, JobState.DELAYED.value)
            await self.redis.zadd(self._key("delayed"), {job.id: time.time() + delay})
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts_made}/{job.max_attempts}), "
                f"retrying in {delay:.0f}s: {error}"
            )
            return True

        await self.redis.hset(self._key("states"), job.id, JobState.FAILED.value)
        await self.redis.zadd(self._key("failed"), {job.id: time.time()})
        await self._trim("failed", KEEP_FAILED)
        logger.error(f"Job {job.id} failed permanently after {job.attempts_made} attempts: {error}")
        return False

    async def retry(self, job_id: str) -> bool:
        """Move a failed job back to waiting with a fresh set of attempts.

        Returns:
            True if the job was failed and is now waiting
        """
        if await self.state(job_id) is not JobState.FAILED:
            return False
        job = await self.get(job_id)
        if job is None:
            return False
        job.attempts_made = 0
        job.last_error = None
        await self.redis.hset(self._key("jobs"), job.id, job.to_json())
        await self.redis.zrem(self._key("failed"), job.id)
        await self.redis.hset(self._key("states"), job.id, JobState.WAITING.value)
        await self.redis.lpush(self._key("waiting"), job.id)
        logger.info(f"Job {job_id} moved back to waiting")
        return True

    async def requeue_active(self, stale_after_seconds: float | None = DEFAULT_LEASE_SECONDS) -> int:
        """Hand abandoned active jobs out again.

        Args:
            stale_after_seconds: Only requeue jobs whose lease is older than
                this; None requeues every active job

        Returns:
            Number of jobs moved back to waiting
        """
        now = time.time()
        requeued = 0
        for job_id in await self.redis.lrange(self._key("active"), 0, -1):
            heartbeat = await self.redis.zscore(self._key("leases"), job_id)
            if (
                stale_after_seconds is not None
                and heartbeat is not None
                and now - float(heartbeat) < stale_after_seconds
            ):
                continue
            if not await self.redis.lrem(self._key("active"), 0, job_id):
                continue
            await self.redis.zrem(self._key("leases"), job_id)
            await self.redis.hset(self._key("states"), job_id, JobState.WAITING.value)
            # Redelivered jobs go to the front of the line
            await self.redis.rpush(self._key("waiting"), job_id)
            requeued += 1
        if requeued:
            logger.info(f"Requeued {requeued} abandoned jobs")
        return requeued

    async def get(self, job_id: str) -> Job | None:
        raw = await self.redis.hget(self._key("jobs"), job_id)
        return Job.from_json(raw) if raw is not None else None

    async def state(self, job_id: str) -> JobState | None:
        value = await self.redis.hget(self._key("states"), job_id)
        return JobState(value) if value is not None else None

    async def counts(self) -> dict[str, int]:
        """Number of jobs per state."""
        return {
            JobState.WAITING.value: await self.redis.llen(self._key("waiting")),
            JobState.DELAYED.value: await self.redis.zcard(self._key("delayed")),
            JobState.ACTIVE.value: await self.redis.llen(self._key("active")),
            JobState.COMPLETED.value: await self.redis.zcard(self._key("completed")),
            JobState.FAILED.value: await self.redis.zcard(self._key("failed")),
        }

    async def _trim(self, name: str, keep: int) -> None:
        """Forget the oldest finished jobs beyond ``keep``."""
        key = self._key(name)
        excess = await self.redis.zcard(key) - keep
        if excess <= 0:
            return
        old_ids = await self.redis.zrange(key, 0, excess - 1)
        if old_ids:
            await self.redis.zrem(key, *old_ids)
            await self.redis.hdel(self._key("jobs"), *old_ids)
            await self.redis.hdel(self._key("states"), *old_ids)
