"""Queue worker: claims jobs and runs them under bounded concurrency."""

import asyncio
import logging

from review_worker.config import WorkerSettings
from review_worker.models.job import BackoffPolicy, Job
from review_worker.pipeline.processor import JobProcessor, JobValidationError
from review_worker.queue import JobQueue
from review_worker.rate_limiter import StartRateLimiter
from review_worker.repo_cache.cleanup import CleanupService

logger = logging.getLogger(__name__)


def job_defaults(settings: WorkerSettings) -> dict:
    """Attempt and backoff settings to apply to newly created jobs."""
    return {
        "max_attempts": settings.max_attempts,
        "backoff": BackoffPolicy(base_delay_seconds=settings.backoff_base_seconds),
    }


class Worker:
    """Pulls jobs from the queue and processes them.

    At most ``concurrency`` jobs run at once and at most
    ``max_starts_per_window`` start per window. ``stop`` stops intake; jobs
    still running after the grace period are cancelled and left in the
    active list for redelivery.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: JobProcessor,
        cleanup_service: CleanupService | None = None,
        settings: WorkerSettings | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Job queue
            processor: Processes a single job
            cleanup_service: Repository cache cleanup (startup, periodic, shutdown)
            settings: Worker settings
        """
        self.queue = queue
        self.processor = processor
        self.cleanup_service = cleanup_service
        self.settings = settings or WorkerSettings()
        self._semaphore = asyncio.Semaphore(self.settings.concurrency)
        self._start_limiter = StartRateLimiter(
            self.settings.max_starts_per_window, self.settings.start_window_seconds
        )
        self._stopping = asyncio.Event()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def in_flight(self) -> list[str]:
        return list(self._in_flight)

    async def startup(self) -> None:
        """Crash recovery before taking new work."""
        if self.cleanup_service:
            result = await self.cleanup_service.cleanup_on_startup()
            logger.info(
                f"Startup cleanup: {result.orphaned_work_trees_cleaned} work trees, "
                f"{result.stale_locks_cleaned} locks, {result.bytes_freed} bytes freed"
            )
            self.cleanup_service.start()
        await self.queue.requeue_active(stale_after_seconds=self.settings.lease_seconds)
        self._heartbeat_task = asyncio.create_task(self._heartbeat())

    async def run(self) -> None:
        """Process jobs until ``stop`` is called."""
        await self.startup()
        logger.info(f"Worker started with concurrency {self.settings.concurrency}")
        try:
            while not self._stopping.is_set():
                if not await self._acquire_slot():
                    break
                try:
                    job = await self._next_job()
                except Exception:
                    self._semaphore.release()
                    raise
                if job is None:
                    self._semaphore.release()
                    continue
                task = asyncio.create_task(self._run_job(job))
                self._in_flight[job.id] = task
        finally:
            await self.shutdown()

    async def _acquire_slot(self) -> bool:
        """Wait for a free slot; False if the worker was stopped first."""
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        stopped = asyncio.ensure_future(self._stopping.wait())
        done, _ = await asyncio.wait({acquire, stopped}, return_when=asyncio.FIRST_COMPLETED)
        if acquire in done:
            stopped.cancel()
            return True
        acquire.cancel()
        try:
            await acquire
        except asyncio.CancelledError:
            return False
        # Acquired just before the cancellation took effect
        self._semaphore.release()
        return False

    async def _next_job(self) -> Job | None:
        delay = self._start_limiter.delay()
        while delay > 0:
            if self._stopping.is_set():
                return None
            await asyncio.sleep(delay)
            delay = self._start_limiter.delay()
        if self._stopping.is_set():
            return None
        return await self.queue.claim(timeout=self.settings.claim_timeout_seconds)

    async def _run_job(self, job: Job) -> None:
        try:
            await self.processor.process(job)
        except JobValidationError as e:
            logger.error(f"Job {job.id} is invalid: {e}")
            await self.queue.fail(job, str(e), retryable=False)
        except Exception as e:
            logger.exception(f"Job {job.id} failed: {e}")
            await self.queue.fail(job, str(e))
        else:
            await self.queue.ack(job)
            logger.info(f"Job {job.id} completed")
        finally:
            self._in_flight.pop(job.id, None)
            self._semaphore.release()

    async def _heartbeat(self) -> None:
        interval = max(1.0, self.settings.lease_seconds / 3)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.touch(self.in_flight)
                # Jobs of workers that died without a restart
                await self.queue.requeue_active(stale_after_seconds=self.settings.lease_seconds)
            except Exception as e:
                logger.warning(f"Failed to renew job leases: {e}")

    def stop(self) -> None:
        """Stop taking new jobs; ``run`` returns after the shutdown sequence."""
        if not self._stopping.is_set():
            logger.info("Stopping worker")
            self._stopping.set()

    async def shutdown(self) -> None:
        """Wait for in-flight jobs, then release the repository cache."""
        self._stopping.set()
        tasks = list(self._in_flight.values())
        if tasks:
            logger.info(f"Waiting up to {self.settings.shutdown_grace_seconds}s for {len(tasks)} jobs")
            _, pending = await asyncio.wait(tasks, timeout=self.settings.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(f"Abandoned {len(pending)} jobs to redelivery")

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None

        if self.cleanup_service:
            await self.cleanup_service.stop()
            await self.cleanup_service.shutdown_cleanup()
        logger.info("Worker stopped")
