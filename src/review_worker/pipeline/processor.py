"""Entry point for queued jobs."""

import logging
from collections.abc import Callable

from review_worker.models.job import Job, JobKind
from review_worker.models.settings import RepositorySettings, resolve_settings
from review_worker.pipeline.reply_job import ReplyJobHandler
from review_worker.pipeline.review_job import ReviewJobHandler, ReviewOutcome
from review_worker.repo_cache.provisioner import InvalidRepositoryNameError, validate_repo_name

logger = logging.getLogger(__name__)

SettingsLookup = Callable[[str], RepositorySettings | None]


class JobValidationError(ValueError):
    """Raised for jobs missing the fields their kind requires."""


def validate_job(job: Job) -> None:
    """Check the fields a job needs before any side effect happens.

    Raises:
        JobValidationError: If a required field is missing or malformed
    """
    if not job.repository_full_name:
        raise JobValidationError("Missing repository_full_name")
    try:
        validate_repo_name(job.repository_full_name)
    except InvalidRepositoryNameError as e:
        raise JobValidationError(str(e)) from e
    if "/" not in job.repository_full_name:
        raise JobValidationError(f"Repository must be owner/name: {job.repository_full_name}")
    if job.pr_number <= 0:
        raise JobValidationError(f"Invalid pull request number: {job.pr_number}")
    if job.kind is JobKind.REVIEW and not job.head_sha:
        raise JobValidationError("Missing head_sha for review job")
    if job.kind is JobKind.REPLY and not job.comment_id:
        raise JobValidationError("Missing comment_id for reply job")


class JobProcessor:
    """Validates a job, resolves its settings and hands it to the right handler."""

    def __init__(
        self,
        review_handler: ReviewJobHandler,
        reply_handler: ReplyJobHandler,
        settings_lookup: SettingsLookup | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            review_handler: Handler for review jobs
            reply_handler: Handler for reply jobs
            settings_lookup: Returns a repository's overrides (None for defaults)
        """
        self.review_handler = review_handler
        self.reply_handler = reply_handler
        self.settings_lookup = settings_lookup or (lambda _: None)

    async def process(self, job: Job) -> ReviewOutcome | bool:
        """Run one job to completion.

        Raises:
            JobValidationError: For malformed jobs
            Exception: Whatever the handler raised; the queue decides on retries
        """
        validate_job(job)
        settings = resolve_settings(self.settings_lookup(job.repository_full_name))
        logger.info(
            f"Processing {job.kind.value} job {job.id} "
            f"(attempt {job.attempts_made + 1}/{job.max_attempts})"
        )
        if job.kind is JobKind.REPLY:
            return await self.reply_handler.handle(job, settings)
        return await self.review_handler.handle(job, settings)
