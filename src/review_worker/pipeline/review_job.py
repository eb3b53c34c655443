"""Review jobs: from a pull request revision to a published review and check run."""

import asyncio
import logging
from dataclasses import dataclass

from review_worker.ai.gateway import AIGateway
from review_worker.github.client import GitHubClient, GitHubClientFactory
from review_worker.models.diff import FileDiff
from review_worker.models.execution import OperationType
from review_worker.models.findings import ReviewComment
from review_worker.models.job import Job
from review_worker.models.settings import ResolvedSettings
from review_worker.orchestrator.orchestrator import AgentOrchestrator
from review_worker.orchestrator.verifier import CommentVerifier, Rejection
from review_worker.pipeline.collector import ExecutionCollector
from review_worker.pipeline.context import RepoContextBuilder
from review_worker.pipeline.formatting import (
    build_annotations,
    build_check_summary,
    build_final_description,
    build_suppressed_section,
    check_run_conclusion,
    needs_description,
    prepare_review_comments,
)
from review_worker.pipeline.generation import generate_description
from review_worker.pipeline.history import ExecutionHistoryStore
from review_worker.pipeline.notify import EventPublisher, NotifyResult, best_effort

logger = logging.getLogger(__name__)

COMPLETED_TITLE = "AI Review Completed"
CRASHED_TITLE = "Review Crashed"
CRASHED_SUMMARY = (
    "The AI reviewer encountered an internal error while processing this review.\n\n"
    "See logs for details."
)
CANCELLED_TITLE = "Review Interrupted"
CANCELLED_SUMMARY = "The worker shut down before this review finished. It will be retried."
FALLBACK_COMMENT = (
    "⚠️ The AI review could not be completed due to an internal error. Please try again later."
)


@dataclass
class ReviewOutcome:
    """What a review job ended up doing."""

    conclusion: str
    comments_posted: int = 0
    comments_suppressed: int = 0
    review_posted: bool = False


class ReviewJobHandler:
    """Runs the review pipeline for one job."""

    def __init__(
        self,
        github_factory: GitHubClientFactory,
        gateway: AIGateway,
        orchestrator: AgentOrchestrator,
        verifier: CommentVerifier | None = None,
        context_builder: RepoContextBuilder | None = None,
        events: EventPublisher | None = None,
        history_store: ExecutionHistoryStore | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            github_factory: Source of per-installation GitHub clients
            gateway: AI gateway for the auxiliary operations
            orchestrator: Multi-agent orchestrator
            verifier: Comment verifier (defaults to one on ``gateway``)
            context_builder: Repository context builder; None reviews diffs only
            events: Event publisher for live progress
            history_store: Where finalized execution histories are kept
        """
        self.github_factory = github_factory
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.verifier = verifier or CommentVerifier(gateway)
        self.context_builder = context_builder
        self.events = events or EventPublisher()
        self.history_store = history_store

    async def handle(self, job: Job, settings: ResolvedSettings) -> ReviewOutcome:
        """Review one pull request revision.

        Once the check run exists, any failure concludes it as failed; on
        the final attempt a plain comment is also left on the pull request.
        The error is then re-raised so the queue can retry.

        Args:
            job: Review job
            settings: Resolved repository settings

        Returns:
            ReviewOutcome describing what was published
        """
        repo_name = job.repository_full_name
        github = await self.github_factory.for_installation(job.installation_id)

        if not settings.enabled:
            logger.info(f"Reviews disabled for {repo_name}#{job.pr_number}")
            skipped_run_id = await github.create_check_run(repo_name, job.head_sha)
            await github.update_check_run(
                repo_name,
                skipped_run_id,
                "skipped",
                "Reviews Disabled",
                "Automated reviews are disabled for this repository.",
            )
            return ReviewOutcome(conclusion="skipped")

        await self.events.publish(job.id, f"Starting review for {repo_name}#{job.pr_number}")
        check_run_id: int | None = None
        try:
            check_run_id = await github.create_check_run(repo_name, job.head_sha)

            diffs = await github.get_pr_diff(repo_name, job.pr_number)
            diffs = [diff for diff in diffs if not settings.should_exclude(diff.filename)]
            if not diffs:
                await self.events.publish(job.id, f"No reviewable changes for {repo_name}#{job.pr_number}")
                await github.update_check_run(
                    repo_name,
                    check_run_id,
                    "skipped",
                    "No Changes",
                    "No reviewable changes found in this PR (all files excluded).",
                )
                return ReviewOutcome(conclusion="skipped")

            collector = ExecutionCollector(
                execution_mode=settings.agent_execution_mode.value,
                preferred_model=settings.preferred_model,
                files_analyzed=len(diffs),
            )
            outcome = await self._review(github, job, settings, diffs, collector, check_run_id)
        except asyncio.CancelledError:
            logger.warning(f"Review job {job.id} was cancelled")
            if check_run_id is not None:
                cancelled_check_run = check_run_id
                await best_effort(
                    f"Marking check run {cancelled_check_run} as cancelled",
                    lambda: github.update_check_run(
                        repo_name, cancelled_check_run, "cancelled", CANCELLED_TITLE, CANCELLED_SUMMARY
                    ),
                )
            raise
        except Exception as e:
            logger.error(f"Error processing review job {job.id}: {e}")
            if check_run_id is not None:
                failed_check_run = check_run_id
                await best_effort(
                    f"Marking check run {failed_check_run} as failed",
                    lambda: github.update_check_run(
                        repo_name, failed_check_run, "failure", CRASHED_TITLE, CRASHED_SUMMARY
                    ),
                )
            if job.is_final_attempt:
                await best_effort(
                    "Posting fallback comment",
                    lambda: github.post_fallback_comment(repo_name, job.pr_number, FALLBACK_COMMENT),
                )
            await self.events.publish(job.id, f"Review failed: {e}", level="error")
            raise

        await self._save_history(job, collector)
        await self.events.publish(job.id, f"Review published for {repo_name}#{job.pr_number}")
        return outcome

    async def _review(
        self,
        github: GitHubClient,
        job: Job,
        settings: ResolvedSettings,
        diffs: list[FileDiff],
        collector: ExecutionCollector,
        check_run_id: int,
    ) -> ReviewOutcome:
        repo_name = job.repository_full_name

        await self._update_description(github, job, settings, diffs, collector)

        extra_context: dict[str, str] = {}
        if self.context_builder is not None:
            extra_context = await self.context_builder.build(
                github,
                repo_name,
                job.id,
                diffs,
                revision=job.head_sha or None,
                custom_prompt=settings.custom_prompts.context_selection_prompt,
                preferred_model=settings.preferred_model,
                collector=collector,
            )
        else:
            collector.skip_operation(OperationType.CONTEXT_SELECTION, "Repository context disabled")

        existing_signatures = await github.get_existing_review_signatures(repo_name, job.pr_number)

        await self.events.publish(job.id, f"Running review agents on {len(diffs)} files")
        result = await self.orchestrator.review(
            diffs,
            extra_context,
            preferred_model=settings.preferred_model,
            execution_mode=settings.agent_execution_mode,
            collector=collector,
        )

        eligible = [c for c in result.comments if settings.meets_threshold(c.severity)]
        below_threshold = [c for c in result.comments if not settings.meets_threshold(c.severity)]

        approved: list[ReviewComment] = eligible
        rejected: list[Rejection] = []
        if settings.verify_comments and eligible:
            verification = await self.verifier.verify(
                diffs, eligible, preferred_model=settings.preferred_model, collector=collector
            )
            approved = verification.approved
            rejected = verification.rejected
        elif not settings.verify_comments:
            collector.skip_operation(OperationType.COMMENT_VERIFICATION, "Verification disabled")

        new_comments = prepare_review_comments(diffs, approved, existing_signatures)
        collector.set_comment_stats(result.raw_comment_count, len(result.comments), len(new_comments))
        logger.info(f"Parsed {len(result.comments)} comments, {len(new_comments)} are new.")

        suppressed = build_suppressed_section(rejected, below_threshold, diffs)
        review_body = f"{result.summary}\n\n{suppressed}" if suppressed else result.summary
        review_posted = await github.post_review(
            repo_name, job.pr_number, job.head_sha, review_body, new_comments
        )

        conclusion = check_run_conclusion(approved)
        await github.update_check_run(
            repo_name,
            check_run_id,
            conclusion,
            COMPLETED_TITLE,
            build_check_summary(approved, result.summary),
            build_annotations(new_comments),
        )

        return ReviewOutcome(
            conclusion=conclusion,
            comments_posted=len(new_comments),
            comments_suppressed=len(rejected) + len(below_threshold),
            review_posted=review_posted,
        )

    async def _update_description(
        self,
        github: GitHubClient,
        job: Job,
        settings: ResolvedSettings,
        diffs: list[FileDiff],
        collector: ExecutionCollector,
    ) -> NotifyResult:
        """Generate and attach a description when the pull request lacks one."""

        async def update() -> None:
            body = job.pr_body
            if body is None:
                body = await github.get_pr_body(job.repository_full_name, job.pr_number)
            if not needs_description(body):
                collector.skip_operation(
                    OperationType.DESCRIPTION_GENERATION, "Pull request already has a description"
                )
                return

            generated = await generate_description(
                self.gateway,
                diffs,
                custom_prompt=settings.custom_prompts.description_prompt,
                preferred_model=settings.preferred_model,
                collector=collector,
            )
            new_body = build_final_description(body, generated)
            if new_body != body:
                await github.update_pr_body(job.repository_full_name, job.pr_number, new_body)
                logger.info(f"Updated PR description for {job.repository_full_name}#{job.pr_number}")

        return await best_effort("Generating PR description", update)

    async def _save_history(self, job: Job, collector: ExecutionCollector) -> NotifyResult:
        history = collector.finalize()
        if self.history_store is None:
            return NotifyResult.OK
        return await best_effort(
            "Saving execution history", lambda: self.history_store.save(job.id, history)
        )
