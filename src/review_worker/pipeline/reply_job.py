"""Reply jobs: answer follow-ups in review threads the bot started."""

import logging

from review_worker.ai.gateway import AIGateway
from review_worker.github.client import GitHubClientFactory, ThreadComment
from review_worker.models.job import Job
from review_worker.models.settings import ResolvedSettings
from review_worker.pipeline.generation import generate_reply
from review_worker.pipeline.notify import EventPublisher, best_effort

logger = logging.getLogger(__name__)

BOT_HISTORY_AUTHOR = "reviewer"
MISSING_DIFF_CONTEXT = "Diff context not available"


def build_thread(comments: list[ThreadComment], comment_id: int) -> list[ThreadComment]:
    """The thread ending at ``comment_id``, root first.

    Returns:
        The chain of comments, or an empty list if ``comment_id`` is unknown
    """
    by_id = {comment.id: comment for comment in comments}
    thread: list[ThreadComment] = []
    seen: set[int] = set()
    current = by_id.get(comment_id)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        thread.append(current)
        current = by_id.get(current.in_reply_to_id) if current.in_reply_to_id else None
    thread.reverse()
    return thread


class ReplyJobHandler:
    """Posts the bot's answer to a developer's reply."""

    def __init__(
        self,
        github_factory: GitHubClientFactory,
        gateway: AIGateway,
        events: EventPublisher | None = None,
    ) -> None:
        self.github_factory = github_factory
        self.gateway = gateway
        self.events = events or EventPublisher()

    async def handle(self, job: Job, settings: ResolvedSettings) -> bool:
        """Reply in the thread of ``job.comment_id``.

        Unknown comments and threads started by someone else are no-ops.

        Args:
            job: Reply job
            settings: Resolved repository settings

        Returns:
            True if a reply was posted
        """
        repo_name = job.repository_full_name
        comment_id = job.comment_id
        github = await self.github_factory.for_installation(job.installation_id)
        logger.info(f"Checking thread for comment {comment_id} in {repo_name}#{job.pr_number}")

        bot_login = await self.github_factory.bot_login()
        comments = await github.list_review_comments(repo_name, job.pr_number)
        thread = build_thread(comments, comment_id)
        if not thread:
            logger.warning(f"Comment {comment_id} not found")
            return False

        root = thread[0]
        if root.author != bot_login:
            logger.info(f"Skipping: thread was not started by the bot (started by {root.author})")
            return False

        await best_effort(
            f"Adding reaction to comment {comment_id}",
            lambda: github.create_reaction(repo_name, job.pr_number, comment_id, "eyes"),
        )

        await self.events.publish(job.id, f"Preparing a response for thread {root.id}")
        history = [
            (BOT_HISTORY_AUTHOR if comment.author == bot_login else comment.author, comment.body)
            for comment in thread
        ]
        target = thread[-1]
        diffs = await github.get_pr_diff(repo_name, job.pr_number)
        patch = next((diff.patch for diff in diffs if diff.filename == target.path), None)

        reply = await generate_reply(
            self.gateway,
            history,
            target.path,
            patch or MISSING_DIFF_CONTEXT,
            custom_prompt=settings.custom_prompts.reply_prompt,
            preferred_model=settings.preferred_model,
        )
        await github.create_reply(repo_name, job.pr_number, comment_id, reply)
        await self.events.publish(job.id, f"Replied to comment {comment_id}")
        return True
