"""GitHub API client for pull request operations."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from github import Auth, Github
from github.GithubException import GithubException
from github.PullRequest import PullRequest
from github.Repository import Repository

from review_worker.github.app import GitHubAppAuth
from review_worker.models.diff import FileDiff, FileStatus
from review_worker.models.findings import ReviewComment, Side

logger = logging.getLogger(__name__)

CHECK_RUN_NAME = "AI Review"
MAX_INLINE_COMMENTS = 40
MAX_ANNOTATIONS_PER_UPDATE = 50
MAX_PATCH_CHARS = 100_000

SKIPPED_PATH_PARTS = ("dist/", "build/", "node_modules/")


@dataclass
class ThreadComment:
    """A pull request review comment, reduced to what thread handling needs."""

    id: int
    body: str
    author: str
    path: str
    line: int | None = None
    in_reply_to_id: int | None = None


def is_reviewable_file(filename: str, status: str, patch: str | None) -> bool:
    """Whether a changed file should be sent to review at all."""
    if status == "removed" or not patch:
        return False
    if filename.endswith(".lock") or any(part in filename for part in SKIPPED_PATH_PARTS):
        return False
    return len(patch) <= MAX_PATCH_CHARS


def review_comment_signature(path: str, line: int | None, body: str) -> str:
    """Dedup key for a posted inline comment."""
    return f"{path}:{line}:{body.strip()}"


def _optional_int(value: Any) -> int | None:
    # PyGithub may return NotSet, None or 0 for non-replies
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number or None


class GitHubClient:
    """Client for the GitHub operations a review job needs.

    PyGithub is synchronous, so every public method runs its calls in a
    worker thread.
    """

    def __init__(self, token: str, base_url: str | None = None) -> None:
        """Initialize the GitHub client.

        Args:
            token: Installation token or personal access token
            base_url: Optional base URL for GitHub Enterprise
        """
        self._token = token
        self._base_url = base_url
        if base_url:
            self._gh = Github(auth=Auth.Token(token), base_url=base_url)
        else:
            self._gh = Github(auth=Auth.Token(token))

    @property
    def token(self) -> str:
        return self._token

    def get_repo(self, repo_name: str) -> Repository:
        """Get a repository by name.

        Args:
            repo_name: Repository in "owner/name" format

        Returns:
            Repository object
        """
        return self._gh.get_repo(repo_name)

    def get_pull_request(self, repo_name: str, pr_number: int) -> PullRequest:
        return self.get_repo(repo_name).get_pull(pr_number)

    async def get_pr_diff(self, repo_name: str, pr_number: int) -> list[FileDiff]:
        """Per-file patches of a pull request, skipping files not worth reviewing.

        Removed files, lock files, build output, vendored dependencies and
        oversized patches are dropped.
        """

        def fetch() -> list[FileDiff]:
            diffs = []
            for file in self.get_pull_request(repo_name, pr_number).get_files():
                if not is_reviewable_file(file.filename, file.status, file.patch):
                    continue
                diffs.append(
                    FileDiff(
                        filename=file.filename,
                        patch=file.patch,
                        status=FileStatus.parse(file.status),
                    )
                )
            return diffs

        return await asyncio.to_thread(fetch)

    async def list_review_comments(self, repo_name: str, pr_number: int) -> list[ThreadComment]:
        """All inline review comments on a pull request."""

        def fetch() -> list[ThreadComment]:
            comments = []
            for comment in self.get_pull_request(repo_name, pr_number).get_review_comments():
                comments.append(
                    ThreadComment(
                        id=comment.id,
                        body=comment.body or "",
                        author=comment.user.login if comment.user else "",
                        path=comment.path,
                        line=_optional_int(comment.line),
                        in_reply_to_id=_optional_int(getattr(comment, "in_reply_to_id", None)),
                    )
                )
            return comments

        return await asyncio.to_thread(fetch)

    async def get_existing_review_signatures(self, repo_name: str, pr_number: int) -> set[str]:
        """Signatures of inline comments already on the pull request."""
        comments = await self.list_review_comments(repo_name, pr_number)
        return {
            review_comment_signature(c.path, c.line, c.body)
            for c in comments
            if c.path and c.line and c.body
        }

    async def post_review(
        self,
        repo_name: str,
        pr_number: int,
        head_sha: str,
        summary: str,
        comments: list[ReviewComment],
    ) -> bool:
        """Publish a review with inline comments.

        At most ``MAX_INLINE_COMMENTS`` comments are attached. When GitHub
        rejects the review, the body is posted as an issue comment instead.

        Args:
            repo_name: Repository in "owner/name" format
            pr_number: Pull request number
            head_sha: Commit the comments refer to
            summary: Review body
            comments: Anchored comments with formatted bodies

        Returns:
            True if the review was posted, False if the fallback comment was used
        """
        inline: list[dict[str, Any]] = []
        unanchored: list[str] = []
        for comment in comments:
            if comment.line is None:
                unanchored.append(
                    f"- **{comment.filename}**: {comment.body} (Snippet not found in diff context)"
                )
                continue
            entry: dict[str, Any] = {
                "path": comment.filename,
                "body": comment.body,
                "line": comment.line,
                "side": (comment.side or Side.RIGHT).value,
            }
            if comment.start_line is not None:
                entry["start_line"] = comment.start_line
                entry["start_side"] = (comment.start_side or comment.side or Side.RIGHT).value
            inline.append(entry)

        body = summary
        if unanchored:
            body += "\n\n### ⚠️ General Comments (Context missing)\n" + "\n".join(unanchored)

        if not inline and not body:
            return True

        if len(inline) > MAX_INLINE_COMMENTS:
            logger.warning(
                f"Review has {len(inline)} inline comments, posting the first {MAX_INLINE_COMMENTS}"
            )

        def create() -> None:
            repo = self.get_repo(repo_name)
            pr = repo.get_pull(pr_number)
            pr.create_review(
                commit=repo.get_commit(head_sha),
                body=body,
                event="COMMENT",
                comments=inline[:MAX_INLINE_COMMENTS],
            )

        logger.info(f"Posting review to {repo_name}#{pr_number} with {len(inline)} inline comments")
        try:
            await asyncio.to_thread(create)
        except GithubException as e:
            logger.error(f"Failed to post review to {repo_name}#{pr_number}: {e}")
            await self.post_fallback_comment(
                repo_name, pr_number, f"## Automated Review Failed to Post Inline\n\n{body}"
            )
            return False
        return True

    async def post_fallback_comment(self, repo_name: str, pr_number: int, message: str) -> None:
        """Post a plain issue comment on the pull request."""

        def create() -> None:
            self.get_pull_request(repo_name, pr_number).create_issue_comment(message)

        await asyncio.to_thread(create)
        logger.info(f"Posted issue comment on {repo_name}#{pr_number}")

    async def create_check_run(self, repo_name: str, head_sha: str) -> int:
        """Create an in-progress check run and return its id."""

        def create() -> int:
            check_run = self.get_repo(repo_name).create_check_run(
                name=CHECK_RUN_NAME,
                head_sha=head_sha,
                status="in_progress",
                started_at=datetime.now(timezone.utc),
            )
            return check_run.id

        return await asyncio.to_thread(create)

    async def update_check_run(
        self,
        repo_name: str,
        check_run_id: int,
        conclusion: str,
        title: str,
        summary: str,
        annotations: list[dict[str, Any]] | None = None,
    ) -> None:
        """Complete a check run, sending annotations in batches GitHub accepts.

        Every batch carries the same title and summary; only the last one
        marks the run completed.
        """
        annotations = annotations or []
        batches = [
            annotations[i : i + MAX_ANNOTATIONS_PER_UPDATE]
            for i in range(0, len(annotations), MAX_ANNOTATIONS_PER_UPDATE)
        ] or [[]]

        def update() -> None:
            check_run = self.get_repo(repo_name).get_check_run(check_run_id)
            for index, batch in enumerate(batches):
                output: dict[str, Any] = {"title": title, "summary": summary}
                if batch:
                    output["annotations"] = batch
                if index == len(batches) - 1:
                    check_run.edit(
                        status="completed",
                        conclusion=conclusion,
                        completed_at=datetime.now(timezone.utc),
                        output=output,
                    )
                else:
                    check_run.edit(output=output)

        await asyncio.to_thread(update)

    async def create_reaction(
        self, repo_name: str, pr_number: int, comment_id: int, content: str
    ) -> None:
        def create() -> None:
            pr = self.get_pull_request(repo_name, pr_number)
            pr.get_review_comment(comment_id).create_reaction(content)

        await asyncio.to_thread(create)

    async def create_reply(self, repo_name: str, pr_number: int, comment_id: int, body: str) -> None:
        """Reply in the thread of an inline review comment."""

        def create() -> None:
            self.get_pull_request(repo_name, pr_number).create_review_comment_reply(comment_id, body)

        await asyncio.to_thread(create)

    async def get_pr_body(self, repo_name: str, pr_number: int) -> str | None:
        def fetch() -> str | None:
            return self.get_pull_request(repo_name, pr_number).body

        return await asyncio.to_thread(fetch)

    async def update_pr_body(self, repo_name: str, pr_number: int, body: str) -> None:
        def update() -> None:
            self.get_pull_request(repo_name, pr_number).edit(body=body)

        await asyncio.to_thread(update)


class GitHubClientFactory:
    """Builds per-installation clients from app credentials or a fixed token."""

    def __init__(
        self,
        app_auth: GitHubAppAuth | None = None,
        token: str | None = None,
        base_url: str | None = None,
        bot_login: str | None = None,
    ) -> None:
        """Initialize the factory.

        Args:
            app_auth: GitHub App credentials (preferred)
            token: Fixed token used when no app is configured
            base_url: Optional base URL for GitHub Enterprise
            bot_login: Login of the bot user when not running as an app
        """
        if app_auth is None and not token:
            raise ValueError("Either GitHub App credentials or a token is required")
        self.app_auth = app_auth
        self._token = token
        self.base_url = base_url
        self._bot_login = bot_login

    async def for_installation(self, installation_id: int) -> GitHubClient:
        if self.app_auth is None:
            return GitHubClient(self._token or "", base_url=self.base_url)
        token = await asyncio.to_thread(self.app_auth.get_installation_token, installation_id)
        return GitHubClient(token, base_url=self.base_url)

    async def bot_login(self) -> str:
        """Login used by the bot's own comments."""
        if self._bot_login:
            return self._bot_login
        if self.app_auth is None:
            raise ValueError("bot_login must be configured when not running as a GitHub App")
        slug = await asyncio.to_thread(self.app_auth.get_app_slug)
        self._bot_login = f"{slug}[bot]"
        return self._bot_login
