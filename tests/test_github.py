"""Tests for GitHub integration."""

from unittest.mock import MagicMock, patch

import pytest


def _client(mock_github):
    from review_worker.github.client import GitHubClient

    client = GitHubClient(token="test-token")
    repo = MagicMock()
    pr = MagicMock()
    mock_github.return_value.get_repo.return_value = repo
    repo.get_pull.return_value = pr
    return client, repo, pr


class TestReviewableFiles:
    """Tests for is_reviewable_file."""

    def test_filters(self):
        """Test which changed files are sent to review."""
        from review_worker.github.client import MAX_PATCH_CHARS, is_reviewable_file

        assert is_reviewable_file("src/app.py", "modified", "@@ -1 +1 @@\n+x")
        assert not is_reviewable_file("src/app.py", "removed", "@@ -1 +0,0 @@\n-x")
        assert not is_reviewable_file("image.png", "added", None)
        assert not is_reviewable_file("poetry.lock", "modified", "@@ +x")
        assert not is_reviewable_file("web/node_modules/lib/index.js", "added", "@@ +x")
        assert not is_reviewable_file("dist/bundle.js", "added", "@@ +x")
        assert not is_reviewable_file("src/big.py", "added", "+" * (MAX_PATCH_CHARS + 1))

    def test_comment_signature(self):
        """Test that signatures ignore surrounding whitespace."""
        from review_worker.github.client import review_comment_signature

        assert review_comment_signature("a.py", 3, " Fix this\n") == "a.py:3:Fix this"


class TestGitHubClient:
    """Tests for GitHub API client."""

    @pytest.mark.asyncio
    async def test_extracts_pr_diff(self):
        """Test extracting per-file diffs from a PR."""
        from review_worker.models.diff import FileStatus

        with patch("review_worker.github.client.Github") as mock_github:
            client, _repo, pr = _client(mock_github)
            pr.get_files.return_value = [
                MagicMock(filename="auth/login.py", patch="@@ -10,6 +10,12 @@\n+new code", status="modified"),
                MagicMock(filename="old.py", patch="@@ -1 +0,0 @@\n-gone", status="removed"),
                MagicMock(filename="package.lock", patch="@@ +x", status="modified"),
            ]

            diffs = await client.get_pr_diff("acme/widgets", 42)

        assert [d.filename for d in diffs] == ["auth/login.py"]
        assert diffs[0].status == FileStatus.MODIFIED
        assert "+new code" in diffs[0].patch

    @pytest.mark.asyncio
    async def test_lists_review_comments(self):
        """Test thread comment conversion."""
        with patch("review_worker.github.client.Github") as mock_github:
            client, _repo, pr = _client(mock_github)
            root = MagicMock(id=1, body="Root", path="a.py", line=4, in_reply_to_id=None)
            root.user.login = "review-bot[bot]"
            reply = MagicMock(id=2, body="Why?", path="a.py", line=None, in_reply_to_id=1)
            reply.user.login = "dev"
            pr.get_review_comments.return_value = [root, reply]

            comments = await client.list_review_comments("acme/widgets", 42)

        assert [(c.id, c.author, c.in_reply_to_id) for c in comments] == [
            (1, "review-bot[bot]", None),
            (2, "dev", 1),
        ]
        assert comments[1].line is None

    @pytest.mark.asyncio
    async def test_existing_review_signatures(self):
        """Test that only anchored comments produce signatures."""
        with patch("review_worker.github.client.Github") as mock_github:
            client, _repo, pr = _client(mock_github)
            anchored = MagicMock(id=1, body="Fix", path="a.py", line=4, in_reply_to_id=None)
            outdated = MagicMock(id=2, body="Old", path="a.py", line=None, in_reply_to_id=None)
            pr.get_review_comments.return_value = [anchored, outdated]

            signatures = await client.get_existing_review_signatures("acme/widgets", 42)

        assert signatures == {"a.py:4:Fix"}

    @pytest.mark.asyncio
    async def test_post_review(self, make_comment):
        """Test inline comments and the general comments section."""
        from review_worker.models.findings import LineAnchor, Side

        multi_line = make_comment(body="Range issue").anchored(
            LineAnchor(line=7, side=Side.RIGHT, start_line=6, start_side=Side.RIGHT)
        )
        single_line = make_comment(body="Deleted line").anchored(
            LineAnchor(line=2, side=Side.LEFT)
        )
        unanchored = make_comment(body="Somewhere")

        with patch("review_worker.github.client.Github") as mock_github:
            client, repo, pr = _client(mock_github)
            posted = await client.post_review(
                "acme/widgets", 42, "abc123", "Summary", [multi_line, single_line, unanchored]
            )

        assert posted
        kwargs = pr.create_review.call_args.kwargs
        assert kwargs["event"] == "COMMENT"
        assert kwargs["commit"] is repo.get_commit.return_value
        repo.get_commit.assert_called_once_with("abc123")
        assert kwargs["comments"] == [
            {
                "path": "auth/login.py",
                "body": "Range issue",
                "line": 7,
                "side": "RIGHT",
                "start_line": 6,
                "start_side": "RIGHT",
            },
            {"path": "auth/login.py", "body": "Deleted line", "line": 2, "side": "LEFT"},
        ]
        assert kwargs["body"].startswith("Summary")
        assert "General Comments" in kwargs["body"]
        assert "**auth/login.py**: Somewhere" in kwargs["body"]

    @pytest.mark.asyncio
    async def test_post_review_caps_inline_comments(self, make_comment):
        """Test that at most the allowed number of inline comments is sent."""
        from review_worker.github.client import MAX_INLINE_COMMENTS
        from review_worker.models.findings import LineAnchor, Side

        comments = [
            make_comment(body=f"Issue {i}").anchored(LineAnchor(line=i + 1, side=Side.RIGHT))
            for i in range(MAX_INLINE_COMMENTS + 5)
        ]

        with patch("review_worker.github.client.Github") as mock_github:
            client, _repo, pr = _client(mock_github)
            await client.post_review("acme/widgets", 42, "abc123", "Summary", comments)

        assert len(pr.create_review.call_args.kwargs["comments"]) == MAX_INLINE_COMMENTS

    @pytest.mark.asyncio
    async def test_post_review_falls_back_to_issue_comment(self, make_comment):
        """Test the fallback when GitHub rejects the review."""
        from github.GithubException import GithubException

        from review_worker.models.findings import LineAnchor, Side

        comment = make_comment().anchored(LineAnchor(line=6, side=Side.RIGHT))

        with patch("review_worker.github.client.Github") as mock_github:
            client, _repo, pr = _client(mock_github)
            pr.create_review.side_effect = GithubException(422, {"message": "Unprocessable"}, None)

            posted = await client.post_review("acme/widgets", 42, "abc123", "Summary", [comment])

        assert not posted
        message = pr.create_issue_comment.call_args.args[0]
        assert message.startswith("## Automated Review Failed to Post Inline")
        assert "Summary" in message

    @pytest.mark.asyncio
    async def test_update_check_run_batches_annotations(self):
        """Test that annotations are sent in batches and only the last completes."""
        from review_worker.github.client import MAX_ANNOTATIONS_PER_UPDATE

        annotations = [
            {"path": "a.py", "start_line": i, "end_line": i, "annotation_level": "notice", "message": "m"}
            for i in range(MAX_ANNOTATIONS_PER_UPDATE + 10)
        ]

        with patch("review_worker.github.client.Github") as mock_github:
            client, repo, _pr = _client(mock_github)
            check_run = repo.get_check_run.return_value

            await client.update_check_run(
                "acme/widgets", 7, "success", "AI Review", "Found issues", annotations
            )

        first, last = check_run.edit.call_args_list
        assert "status" not in first.kwargs
        assert len(first.kwargs["output"]["annotations"]) == MAX_ANNOTATIONS_PER_UPDATE
        assert last.kwargs["status"] == "completed"
        assert last.kwargs["conclusion"] == "success"
        assert len(last.kwargs["output"]["annotations"]) == 10
        assert last.kwargs["output"]["title"] == "AI Review"

    @pytest.mark.asyncio
    async def test_update_check_run_without_annotations(self):
        """Test that a run without annotations is completed in one call."""
        with patch("review_worker.github.client.Github") as mock_github:
            client, repo, _pr = _client(mock_github)
            check_run = repo.get_check_run.return_value

            await client.update_check_run("acme/widgets", 7, "failure", "AI Review", "Failed")

        check_run.edit.assert_called_once()
        assert "annotations" not in check_run.edit.call_args.kwargs["output"]

    @pytest.mark.asyncio
    async def test_create_check_run(self):
        """Test that the check run starts in progress."""
        from review_worker.github.client import CHECK_RUN_NAME

        with patch("review_worker.github.client.Github") as mock_github:
            client, repo, _pr = _client(mock_github)
            repo.create_check_run.return_value.id = 99

            check_run_id = await client.create_check_run("acme/widgets", "abc123")

        assert check_run_id == 99
        kwargs = repo.create_check_run.call_args.kwargs
        assert kwargs["name"] == CHECK_RUN_NAME
        assert kwargs["status"] == "in_progress"


class TestGitHubAppAuth:
    """Tests for GitHubAppAuth."""

    def test_installation_tokens_are_cached(self):
        """Test that a token is only requested once while valid."""
        from review_worker.github.app import GitHubAppAuth

        auth = GitHubAppAuth("123", "unused-key")
        response = MagicMock()
        response.json.return_value = {"token": "ghs_token"}

        with patch.object(GitHubAppAuth, "create_jwt", return_value="app-jwt"), patch(
            "review_worker.github.app.requests.post", return_value=response
        ) as post:
            assert auth.get_installation_token(5) == "ghs_token"
            assert auth.get_installation_token(5) == "ghs_token"

        post.assert_called_once()
        assert post.call_args.args[0] == "https://api.github.com/app/installations/5/access_tokens"
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer app-jwt"

    def test_request_failure(self):
        """Test that HTTP errors become GitHubAppError."""
        import requests

        from review_worker.github.app import GitHubAppAuth, GitHubAppError

        auth = GitHubAppAuth("123", "unused-key")

        with patch.object(GitHubAppAuth, "create_jwt", return_value="app-jwt"), patch(
            "review_worker.github.app.requests.post",
            side_effect=requests.ConnectionError("unreachable"),
        ):
            with pytest.raises(GitHubAppError):
                auth.get_installation_token(5)


class TestGitHubClientFactory:
    """Tests for GitHubClientFactory."""

    def test_requires_credentials(self):
        """Test that a factory needs an app or a token."""
        from review_worker.github.client import GitHubClientFactory

        with pytest.raises(ValueError):
            GitHubClientFactory()

    @pytest.mark.asyncio
    async def test_token_mode(self):
        """Test clients and bot login without an app."""
        from review_worker.github.client import GitHubClientFactory

        factory = GitHubClientFactory(token="pat", bot_login="review-bot")

        client = await factory.for_installation(1)

        assert client.token == "pat"
        assert await factory.bot_login() == "review-bot"

    @pytest.mark.asyncio
    async def test_app_mode(self):
        """Test installation tokens and the derived bot login."""
        from review_worker.github.client import GitHubClientFactory

        app_auth = MagicMock()
        app_auth.get_installation_token.return_value = "ghs_installation"
        app_auth.get_app_slug.return_value = "ai-reviewer"
        factory = GitHubClientFactory(app_auth=app_auth)

        client = await factory.for_installation(9)

        assert client.token == "ghs_installation"
        app_auth.get_installation_token.assert_called_once_with(9)
        assert await factory.bot_login() == "ai-reviewer[bot]"
