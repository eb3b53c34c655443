"""Tests for data models."""

import json

import pytest


class TestSeverity:
    """Tests for Severity."""

    def test_parse_is_case_insensitive(self):
        """Test that labels parse regardless of case and padding."""
        from review_worker.models.findings import Severity

        assert Severity.parse(" critical ") == Severity.CRITICAL
        assert Severity.parse("Low") == Severity.LOW

    def test_parse_legacy_aliases(self):
        """Test that WARNING and INFO map onto HIGH and MEDIUM."""
        from review_worker.models.findings import Severity

        assert Severity.parse("WARNING") == Severity.HIGH
        assert Severity.parse("info") == Severity.MEDIUM

    def test_parse_rejects_unknown_labels(self):
        """Test that an unknown label raises."""
        from review_worker.models.findings import Severity

        with pytest.raises(ValueError):
            Severity.parse("BLOCKER")

    def test_ordering(self):
        """Test that rank and weight order severities consistently."""
        from review_worker.models.findings import Severity

        ordered = sorted(Severity, key=lambda s: s.rank)
        assert ordered == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
        assert [s.weight for s in ordered] == [4, 3, 2, 1]


class TestReviewComment:
    """Tests for ReviewComment."""

    def test_confidence_validation(self):
        """Test that confidence must be between 0 and 1."""
        from review_worker.models.findings import ReviewComment, Severity

        with pytest.raises(ValueError):
            ReviewComment(
                filename="a.py",
                snippet="x = 1",
                body="Test",
                severity=Severity.LOW,
                confidence=1.5,
            )

    def test_anchored_returns_placed_copy(self):
        """Test that anchoring does not modify the original comment."""
        from review_worker.models.findings import LineAnchor, ReviewComment, Severity, Side

        comment = ReviewComment(
            filename="a.py",
            snippet="x = 1",
            body="Original",
            severity=Severity.MEDIUM,
            confidence=0.8,
        )
        placed = comment.anchored(
            LineAnchor(line=12, side=Side.RIGHT, start_line=10, start_side=Side.RIGHT),
            body="Formatted",
        )

        assert not comment.is_anchored
        assert placed.is_anchored
        assert placed.line == 12
        assert placed.start_line == 10
        assert placed.body == "Formatted"
        assert comment.body == "Original"


class TestFileStatus:
    """Tests for FileStatus."""

    def test_unknown_statuses_are_modifications(self):
        """Test that copied and changed files are treated as modified."""
        from review_worker.models.diff import FileStatus

        assert FileStatus.parse("removed") == FileStatus.REMOVED
        assert FileStatus.parse("copied") == FileStatus.MODIFIED
        assert FileStatus.parse("changed") == FileStatus.MODIFIED


class TestResolvedSettings:
    """Tests for settings resolution."""

    def test_defaults_without_overrides(self):
        """Test the defaults used for unconfigured repositories."""
        from review_worker.models.settings import (
            AgentExecutionMode,
            SeverityThreshold,
            resolve_settings,
        )

        settings = resolve_settings(None)

        assert settings.enabled is True
        assert settings.severity_threshold == SeverityThreshold.MEDIUM
        assert settings.agent_execution_mode == AgentExecutionMode.PARALLEL
        assert settings.verify_comments is True
        assert settings.preferred_model == "default"

    def test_overrides_replace_defaults(self):
        """Test that set overrides win and unset ones fall back."""
        from review_worker.models.settings import (
            RepositorySettings,
            SeverityThreshold,
            resolve_settings,
        )

        settings = resolve_settings(
            RepositorySettings(severity_threshold=SeverityThreshold.HIGH, verify_comments=False)
        )

        assert settings.severity_threshold == SeverityThreshold.HIGH
        assert settings.verify_comments is False
        assert settings.excluded_patterns == ()

    def test_disabled_repository_ignores_other_overrides(self):
        """Test that a disabled repository only carries enabled=False."""
        from review_worker.models.settings import (
            RepositorySettings,
            SeverityThreshold,
            resolve_settings,
        )

        settings = resolve_settings(
            RepositorySettings(enabled=False, severity_threshold=SeverityThreshold.LOW)
        )

        assert settings.enabled is False
        assert settings.severity_threshold == SeverityThreshold.MEDIUM

    def test_exclusion_globs(self):
        """Test gitignore-style exclusion patterns."""
        from review_worker.models.settings import RepositorySettings, resolve_settings

        settings = resolve_settings(
            RepositorySettings(excluded_patterns=["**/*.lock", "dist/*", "*.min.js"])
        )

        assert settings.should_exclude("poetry.lock")
        assert settings.should_exclude("frontend/yarn.lock")
        assert settings.should_exclude("dist/bundle.js")
        assert settings.should_exclude("static/app.min.js")
        assert not settings.should_exclude("src/app.py")
        assert not settings.should_exclude("/etc/poetry.lock")

    def test_severity_threshold(self):
        """Test that severities at or above the threshold pass."""
        from review_worker.models.findings import Severity
        from review_worker.models.settings import (
            RepositorySettings,
            SeverityThreshold,
            resolve_settings,
        )

        settings = resolve_settings(RepositorySettings(severity_threshold=SeverityThreshold.HIGH))

        assert settings.meets_threshold(Severity.CRITICAL)
        assert settings.meets_threshold(Severity.HIGH)
        assert not settings.meets_threshold(Severity.MEDIUM)


class TestJob:
    """Tests for queue jobs."""

    def test_review_job_id_is_deterministic(self):
        """Test that the same PR head always produces the same id."""
        from review_worker.models.job import Job, JobKind

        job = Job(
            kind=JobKind.REVIEW,
            repository_full_name="acme/widgets",
            installation_id=7,
            pr_number=42,
            head_sha="abc123",
        )

        assert job.id == "review-acme-widgets-42-abc123"
        assert job.owner == "acme"
        assert job.repo == "widgets"

    def test_reply_job_id_uses_comment(self):
        """Test that reply jobs are keyed by the triggering comment."""
        from review_worker.models.job import Job, JobKind

        job = Job(
            kind=JobKind.REPLY,
            repository_full_name="acme/widgets",
            installation_id=7,
            pr_number=42,
            head_sha="abc123",
            comment_id=99,
        )

        assert job.id == "reply-acme-widgets-42-99"

    def test_is_final_attempt(self):
        """Test that the last allowed attempt is detected."""
        from review_worker.models.job import Job, JobKind

        job = Job(
            kind=JobKind.REVIEW,
            repository_full_name="acme/widgets",
            installation_id=7,
            pr_number=1,
            head_sha="abc",
            max_attempts=3,
        )

        assert not job.is_final_attempt
        job.attempts_made = 2
        assert job.is_final_attempt

    def test_json_preserves_queue_bookkeeping(self):
        """Test that attempts, backoff and errors survive serialization."""
        from review_worker.models.job import BackoffPolicy, Job, JobKind

        job = Job(
            kind=JobKind.REPLY,
            repository_full_name="acme/widgets",
            installation_id=7,
            pr_number=3,
            head_sha="def",
            comment_id=11,
            attempts_made=1,
            backoff=BackoffPolicy(base_delay_seconds=5),
            last_error="boom",
        )

        data = json.loads(job.to_json())
        assert data["kind"] == "reply"

        restored = Job.from_json(job.to_json())
        assert restored == job

    def test_backoff_is_exponential(self):
        """Test backoff delays double after each failure."""
        from review_worker.models.job import BackoffPolicy

        policy = BackoffPolicy(base_delay_seconds=30)

        assert policy.delay_for(0) == 0
        assert policy.delay_for(1) == 30
        assert policy.delay_for(2) == 60
        assert policy.delay_for(3) == 120


class TestExecutionHistory:
    """Tests for ExecutionHistory."""

    def test_to_dict_is_json_serializable(self):
        """Test that enums are flattened for storage."""
        from review_worker.models.execution import (
            AgentExecution,
            ExecutionHistory,
            ExecutionStatus,
            OperationExecution,
            OperationType,
        )

        history = ExecutionHistory(
            started_at="2024-01-01T00:00:00+00:00",
            completed_at="2024-01-01T00:00:05+00:00",
            total_duration_ms=5000,
            execution_mode="parallel",
            agent_executions=(
                AgentExecution(agent_type="security", status=ExecutionStatus.COMPLETED),
            ),
            operations=(
                OperationExecution(
                    operation_type=OperationType.CONTEXT_SELECTION,
                    status=ExecutionStatus.SKIPPED,
                ),
            ),
            total_comments_raw=3,
            total_comments_merged=2,
            total_comments_posted=1,
            total_input_tokens=100,
            total_output_tokens=50,
            files_analyzed=2,
        )

        data = json.loads(json.dumps(history.to_dict()))

        assert data["agent_executions"][0]["status"] == "completed"
        assert data["operations"][0]["operation_type"] == "context_selection"
        assert data["operations"][0]["status"] == "skipped"
        assert data["incomplete"] == []
