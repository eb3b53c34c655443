"""Data models for the review worker."""

from review_worker.models.diff import FileDiff, FileStatus
from review_worker.models.execution import (
    AgentExecution,
    AiAttempt,
    ExecutionHistory,
    ExecutionStatus,
    OperationExecution,
    OperationType,
)
from review_worker.models.findings import LineAnchor, ReviewComment, Severity, Side
from review_worker.models.job import BackoffPolicy, Job, JobKind, JobState, make_job_id
from review_worker.models.settings import (
    AgentExecutionMode,
    CustomPrompts,
    RepositorySettings,
    ResolvedSettings,
    SeverityThreshold,
    resolve_settings,
)

__all__ = [
    "AgentExecution",
    "AgentExecutionMode",
    "AiAttempt",
    "BackoffPolicy",
    "CustomPrompts",
    "ExecutionHistory",
    "ExecutionStatus",
    "FileDiff",
    "FileStatus",
    "Job",
    "JobKind",
    "JobState",
    "LineAnchor",
    "OperationExecution",
    "OperationType",
    "RepositorySettings",
    "ResolvedSettings",
    "ReviewComment",
    "Severity",
    "SeverityThreshold",
    "Side",
    "make_job_id",
    "resolve_settings",
]
