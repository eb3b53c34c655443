"""Execution history models: per-agent and per-operation AI call accounting."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ExecutionStatus(Enum):
    """Status of an agent or auxiliary operation within a job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


class OperationType(Enum):
    """Auxiliary AI operations tracked alongside the review agents."""

    DESCRIPTION_GENERATION = "description_generation"
    SUMMARY_GENERATION = "summary_generation"
    CONTEXT_SELECTION = "context_selection"
    REPLY_GENERATION = "reply_generation"
    COMMENT_VERIFICATION = "comment_verification"


@dataclass(frozen=True)
class AiAttempt:
    """One call to one model."""

    model: str
    started_at: str
    duration_ms: int
    completed_at: str | None = None
    failed_at: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.completed_at is not None and self.failed_at is None


@dataclass
class AgentExecution:
    """Execution record for one review agent."""

    agent_type: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    attempts: list[AiAttempt] = field(default_factory=list)
    total_duration_ms: int = 0
    successful_model: str | None = None
    error_message: str | None = None
    comments_found: int = 0


@dataclass
class OperationExecution:
    """Execution record for one auxiliary operation."""

    operation_type: OperationType
    status: ExecutionStatus = ExecutionStatus.PENDING
    attempts: list[AiAttempt] = field(default_factory=list)
    total_duration_ms: int = 0
    successful_model: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class ExecutionHistory:
    """Immutable audit record produced when a job's collector is finalized."""

    started_at: str
    completed_at: str
    total_duration_ms: int
    execution_mode: str
    agent_executions: tuple[AgentExecution, ...]
    operations: tuple[OperationExecution, ...]
    total_comments_raw: int
    total_comments_merged: int
    total_comments_posted: int
    total_input_tokens: int
    total_output_tokens: int
    files_analyzed: int
    preferred_model: str | None = None
    incomplete: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON form for storage."""
        data = asdict(self)
        for agent in data["agent_executions"]:
            agent["status"] = agent["status"].value
        for operation in data["operations"]:
            operation["status"] = operation["status"].value
            operation["operation_type"] = operation["operation_type"].value
        data["agent_executions"] = list(data["agent_executions"])
        data["operations"] = list(data["operations"])
        data["incomplete"] = list(data["incomplete"])
        return data
