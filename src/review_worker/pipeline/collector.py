"""Collects per-job AI execution accounting into an ExecutionHistory."""

import copy
import logging
import time
from datetime import datetime, timezone

from review_worker.models.execution import (
    AgentExecution,
    AiAttempt,
    ExecutionHistory,
    ExecutionStatus,
    OperationExecution,
    OperationType,
)

logger = logging.getLogger(__name__)


class ExecutionCollector:
    """Mutable accumulator for one job; ``finalize`` produces the frozen history.

    Entries are created on first use, so recording an attempt for an agent that
    was never started is allowed.
    """

    def __init__(
        self,
        execution_mode: str,
        preferred_model: str | None = None,
        files_analyzed: int = 0,
    ) -> None:
        self.execution_mode = execution_mode
        self.preferred_model = preferred_model
        self.files_analyzed = files_analyzed
        self._started_at = datetime.now(timezone.utc)
        self._start = time.monotonic()
        self._agents: dict[str, AgentExecution] = {}
        self._operations: dict[OperationType, OperationExecution] = {}
        self._comments_raw = 0
        self._comments_merged = 0
        self._comments_posted = 0

    def _agent(self, agent_type: str) -> AgentExecution:
        if agent_type not in self._agents:
            self._agents[agent_type] = AgentExecution(agent_type=agent_type)
        return self._agents[agent_type]

    def _operation(self, operation_type: OperationType) -> OperationExecution:
        if operation_type not in self._operations:
            self._operations[operation_type] = OperationExecution(operation_type=operation_type)
        return self._operations[operation_type]

    def start_agent(self, agent_type: str) -> None:
        self._agent(agent_type).status = ExecutionStatus.RUNNING

    def record_agent_attempt(self, agent_type: str, attempt: AiAttempt) -> None:
        agent = self._agent(agent_type)
        agent.attempts.append(attempt)
        agent.total_duration_ms += attempt.duration_ms

    def complete_agent(self, agent_type: str, comments_found: int) -> None:
        agent = self._agent(agent_type)
        agent.status = ExecutionStatus.COMPLETED
        agent.comments_found = comments_found
        agent.successful_model = _successful_model(agent.attempts)

    def fail_agent(self, agent_type: str, error_message: str) -> None:
        agent = self._agent(agent_type)
        agent.status = ExecutionStatus.FAILED
        agent.error_message = error_message

    def start_operation(self, operation_type: OperationType) -> None:
        self._operation(operation_type).status = ExecutionStatus.RUNNING

    def record_operation_attempt(self, operation_type: OperationType, attempt: AiAttempt) -> None:
        operation = self._operation(operation_type)
        operation.attempts.append(attempt)
        operation.total_duration_ms += attempt.duration_ms

    def complete_operation(self, operation_type: OperationType) -> None:
        operation = self._operation(operation_type)
        operation.status = ExecutionStatus.COMPLETED
        operation.successful_model = _successful_model(operation.attempts)

    def fail_operation(self, operation_type: OperationType, error_message: str) -> None:
        operation = self._operation(operation_type)
        operation.status = ExecutionStatus.FAILED
        operation.error_message = error_message

    def skip_operation(self, operation_type: OperationType, reason: str | None = None) -> None:
        operation = self._operation(operation_type)
        operation.status = ExecutionStatus.SKIPPED
        operation.error_message = reason

    def set_comment_stats(self, raw: int, merged: int, posted: int) -> None:
        self._comments_raw = raw
        self._comments_merged = merged
        self._comments_posted = posted

    def finalize(self) -> ExecutionHistory:
        """Snapshot everything recorded so far.

        Returns:
            Frozen history; later calls on the collector don't affect it
        """
        agents = [copy.deepcopy(agent) for agent in self._agents.values()]
        operations = [copy.deepcopy(operation) for operation in self._operations.values()]

        if not agents and not operations:
            logger.warning("No agents or operations were recorded in execution history")

        incomplete = [a.agent_type for a in agents if not a.status.is_terminal]
        incomplete += [o.operation_type.value for o in operations if not o.status.is_terminal]
        if incomplete:
            logger.warning(f"Execution history has unfinished entries: {', '.join(incomplete)}")

        attempts = [attempt for entry in agents + operations for attempt in entry.attempts]
        input_tokens = sum(attempt.input_tokens for attempt in attempts)
        output_tokens = sum(attempt.output_tokens for attempt in attempts)
        if input_tokens < 0 or output_tokens < 0:
            logger.warning(
                f"Negative token totals in execution history "
                f"(input={input_tokens}, output={output_tokens}), clamping to 0"
            )

        completed_at = datetime.now(timezone.utc)
        return ExecutionHistory(
            started_at=self._started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            total_duration_ms=int((time.monotonic() - self._start) * 1000),
            execution_mode=self.execution_mode,
            agent_executions=tuple(agents),
            operations=tuple(operations),
            total_comments_raw=self._comments_raw,
            total_comments_merged=self._comments_merged,
            total_comments_posted=self._comments_posted,
            total_input_tokens=max(0, input_tokens),
            total_output_tokens=max(0, output_tokens),
            files_analyzed=self.files_analyzed,
            preferred_model=self.preferred_model,
            incomplete=tuple(incomplete),
        )


def _successful_model(attempts: list[AiAttempt]) -> str | None:
    for attempt in attempts:
        if attempt.succeeded:
            return attempt.model
    return None
