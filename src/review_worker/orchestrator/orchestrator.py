"""Agent orchestrator for multi-agent review execution."""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from review_worker.agents.base import AgentReview, ReviewAgent
from review_worker.agents.patterns import ArchitectureAgent, ConventionsAgent
from review_worker.agents.performance import CorrectnessAgent, PerformanceAgent
from review_worker.agents.security import SecurityAgent
from review_worker.ai.errors import AIError
from review_worker.ai.gateway import AIGateway
from review_worker.ai.models import DEFAULT_MODEL
from review_worker.ai.schemas import SummaryResponse
from review_worker.diff.formatter import format_diff_context
from review_worker.models.diff import FileDiff
from review_worker.models.execution import OperationType
from review_worker.models.findings import ReviewComment
from review_worker.models.settings import AgentExecutionMode
from review_worker.orchestrator.aggregator import DEFAULT_MAX_COMMENTS, ReviewAggregator
from review_worker.pipeline.collector import ExecutionCollector
from review_worker.prompts import SUMMARY_PROMPT

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Code review completed."
NO_CHANGES_SUMMARY = "No reviewable changes found."


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    max_agent_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    max_comments: int = DEFAULT_MAX_COMMENTS
    execution_mode: AgentExecutionMode = AgentExecutionMode.SEQUENTIAL


@dataclass
class MultiAgentResult:
    """Merged outcome of a multi-agent review."""

    comments: list[ReviewComment]
    summary: str
    raw_comment_count: int = 0
    agent_reviews: list[AgentReview] = field(default_factory=list)
    failed_agents: list[str] = field(default_factory=list)


def create_default_agents(gateway: AIGateway) -> list[ReviewAgent]:
    """The five specialist agents, in dispatch order."""
    return [
        SecurityAgent(gateway),
        PerformanceAgent(gateway),
        CorrectnessAgent(gateway),
        ArchitectureAgent(gateway),
        ConventionsAgent(gateway),
    ]


class AgentOrchestrator:
    """Coordinates the review agents, then merges and summarizes their output."""

    def __init__(
        self,
        gateway: AIGateway,
        agents: list[ReviewAgent] | None = None,
        config: OrchestratorConfig | None = None,
        aggregator: ReviewAggregator | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            gateway: AI gateway (also used for the summary call)
            agents: Agents to run (defaults to the five specialists)
            config: Optional configuration
            aggregator: Optional aggregator used to merge agent output
        """
        self.gateway = gateway
        self.agents = agents if agents is not None else create_default_agents(gateway)
        self.config = config or OrchestratorConfig()
        self.aggregator = aggregator or ReviewAggregator()

    async def review(
        self,
        diffs: list[FileDiff],
        extra_context: dict[str, str] | None = None,
        preferred_model: str = DEFAULT_MODEL,
        execution_mode: AgentExecutionMode | None = None,
        collector: ExecutionCollector | None = None,
    ) -> MultiAgentResult:
        """Run every agent over the diffs and merge the results.

        An agent that fails all its attempts contributes no comments; the
        review still completes with the other agents' output.

        Args:
            diffs: File diffs to review
            extra_context: Read-only reference files (path to contents)
            preferred_model: Model to try first
            execution_mode: Sequential or parallel dispatch (defaults to config)
            collector: Optional execution collector

        Returns:
            MultiAgentResult with merged comments and a summary
        """
        if not diffs:
            return MultiAgentResult(comments=[], summary=NO_CHANGES_SUMMARY)

        context = format_diff_context(diffs, extra_context)
        mode = execution_mode or self.config.execution_mode
        logger.info(f"Starting multi-agent review with {len(self.agents)} agents in {mode.value} mode")
        start_time = time.monotonic()

        if mode is AgentExecutionMode.PARALLEL:
            results = await asyncio.gather(
                *(self._run_agent(agent, context, preferred_model, collector) for agent in self.agents)
            )
        else:
            results = []
            for agent in self.agents:
                results.append(await self._run_agent(agent, context, preferred_model, collector))

        reviews = [review for review in results if review is not None]
        failed = [agent.agent_type for agent, review in zip(self.agents, results) if review is None]
        raw_count = sum(len(review.comments) for review in reviews)

        merged = self.aggregator.merge(reviews, max_comments=self.config.max_comments)
        summary = await self.generate_summary(context, preferred_model, collector)

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Multi-agent review completed in {elapsed_ms}ms: "
            f"{len(reviews)} agents succeeded, {len(failed)} failed"
        )

        return MultiAgentResult(
            comments=merged,
            summary=summary,
            raw_comment_count=raw_count,
            agent_reviews=reviews,
            failed_agents=failed,
        )

    async def _run_agent(
        self,
        agent: ReviewAgent,
        context: str,
        preferred_model: str,
        collector: ExecutionCollector | None,
    ) -> AgentReview | None:
        """Run one agent with retries and exponential backoff.

        Returns:
            The agent's review, or None when every attempt failed
        """
        if collector:
            collector.start_agent(agent.agent_type)

        attempts = max(1, self.config.max_agent_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                review = await agent.review(context, preferred_model=preferred_model)
            except Exception as e:
                last_error = e
                if collector and isinstance(e, AIError):
                    for ai_attempt in getattr(e, "attempts", []):
                        collector.record_agent_attempt(agent.agent_type, ai_attempt)
                if attempt < attempts:
                    delay = self.config.retry_base_delay_seconds * 2 ** (attempt - 1)
                    logger.warning(
                        f"[{agent.agent_type}] attempt {attempt}/{attempts} failed, "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                continue

            if collector:
                for ai_attempt in review.attempts:
                    collector.record_agent_attempt(agent.agent_type, ai_attempt)
                collector.complete_agent(agent.agent_type, len(review.comments))
            logger.info(
                f"[{agent.agent_type}] completed in {review.duration_ms}ms, "
                f"found {len(review.comments)} issues"
            )
            return review

        logger.error(f"[{agent.agent_type}] failed after {attempts} attempts: {last_error}")
        if collector:
            collector.fail_agent(agent.agent_type, str(last_error))
        return None

    async def generate_summary(
        self,
        context: str,
        preferred_model: str = DEFAULT_MODEL,
        collector: ExecutionCollector | None = None,
    ) -> str:
        """One or two sentence summary of the change; falls back on failure."""
        if collector:
            collector.start_operation(OperationType.SUMMARY_GENERATION)
        try:
            answer = await self.gateway.ask(
                context,
                system_instruction=SUMMARY_PROMPT,
                response_schema=SummaryResponse,
                temperature=0.2,
                preferred_model=preferred_model,
            )
        except AIError as e:
            logger.warning(f"Failed to generate summary: {e}")
            if collector:
                for attempt in getattr(e, "attempts", []):
                    collector.record_operation_attempt(OperationType.SUMMARY_GENERATION, attempt)
                collector.fail_operation(OperationType.SUMMARY_GENERATION, str(e))
            return FALLBACK_SUMMARY

        if collector:
            for attempt in answer.attempts:
                collector.record_operation_attempt(OperationType.SUMMARY_GENERATION, attempt)
            collector.complete_operation(OperationType.SUMMARY_GENERATION)
        return answer.result.summary.strip() or FALLBACK_SUMMARY
