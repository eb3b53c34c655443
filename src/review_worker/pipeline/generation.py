"""Auxiliary AI operations: pull request descriptions and thread replies."""

import logging

from review_worker.ai.errors import AIError
from review_worker.ai.gateway import AIGateway
from review_worker.ai.models import DEFAULT_MODEL
from review_worker.ai.schemas import DescriptionResponse, ReplyResponse
from review_worker.diff.formatter import format_diff_context, format_reply_context
from review_worker.models.diff import FileDiff
from review_worker.models.execution import OperationType
from review_worker.pipeline.collector import ExecutionCollector
from review_worker.pipeline.formatting import wrap_generated_description
from review_worker.prompts import DESCRIPTION_PROMPT, REPLY_PROMPT

logger = logging.getLogger(__name__)


async def generate_description(
    gateway: AIGateway,
    diffs: list[FileDiff],
    custom_prompt: str | None = None,
    preferred_model: str = DEFAULT_MODEL,
    collector: ExecutionCollector | None = None,
) -> str:
    """Generate a pull request description wrapped in the generated-section markers.

    Args:
        gateway: AI gateway
        diffs: Diffs to describe
        custom_prompt: Repository-specific system prompt, if configured
        preferred_model: Model to try first
        collector: Optional execution collector

    Returns:
        Marker-wrapped Markdown description

    Raises:
        AIError: If no model produced a description
    """
    operation = OperationType.DESCRIPTION_GENERATION
    if collector:
        collector.start_operation(operation)
    try:
        answer = await gateway.ask(
            format_diff_context(diffs),
            system_instruction=custom_prompt or DESCRIPTION_PROMPT,
            response_schema=DescriptionResponse,
            temperature=0.1,
            preferred_model=preferred_model,
        )
    except AIError as e:
        if collector:
            for attempt in getattr(e, "attempts", []):
                collector.record_operation_attempt(operation, attempt)
            collector.fail_operation(operation, str(e))
        raise

    if collector:
        for attempt in answer.attempts:
            collector.record_operation_attempt(operation, attempt)
        collector.complete_operation(operation)
    return wrap_generated_description(answer.result.description.strip())


async def generate_reply(
    gateway: AIGateway,
    thread_history: list[tuple[str, str]],
    filename: str,
    patch: str,
    custom_prompt: str | None = None,
    preferred_model: str = DEFAULT_MODEL,
    collector: ExecutionCollector | None = None,
) -> str:
    """Generate the bot's answer to a review thread.

    Raises:
        AIError: If no model produced a reply
    """
    operation = OperationType.REPLY_GENERATION
    if collector:
        collector.start_operation(operation)
    try:
        answer = await gateway.ask(
            format_reply_context(thread_history, filename, patch),
            system_instruction=custom_prompt or REPLY_PROMPT,
            response_schema=ReplyResponse,
            temperature=0.3,
            preferred_model=preferred_model,
        )
    except AIError as e:
        if collector:
            for attempt in getattr(e, "attempts", []):
                collector.record_operation_attempt(operation, attempt)
            collector.fail_operation(operation, str(e))
        raise

    if collector:
        for attempt in answer.attempts:
            collector.record_operation_attempt(operation, attempt)
        collector.complete_operation(operation)
    return answer.result.reply
