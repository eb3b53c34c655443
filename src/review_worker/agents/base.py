"""Base class for review agents."""

import logging
from dataclasses import dataclass, field

from review_worker.ai.gateway import AIGateway
from review_worker.ai.models import DEFAULT_MODEL
from review_worker.ai.schemas import AgentComment, AgentCommentList
from review_worker.models.execution import AiAttempt
from review_worker.models.findings import ReviewComment, Severity

logger = logging.getLogger(__name__)

MAX_COMMENTS_PER_AGENT = 10

BASE_INSTRUCTIONS = f"""
### READING THE DIFF
The input is a git patch.
- Lines starting with `-` were removed. Comment on a removal only when it causes a problem in your domain.
- Lines starting with `+` were added. Focus on these.
- When returning a "snippet", drop the leading `+` or `-` marker. The snippet must match the source code exactly.

### CONSTRAINTS
- Comment only on changed lines (`+` or `-`).
- Comment only when there is a demonstrable issue in your domain.
- If nothing in your domain is wrong, return an empty "comments" array.
- Do not explain what the code does and do not praise it.
- The snippet MUST exist in the diff. Never invent code.
- "suggestion" must be ready-to-commit code with no markdown fences and no commentary,
  indented exactly like the surrounding code.
- Severity is one of CRITICAL, HIGH, MEDIUM, LOW.
- Confidence is a number between 0.0 and 1.0.
- At most {MAX_COMMENTS_PER_AGENT} comments, most severe first.
"""


@dataclass
class AgentReview:
    """Comments returned by one agent run, with the AI calls it took."""

    agent_type: str
    comments: list[ReviewComment]
    model: str
    duration_ms: int
    attempts: list[AiAttempt] = field(default_factory=list)


class ReviewAgent:
    """Base class for all review agents."""

    # Subclasses should override these
    AGENT_TYPE: str = "base"
    FOCUS_AREAS: list[str] = []
    SYSTEM_PROMPT: str = "You are a code reviewer."
    TEMPERATURE: float = 0.1

    def __init__(self, gateway: AIGateway) -> None:
        """Initialize the agent.

        Args:
            gateway: AI gateway used for every model call
        """
        self.gateway = gateway

    @property
    def agent_type(self) -> str:
        return self.AGENT_TYPE

    @property
    def focus_areas(self) -> list[str]:
        """Topics this agent specializes in."""
        return self.FOCUS_AREAS

    async def review(self, context: str, preferred_model: str = DEFAULT_MODEL) -> AgentReview:
        """Review the formatted diff context.

        Args:
            context: Prompt text produced by ``format_diff_context``
            preferred_model: Model to try first

        Returns:
            AgentReview with the parsed comments

        Raises:
            AIExhaustedError: If no model produced a valid answer
        """
        result = await self.gateway.ask(
            context,
            system_instruction=self.get_system_prompt(),
            response_schema=AgentCommentList,
            temperature=self.TEMPERATURE,
            preferred_model=preferred_model,
        )
        comments = self._parse_comments(result.result.comments)
        return AgentReview(
            agent_type=self.agent_type,
            comments=comments,
            model=result.model,
            duration_ms=result.duration_ms,
            attempts=result.attempts,
        )

    def get_system_prompt(self) -> str:
        """Get the system prompt for this agent."""
        return f"""{self.SYSTEM_PROMPT}
{BASE_INSTRUCTIONS}
### SCOPE
Only comment on: {", ".join(self.focus_areas)}. Other agents cover everything else.
"""

    def _parse_comments(self, raw_comments: list[AgentComment]) -> list[ReviewComment]:
        """Convert schema objects into review comments, dropping malformed ones."""
        comments = []
        for raw in raw_comments:
            try:
                comment = ReviewComment(
                    filename=raw.filename,
                    snippet=raw.snippet,
                    body=raw.body,
                    suggestion=raw.suggestion or None,
                    severity=Severity.parse(raw.severity),
                    confidence=float(raw.confidence),
                )
            except ValueError as e:
                logger.warning(f"Agent {self.agent_type} returned an invalid comment: {e}")
                continue
            if not comment.snippet.strip():
                logger.warning(f"Agent {self.agent_type} returned a comment without a snippet")
                continue
            comments.append(comment)
        return comments
