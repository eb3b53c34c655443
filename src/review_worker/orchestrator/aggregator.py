"""Review aggregator for combining comments from multiple agents."""

import logging
import math
import re
from dataclasses import dataclass

from review_worker.agents.base import AgentReview
from review_worker.models.findings import ReviewComment

logger = logging.getLogger(__name__)

DEFAULT_MAX_COMMENTS = 30

_FENCE_OPEN = re.compile(r"^```\w*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


@dataclass
class AggregatorConfig:
    """Configuration for the aggregator."""

    max_comments: int = DEFAULT_MAX_COMMENTS


def comment_signature(comment: ReviewComment) -> str:
    """Dedup key: file plus whitespace-collapsed snippet."""
    snippet = " ".join(comment.snippet.split())
    return f"{comment.filename}::{snippet}"


def strip_code_fence(suggestion: str | None) -> str | None:
    """Remove a surrounding markdown fence from a suggestion."""
    if suggestion is None or not suggestion.startswith("```"):
        return suggestion
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", suggestion, count=1), count=1)


def _priority(comment: ReviewComment) -> tuple[int, float, str]:
    return (comment.severity.rank, -comment.confidence, comment.body)


class ReviewAggregator:
    """Merges agent comments: dedup by location, rank, and cap."""

    def __init__(self, config: AggregatorConfig | None = None) -> None:
        """Initialize the aggregator.

        Args:
            config: Optional configuration
        """
        self.config = config or AggregatorConfig()

    def merge(
        self,
        agent_results: list[AgentReview] | dict[str, list[ReviewComment]],
        max_comments: int | None = None,
    ) -> list[ReviewComment]:
        """Merge comments from every agent into one ranked list.

        Comments pointing at the same snippet of the same file are grouped.
        The most severe (then most confident) comment of a group is kept as
        the primary, other distinct bodies are appended to it as additional
        insights, and the group's confidence is averaged. The result does not
        depend on the order the agents finished in.

        Args:
            agent_results: Agent reviews, or a mapping of agent type to comments
            max_comments: Cap on the merged list (defaults to the config value)

        Returns:
            Comments sorted by severity then confidence, capped
        """
        limit = self.config.max_comments if max_comments is None else max_comments

        if isinstance(agent_results, dict):
            all_comments = [c for comments in agent_results.values() for c in comments]
        else:
            all_comments = [c for review in agent_results for c in review.comments]

        logger.info(f"Total comments from all agents: {len(all_comments)}")

        groups: dict[str, list[ReviewComment]] = {}
        for comment in all_comments:
            groups.setdefault(comment_signature(comment), []).append(comment)

        merged = [self._merge_group(group) for group in groups.values()]
        merged.sort(key=lambda c: (c.severity.rank, -c.confidence, c.filename, c.snippet))
        capped = merged[: max(0, limit)]

        logger.info(
            f"Merge complete: {len(all_comments)} -> {len(capped)} comments (after dedup and cap)"
        )
        return capped

    def _merge_group(self, group: list[ReviewComment]) -> ReviewComment:
        ordered = sorted(group, key=_priority)
        primary = ordered[0]

        body = primary.body
        insights: list[str] = []
        for comment in ordered[1:]:
            if comment.body != primary.body and comment.body not in insights:
                insights.append(comment.body)
        if insights:
            body += "\n\n**Additional insights:**\n" + "\n".join(f"- {i}" for i in insights)

        confidence = math.fsum(c.confidence for c in ordered) / len(ordered)

        return ReviewComment(
            filename=primary.filename,
            snippet=primary.snippet,
            body=body,
            severity=primary.severity,
            confidence=min(1.0, max(0.0, confidence)),
            suggestion=strip_code_fence(primary.suggestion),
        )
