"""Second-pass verification of review comments against the diff."""

import asyncio
import logging
from dataclasses import dataclass, field

from review_worker.ai.errors import AIError
from review_worker.ai.gateway import AIGateway
from review_worker.ai.models import DEFAULT_MODEL
from review_worker.ai.schemas import VerifierVerdict
from review_worker.models.diff import FileDiff
from review_worker.models.execution import OperationType
from review_worker.models.findings import ReviewComment
from review_worker.pipeline.collector import ExecutionCollector
from review_worker.prompts import VERIFIER_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "Rejected by verifier"


@dataclass
class Rejection:
    comment: ReviewComment
    reason: str


@dataclass
class VerificationResult:
    """Comments split by verdict, in their original order."""

    approved: list[ReviewComment] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)
    degraded: bool = False


def build_verification_context(comment: ReviewComment, patch: str) -> str:
    suggestion = comment.suggestion if comment.suggestion and comment.suggestion.strip() else "none"
    return "\n".join(
        [
            f"FILE: {comment.filename}",
            f"SEVERITY: {comment.severity.value}",
            f"CONFIDENCE: {comment.confidence}",
            "DIFF:",
            patch or "(no diff provided)",
            "SNIPPET:",
            comment.snippet,
            "COMMENT:",
            comment.body,
            "SUGGESTION:",
            suggestion,
        ]
    )


class CommentVerifier:
    """Asks a model to approve or reject each comment, concurrently."""

    def __init__(self, gateway: AIGateway) -> None:
        self.gateway = gateway

    async def verify(
        self,
        diffs: list[FileDiff],
        comments: list[ReviewComment],
        preferred_model: str = DEFAULT_MODEL,
        collector: ExecutionCollector | None = None,
    ) -> VerificationResult:
        """Verify every comment against its file's diff.

        A comment whose verification call fails is approved; the
        ``comment_verification`` operation is then marked failed so the
        degradation is visible in the execution history.

        Args:
            diffs: Diffs of the pull request
            comments: Comments to verify
            preferred_model: Model to try first
            collector: Optional execution collector

        Returns:
            VerificationResult with approved and rejected comments
        """
        if not comments:
            return VerificationResult()

        if collector:
            collector.start_operation(OperationType.COMMENT_VERIFICATION)

        patches = {diff.filename: diff.patch for diff in diffs}
        outcomes = await asyncio.gather(
            *(self._verify_one(comment, patches.get(comment.filename, ""), preferred_model, collector)
              for comment in comments)
        )

        result = VerificationResult()
        for comment, verdict in zip(comments, outcomes):
            if verdict is None:
                result.degraded = True
                result.approved.append(comment)
            elif verdict.verdict == "approve":
                result.approved.append(comment)
            else:
                reason = (verdict.reject_reason or "").strip() or DEFAULT_REJECT_REASON
                result.rejected.append(Rejection(comment=comment, reason=reason))

        if collector:
            if result.degraded:
                collector.fail_operation(
                    OperationType.COMMENT_VERIFICATION,
                    "One or more verification requests failed",
                )
            else:
                collector.complete_operation(OperationType.COMMENT_VERIFICATION)

        logger.info(
            f"Verification: {len(result.approved)} approved, {len(result.rejected)} rejected"
        )
        return result

    async def _verify_one(
        self,
        comment: ReviewComment,
        patch: str,
        preferred_model: str,
        collector: ExecutionCollector | None,
    ) -> VerifierVerdict | None:
        try:
            answer = await self.gateway.ask(
                build_verification_context(comment, patch),
                system_instruction=VERIFIER_PROMPT,
                response_schema=VerifierVerdict,
                temperature=0.1,
                preferred_model=preferred_model,
            )
        except AIError as e:
            logger.warning(
                f"Verification of comment on {comment.filename} failed, approving by default: {e}"
            )
            if collector:
                for attempt in getattr(e, "attempts", []):
                    collector.record_operation_attempt(OperationType.COMMENT_VERIFICATION, attempt)
            return None

        if collector:
            for attempt in answer.attempts:
                collector.record_operation_attempt(OperationType.COMMENT_VERIFICATION, attempt)
        return answer.result
