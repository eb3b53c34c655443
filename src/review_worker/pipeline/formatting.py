"""Turn review results into GitHub review comments, annotations and text."""

import logging
import re
from collections import Counter
from typing import Any

from review_worker.diff.matcher import find_line_in_patch
from review_worker.github.client import review_comment_signature
from review_worker.models.diff import FileDiff
from review_worker.models.findings import ReviewComment, Severity
from review_worker.orchestrator.verifier import Rejection

logger = logging.getLogger(__name__)

DESCRIPTION_START_MARKER = "<!-- review-worker-generated-description-start -->"
DESCRIPTION_END_MARKER = "<!-- review-worker-generated-description-end -->"

_DESCRIPTION_SECTION = re.compile(
    re.escape(DESCRIPTION_START_MARKER) + ".*?" + re.escape(DESCRIPTION_END_MARKER),
    re.DOTALL,
)

MAX_REASON_CHARS = 160
MAX_BODY_CHARS = 200

ANNOTATION_LEVELS = {
    Severity.CRITICAL: "failure",
    Severity.HIGH: "warning",
}


def format_comment_body(comment: ReviewComment) -> str:
    """Inline comment text: severity marker, body and an optional suggestion block."""
    body = f"{comment.severity.icon} **[{comment.severity.value}]** {comment.body}"
    if comment.suggestion:
        body += f"\n\n```suggestion\n{comment.suggestion}\n```"
    return body


def prepare_review_comments(
    diffs: list[FileDiff],
    comments: list[ReviewComment],
    existing_signatures: set[str],
) -> list[ReviewComment]:
    """Anchor comments to diff lines and drop the ones already posted.

    Comments on files outside the diff, or whose snippet cannot be found in
    the file's patch, are dropped with a warning.

    Args:
        diffs: Diffs of the pull request
        comments: Comments to publish
        existing_signatures: Signatures of comments already on the pull request

    Returns:
        New, anchored comments with formatted bodies
    """
    patches = {diff.filename: diff.patch for diff in diffs}
    prepared: list[ReviewComment] = []

    for comment in comments:
        if comment.filename not in patches:
            logger.warning(f"Skipped comment for unknown file: {comment.filename}")
            continue
        patch = patches[comment.filename]
        if not patch:
            continue

        anchor = find_line_in_patch(patch, comment.snippet)
        if anchor is None:
            logger.warning(f"Could not find snippet in {comment.filename}:\n{comment.snippet}")
            continue

        body = format_comment_body(comment)
        if review_comment_signature(comment.filename, anchor.line, body) in existing_signatures:
            continue
        prepared.append(comment.anchored(anchor, body=body))

    return prepared


def severity_counts(comments: list[ReviewComment]) -> Counter:
    return Counter(comment.severity for comment in comments)


def check_run_conclusion(comments: list[ReviewComment]) -> str:
    """Neutral when anything critical was found, success otherwise."""
    if any(comment.severity is Severity.CRITICAL for comment in comments):
        return "neutral"
    return "success"


def build_check_summary(comments: list[ReviewComment], summary: str) -> str:
    counts = severity_counts(comments)
    return (
        "### 🏁 Review Summary\n\n"
        f"- **Critical Issues:** {counts[Severity.CRITICAL]}\n"
        f"- **High:** {counts[Severity.HIGH]}\n"
        f"- **Medium:** {counts[Severity.MEDIUM]}\n"
        f"- **Low:** {counts[Severity.LOW]}\n\n"
        f"{summary}"
    )


def build_annotations(comments: list[ReviewComment]) -> list[dict[str, Any]]:
    """Check-run annotations for posted comments."""
    return [
        {
            "path": comment.filename,
            "start_line": comment.start_line or comment.line or 1,
            "end_line": comment.line or comment.start_line or 1,
            "annotation_level": ANNOTATION_LEVELS.get(comment.severity, "notice"),
            "message": comment.body,
        }
        for comment in comments
    ]


def _normalize_text(value: str) -> str:
    return " ".join(value.split())


def _truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[: max(0, max_length - 3)].rstrip()}..."


def _suppressed_location(comment: ReviewComment, patches: dict[str, str]) -> str:
    patch = patches.get(comment.filename)
    anchor = find_line_in_patch(patch, comment.snippet) if patch else None
    if anchor is not None:
        return f"{comment.filename}:{anchor.line}"
    return comment.filename


def _suppressed_line(comment: ReviewComment, patches: dict[str, str], reason: str) -> str:
    location = _suppressed_location(comment, patches)
    reason_text = _truncate(_normalize_text(reason), MAX_REASON_CHARS)
    body_text = _truncate(_normalize_text(comment.body), MAX_BODY_CHARS)
    return f"- [{comment.severity.value}] {location} - {reason_text}. Comment: {body_text}"


def build_suppressed_section(
    rejected: list[Rejection],
    below_threshold: list[ReviewComment],
    diffs: list[FileDiff],
) -> str:
    """Collapsed list of comments that were not posted, or "" when there are none."""
    total = len(rejected) + len(below_threshold)
    if total == 0:
        return ""

    patches = {diff.filename: diff.patch for diff in diffs}
    lines: list[str] = []
    if rejected:
        lines.append("Rejected by verifier:")
        lines.extend(
            _suppressed_line(item.comment, patches, f"Verifier rejected: {item.reason}")
            for item in rejected
        )
    if below_threshold:
        if lines:
            lines.append("")
        lines.append("Below threshold:")
        lines.extend(
            _suppressed_line(comment, patches, f"Below threshold (conf {comment.confidence:.2f})")
            for comment in below_threshold
        )

    return "\n".join(
        [
            "<details>",
            f"<summary>Suppressed comments ({total})</summary>",
            "",
            "\n".join(lines),
            "",
            "</details>",
        ]
    )


def wrap_generated_description(description: str) -> str:
    return f"{DESCRIPTION_START_MARKER}\n{description}\n{DESCRIPTION_END_MARKER}"


def has_generated_description(body: str | None) -> bool:
    return bool(body) and DESCRIPTION_START_MARKER in body


def needs_description(body: str | None) -> bool:
    """Whether a description should be generated for this pull request body.

    Only empty bodies and bodies carrying a previously generated section
    qualify; human-written descriptions are left alone.
    """
    return not (body or "").strip() or has_generated_description(body)


def build_final_description(existing_body: str | None, generated: str) -> str:
    """Merge a marker-wrapped generated description into the existing body."""
    if not existing_body or not existing_body.strip():
        return generated
    if DESCRIPTION_START_MARKER in existing_body:
        return _DESCRIPTION_SECTION.sub(lambda _: generated, existing_body)
    return f"{existing_body}\n\n{generated}"
