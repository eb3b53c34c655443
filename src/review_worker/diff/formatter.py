"""Build bounded prompt context from pull request diffs."""

from review_worker.models.diff import FileDiff

# Keeps a single prompt inside the providers' per-minute token allowance
MAX_CONTEXT_CHARS = 250_000

READ_ONLY_HEADER = "\n## READ-ONLY CONTEXT (Reference only, do not review these files)\n"
READ_ONLY_FOOTER = "\n## END READ-ONLY CONTEXT\n\n"
REVIEW_HEADER = "\n## FILES TO REVIEW (Focus on these changes)\n"
REFERENCE_TRUNCATION_MARKER = "\n... (remaining reference files truncated due to size limit)\n"
TRUNCATION_MARKER = "\n... (remaining files truncated due to size limit)"


def _file_entry(filename: str, content: str) -> str:
    return f"\n### FILE: {filename}\n{content}\n"


def format_diff_context(
    diffs: list[FileDiff],
    extra_context: dict[str, str] | None = None,
    max_chars: int = MAX_CONTEXT_CHARS,
) -> str:
    """Format diffs (and optional read-only reference files) for an AI prompt.

    Reference files come first, in a clearly delimited read-only section,
    followed by the diffs under review. Entries are added whole; the first
    entry that would overflow ``max_chars`` stops its section and a
    truncation marker is appended instead.

    Args:
        diffs: File diffs under review, in order
        extra_context: Mapping of reference file path to full contents
        max_chars: Hard character budget for the whole block

    Returns:
        Prompt text
    """
    parts: list[str] = []
    length = 0

    if extra_context:
        parts.append(READ_ONLY_HEADER)
        length += len(READ_ONLY_HEADER)
        budget = max_chars - len(READ_ONLY_FOOTER) - len(REVIEW_HEADER) - len(TRUNCATION_MARKER)
        for filename, content in extra_context.items():
            entry = _file_entry(filename, content)
            if length + len(entry) + len(REFERENCE_TRUNCATION_MARKER) > budget:
                parts.append(REFERENCE_TRUNCATION_MARKER)
                length += len(REFERENCE_TRUNCATION_MARKER)
                break
            parts.append(entry)
            length += len(entry)
        parts.append(READ_ONLY_FOOTER)
        length += len(READ_ONLY_FOOTER)

    parts.append(REVIEW_HEADER)
    length += len(REVIEW_HEADER)

    for diff in diffs:
        entry = _file_entry(diff.filename, diff.patch)
        if length + len(entry) + len(TRUNCATION_MARKER) > max_chars:
            parts.append(TRUNCATION_MARKER)
            break
        parts.append(entry)
        length += len(entry)

    return "".join(parts)


def format_reply_context(
    thread_history: list[tuple[str, str]],
    filename: str,
    patch: str,
    max_chars: int = MAX_CONTEXT_CHARS,
) -> str:
    """Format a review thread and the file's diff for a reply prompt.

    Args:
        thread_history: ``(author, body)`` pairs from the root comment onwards
        filename: File the thread is attached to
        patch: That file's diff
        max_chars: Character budget

    Returns:
        Prompt text
    """
    history_text = "\n---\n".join(f"{author}: {body}" for author, body in thread_history)
    context = f"\n### FILE: {filename}\n\n### DIFF:\n{patch}\n\n### THREAD HISTORY:\n{history_text}\n"
    if len(context) > max_chars:
        context = f"{context[:max_chars]}\n... (truncated)"
    return context


def format_diff_summary(diffs: list[FileDiff], snippet_chars: int = 200) -> str:
    """Short per-file overview of a diff (status plus the start of the patch)."""
    return "\n".join(
        f"\n### FILE: {diff.filename}\n\n**Status**: {diff.status.value}\n\n"
        f"**Patch Snippet**:\n{diff.patch[:snippet_chars]}...\n"
        for diff in diffs
    )
