"""Map AI-proposed code snippets back onto lines of a unified diff."""

import io
import logging
import re
from dataclasses import dataclass

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from review_worker.models.findings import LineAnchor, Side

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"\s*([=+\-*/(){},:;<>\[\]])\s*")

# Changed lines are stronger evidence than surrounding context
_KIND_SCORES = {"add": 3, "del": 2, "context": 1}


def normalize_code(code: str) -> str:
    """Normalize a line of code so formatting differences don't block a match.

    Collapses whitespace, removes whitespace around punctuation, drops
    statement terminators and any trailing line comment.
    """
    code = _strip_trailing_comment(code)
    code = _WHITESPACE_RE.sub(" ", code)
    code = _PUNCTUATION_RE.sub(r"\1", code)
    return code.replace(";", "").strip()


def _strip_trailing_comment(code: str) -> str:
    """Drop a ``//`` or ``#`` comment that follows code on the same line."""
    quote: str | None = None
    escaped = False
    for index, char in enumerate(code):
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"'`":
            quote = char
            continue
        if index == 0 or code[index - 1] not in " \t":
            continue
        if (char == "#" or code.startswith("//", index)) and code[:index].strip():
            return code[:index]
    return code


@dataclass(frozen=True)
class _Candidate:
    content: str
    number: int
    side: Side
    kind: str


def find_line_in_patch(patch: str, snippet: str) -> LineAnchor | None:
    """Find where ``snippet`` occurs in ``patch``.

    Args:
        patch: Unified diff text (a bare GitHub file patch or a multi-file diff)
        snippet: Code fragment proposed by the AI, possibly multi-line and
            possibly using literal ``\\n`` sequences instead of newlines

    Returns:
        The anchor of the best-scoring match, or None if the snippet isn't in the diff
    """
    if not patch or not snippet or not snippet.strip():
        return None

    files = _build_candidates(patch)
    if not files:
        return None

    anchor = _find_best_match(files, _snippet_lines(snippet))
    if anchor is None and "\\n" in snippet:
        anchor = _find_best_match(files, _snippet_lines(snippet.replace("\\n", "\n")))
    return anchor


def _snippet_lines(snippet: str) -> list[str]:
    lines = [normalize_code(line) for line in snippet.splitlines()]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return lines


def _build_candidates(patch: str) -> list[list[_Candidate]]:
    """Flatten each file of the patch into an ordered list of matchable lines."""
    if patch.lstrip().startswith("@@"):
        # GitHub returns per-file patches without file headers
        patch = f"--- a/file\n+++ b/file\n{patch}"
    if not patch.endswith("\n"):
        patch += "\n"

    try:
        patch_set = PatchSet(io.StringIO(patch))
    except UnidiffParseError as e:
        logger.warning(f"Could not parse patch: {e}")
        return []

    files: list[list[_Candidate]] = []
    for patched_file in patch_set:
        candidates: list[_Candidate] = []
        for hunk in patched_file:
            for line in hunk:
                if line.is_added:
                    candidates.append(
                        _Candidate(normalize_code(line.value), line.target_line_no, Side.RIGHT, "add")
                    )
                elif line.is_removed:
                    candidates.append(
                        _Candidate(normalize_code(line.value), line.source_line_no, Side.LEFT, "del")
                    )
                elif line.is_context:
                    candidates.append(
                        _Candidate(
                            normalize_code(line.value), line.target_line_no, Side.RIGHT, "context"
                        )
                    )
        if candidates:
            files.append(candidates)
    return files


def _find_best_match(
    files: list[list[_Candidate]], snippet_lines: list[str]
) -> LineAnchor | None:
    if not snippet_lines:
        return None

    size = len(snippet_lines)
    best: tuple[int, _Candidate, _Candidate] | None = None

    # Windows are built per file, so a match can never straddle two files
    for candidates in files:
        for start in range(len(candidates) - size + 1):
            window = candidates[start : start + size]
            if any(c.content != expected for c, expected in zip(window, snippet_lines)):
                continue
            score = sum(_KIND_SCORES[c.kind] for c in window)
            if best is None or score > best[0]:
                best = (score, window[0], window[-1])

    if best is None:
        return None

    _, first, last = best
    if size == 1:
        return LineAnchor(line=last.number, side=last.side)
    return LineAnchor(
        line=last.number,
        side=last.side,
        start_line=first.number,
        start_side=first.side,
    )
