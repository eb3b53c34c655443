"""Review comment models."""

from dataclasses import dataclass, replace
from enum import Enum


class Severity(Enum):
    """Severity levels for review comments.

    - CRITICAL: Must fix before merge (security holes, data loss, crashes).
    - HIGH: Should fix; serious correctness or maintainability issues.
    - MEDIUM: Worth fixing; edge cases and weaker patterns.
    - LOW: Optional polish.
    """

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        """Parse a severity label, accepting the legacy WARNING/INFO aliases."""
        if isinstance(value, Severity):
            return value
        label = value.strip().upper()
        label = _SEVERITY_ALIASES.get(label, label)
        return cls(label)

    @property
    def rank(self) -> int:
        """Sort position, 0 being the most severe."""
        return _SEVERITY_RANK[self]

    @property
    def weight(self) -> int:
        """Numeric weight used for threshold comparisons (LOW=1 .. CRITICAL=4)."""
        return 4 - _SEVERITY_RANK[self]

    @property
    def icon(self) -> str:
        """Marker used when formatting inline comments."""
        if self is Severity.CRITICAL:
            return "🚫"
        if self is Severity.HIGH:
            return "⚠️"
        return "ℹ️"


_SEVERITY_ALIASES = {"WARNING": "HIGH", "INFO": "MEDIUM"}

_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class Side(Enum):
    """Which side of a diff a line belongs to."""

    LEFT = "LEFT"  # old file (deleted lines)
    RIGHT = "RIGHT"  # new file (added and context lines)


@dataclass(frozen=True)
class LineAnchor:
    """Resolved location of a snippet inside a diff."""

    line: int
    side: Side
    start_line: int | None = None
    start_side: Side | None = None


@dataclass
class ReviewComment:
    """A single review comment produced by an agent."""

    filename: str
    snippet: str
    body: str
    severity: Severity
    confidence: float  # 0.0 - 1.0
    suggestion: str | None = None

    # Set once the snippet has been anchored to the diff
    line: int | None = None
    start_line: int | None = None
    side: Side | None = None
    start_side: Side | None = None

    def __post_init__(self) -> None:
        """Validate comment data."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")

    @property
    def is_anchored(self) -> bool:
        """Whether the comment has a concrete line in the diff."""
        return self.line is not None

    def anchored(self, anchor: LineAnchor, body: str | None = None) -> "ReviewComment":
        """Return a copy of this comment placed at ``anchor``."""
        return replace(
            self,
            line=anchor.line,
            start_line=anchor.start_line,
            side=anchor.side,
            start_side=anchor.start_side,
            body=self.body if body is None else body,
        )
