"""Job models for the review queue."""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 30.0


class JobKind(Enum):
    """The two kinds of work the worker performs."""

    REVIEW = "review"
    REPLY = "reply"


class JobState(Enum):
    """Queue lifecycle of a job."""

    WAITING = "waiting"
    DELAYED = "delayed"  # waiting for a backoff delay to elapse
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff between failed attempts."""

    base_delay_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    factor: float = 2.0

    def delay_for(self, attempts_made: int) -> float:
        """Delay before the next attempt after ``attempts_made`` failures."""
        if attempts_made < 1:
            return 0.0
        return self.base_delay_seconds * self.factor ** (attempts_made - 1)


def make_job_id(
    kind: JobKind,
    repository_full_name: str,
    pr_number: int,
    head_sha: str = "",
    comment_id: int | None = None,
) -> str:
    """Build the deterministic job id used as the queue's dedup key.

    Re-delivering the same event produces the same id, so enqueuing it again
    is a no-op.
    """
    repo_key = repository_full_name.replace("/", "-")
    if kind is JobKind.REPLY:
        return f"reply-{repo_key}-{pr_number}-{comment_id}"
    return f"review-{repo_key}-{pr_number}-{head_sha}"


@dataclass
class Job:
    """A unit of queued work."""

    kind: JobKind
    repository_full_name: str
    installation_id: int
    pr_number: int
    head_sha: str
    action: str = ""
    comment_id: int | None = None
    pr_body: str | None = None
    id: str = ""
    attempts_made: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    last_error: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = make_job_id(
                self.kind,
                self.repository_full_name,
                self.pr_number,
                self.head_sha,
                self.comment_id,
            )

    @property
    def owner(self) -> str:
        return self.repository_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository_full_name.split("/", 1)[-1]

    @property
    def is_final_attempt(self) -> bool:
        """True while processing the last attempt the queue will make.

        ``attempts_made`` counts attempts that already failed.
        """
        return self.attempts_made + 1 >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        backoff = data.get("backoff") or {}
        return cls(
            kind=JobKind(data["kind"]),
            repository_full_name=data.get("repository_full_name", ""),
            installation_id=int(data.get("installation_id") or 0),
            pr_number=int(data.get("pr_number") or 0),
            head_sha=data.get("head_sha", ""),
            action=data.get("action", ""),
            comment_id=data.get("comment_id"),
            pr_body=data.get("pr_body"),
            id=data.get("id", ""),
            attempts_made=int(data.get("attempts_made", 0)),
            max_attempts=int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            backoff=BackoffPolicy(
                base_delay_seconds=float(
                    backoff.get("base_delay_seconds", DEFAULT_BACKOFF_BASE_SECONDS)
                ),
                factor=float(backoff.get("factor", 2.0)),
            ),
            last_error=data.get("last_error"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Job":
        return cls.from_dict(json.loads(raw))
