"""Data models for the repository cache."""

import json
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

LOCK_FILE_EXTENSION = ".lock"
DEFAULT_BASE_DIR = Path(tempfile.gettempdir()) / "review-worker-repos"


@dataclass
class CacheConfig:
    """Settings shared by the lock manager, cleanup service and provisioner."""

    base_dir: Path = DEFAULT_BASE_DIR
    stale_work_tree_age_seconds: float = 60 * 60
    lock_timeout_seconds: float = 5 * 60
    cleanup_interval_seconds: float = 15 * 60
    max_cache_size_bytes: int | None = 5 * 1024**3

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()


@dataclass(frozen=True)
class LockMetadata:
    """Contents of a ``.lock`` file next to a work tree."""

    pid: int
    hostname: str
    created_at_ms: int
    job_id: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "pid": self.pid,
                "createdAt": self.created_at_ms,
                "jobId": self.job_id,
                "hostname": self.hostname,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "LockMetadata":
        """Parse lock file contents.

        Raises:
            ValueError: If the contents are not a valid lock record
        """
        try:
            data = json.loads(raw)
            return cls(
                pid=int(data["pid"]),
                hostname=str(data["hostname"]),
                created_at_ms=int(data["createdAt"]),
                job_id=str(data.get("jobId", "")),
            )
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid lock metadata: {e}") from e


@dataclass
class CleanupResult:
    """Outcome of one cleanup sweep."""

    orphaned_work_trees_cleaned: int = 0
    stale_locks_cleaned: int = 0
    bytes_freed: int = 0
    errors: list[Exception] = field(default_factory=list)

    def absorb(self, other: "CleanupResult") -> None:
        self.orphaned_work_trees_cleaned += other.orphaned_work_trees_cleaned
        self.stale_locks_cleaned += other.stale_locks_cleaned
        self.bytes_freed += other.bytes_freed
        self.errors.extend(other.errors)


def lock_path_for(resource_path: Path | str) -> Path:
    return Path(f"{resource_path}{LOCK_FILE_EXTENSION}")
