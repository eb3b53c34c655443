"""Diff models."""

from dataclasses import dataclass
from enum import Enum


class FileStatus(Enum):
    """Change status of a file in a pull request."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"

    @classmethod
    def parse(cls, value: str) -> "FileStatus":
        """Map GitHub's file status onto the statuses we track."""
        try:
            return cls(value)
        except ValueError:
            # copied / changed / unchanged behave like modifications for review purposes
            return cls.MODIFIED


@dataclass(frozen=True)
class FileDiff:
    """Unified diff for a single file of a pull request."""

    filename: str
    patch: str
    status: FileStatus = FileStatus.MODIFIED
