"""File-based advisory locks for work trees in the repository cache."""

import errno
import logging
import os
import socket
import time
from pathlib import Path

from review_worker.repo_cache.models import (
    LOCK_FILE_EXTENSION,
    CacheConfig,
    LockMetadata,
    lock_path_for,
)

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """Raised when a work tree lock cannot be taken."""


def is_process_alive(pid: int) -> bool:
    """Whether ``pid`` exists on this host; a permission error means it does."""
    try:
        os.kill(pid, 0)
    except OSError as e:
        return e.errno == errno.EPERM
    return True


class LockManager:
    """Creates, validates and removes ``<path>.lock`` files.

    A lock records the owner's pid and hostname. It is stale once it is older
    than the lock timeout, or when it belongs to this host and its process is
    gone. Acquisition never blocks.
    """

    def __init__(self, config: CacheConfig | None = None) -> None:
        self.config = config or CacheConfig()
        self.hostname = socket.gethostname()
        self._active_locks: set[Path] = set()

    @property
    def active_locks(self) -> set[Path]:
        return set(self._active_locks)

    def read_lock(self, lock_path: Path) -> LockMetadata | None:
        """Read a lock file, returning None when it is missing or unreadable."""
        try:
            return LockMetadata.from_json(lock_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable lock file {lock_path}: {e}")
            return None

    def is_stale(self, metadata: LockMetadata) -> bool:
        """Whether a lock no longer protects anything."""
        age_ms = time.time() * 1000 - metadata.created_at_ms
        if age_ms > self.config.lock_timeout_seconds * 1000:
            return True
        return metadata.hostname == self.hostname and not is_process_alive(metadata.pid)

    def _is_stale_file(self, lock_path: Path) -> bool:
        metadata = self.read_lock(lock_path)
        if metadata is not None:
            return self.is_stale(metadata)
        # Corrupt lock files only expire by age
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > self.config.lock_timeout_seconds

    def acquire(self, resource_path: Path | str, job_id: str) -> bool:
        """Try to take the lock for ``resource_path``.

        A stale existing lock is removed and acquisition is retried once.

        Args:
            resource_path: Work tree directory the lock protects
            job_id: Job taking the lock

        Returns:
            True if this process now holds the lock
        """
        lock_path = lock_path_for(resource_path)
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(2):
            metadata = LockMetadata(
                pid=os.getpid(),
                hostname=self.hostname,
                created_at_ms=int(time.time() * 1000),
                job_id=job_id,
            )
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if attempt == 0 and self._is_stale_file(lock_path):
                    logger.info(f"Removing stale lock {lock_path}")
                    lock_path.unlink(missing_ok=True)
                    continue
                return False
            except OSError as e:
                logger.error(f"Failed to acquire lock {lock_path}: {e}")
                return False

            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(metadata.to_json())
            self._active_locks.add(lock_path)
            return True

        return False

    def release(self, resource_path: Path | str) -> None:
        """Remove the lock if this process on this host owns it."""
        lock_path = lock_path_for(resource_path)
        metadata = self.read_lock(lock_path)
        if metadata and metadata.pid == os.getpid() and metadata.hostname == self.hostname:
            try:
                lock_path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to release lock {lock_path}: {e}")
                return
        self._active_locks.discard(lock_path)

    def release_all(self) -> None:
        """Remove every lock this manager acquired (used at shutdown)."""
        for lock_path in list(self._active_locks):
            try:
                lock_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove lock {lock_path} during shutdown: {e}")
        self._active_locks.clear()

    def is_lock_valid(self, resource_path: Path | str) -> bool:
        """Whether ``resource_path`` is currently protected by a live lock."""
        metadata = self.read_lock(lock_path_for(resource_path))
        return metadata is not None and not self.is_stale(metadata)

    def clean_stale_locks(self, base_dir: Path | str | None = None) -> int:
        """Remove stale lock files directly under ``base_dir``.

        Returns:
            Number of locks removed
        """
        directory = Path(base_dir) if base_dir is not None else self.config.base_dir
        cleaned = 0
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return 0

        for entry in entries:
            if not entry.name.endswith(LOCK_FILE_EXTENSION) or not entry.is_file():
                continue
            if self._is_stale_file(entry):
                entry.unlink(missing_ok=True)
                self._active_locks.discard(entry)
                cleaned += 1
                logger.info(f"Cleaned stale lock {entry}")
        return cleaned
