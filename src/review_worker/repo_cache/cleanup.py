"""Removes orphaned work trees and stale locks from the repository cache."""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path

from review_worker.repo_cache.lock_manager import LockManager
from review_worker.repo_cache.models import CacheConfig, CleanupResult, lock_path_for

logger = logging.getLogger(__name__)

# Shared download cache, never treated as a work tree
CACHE_DIR_NAME = "cache"


def directory_size(path: Path) -> int:
    """Total size in bytes of the regular files under ``path``."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


class CleanupService:
    """Keeps the work-tree cache bounded.

    Work trees in use by this process are registered and never touched by a
    sweep. Other trees are removed when their lock is stale, or, without a
    lock, when they haven't been modified for the stale age.
    """

    def __init__(self, lock_manager: LockManager, config: CacheConfig | None = None) -> None:
        self.lock_manager = lock_manager
        self.config = config or lock_manager.config
        self._active_work_trees: set[Path] = set()
        self._task: asyncio.Task | None = None
        self._shutting_down = False

    @property
    def active_work_trees(self) -> set[Path]:
        return set(self._active_work_trees)

    def register_work_tree(self, path: Path | str) -> None:
        self._active_work_trees.add(Path(path).resolve())

    def unregister_work_tree(self, path: Path | str) -> None:
        self._active_work_trees.discard(Path(path).resolve())

    def start(self, interval_seconds: float | None = None) -> None:
        """Start the periodic sweep; calling it again is a no-op."""
        if self._task is not None and not self._task.done():
            return
        interval = interval_seconds or self.config.cleanup_interval_seconds
        logger.info(f"Starting periodic cleanup every {interval}s")
        self._task = asyncio.create_task(self._run_periodically(interval), name="repo-cache-cleanup")

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped periodic cleanup")

    async def _run_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._shutting_down:
                return
            result = await self.run_cleanup()
            if result.errors:
                logger.warning(f"Periodic cleanup finished with {len(result.errors)} errors")

    async def cleanup_on_startup(self) -> CleanupResult:
        """Crash recovery sweep run before the worker takes jobs."""
        logger.info("Running startup cleanup")
        return await self.run_cleanup()

    async def run_cleanup(self) -> CleanupResult:
        """Run one sweep: orphaned trees, stray stale locks, then the size limit."""
        return await asyncio.to_thread(self._run_cleanup_sync)

    def _run_cleanup_sync(self) -> CleanupResult:
        result = CleanupResult()
        logger.info("Running cleanup cycle")

        result.absorb(self._clean_orphaned_work_trees())
        try:
            result.stale_locks_cleaned += self.lock_manager.clean_stale_locks(self.config.base_dir)
        except OSError as e:
            logger.error(f"Failed to clean stale locks: {e}")
            result.errors.append(e)

        limit_result = self._enforce_size_limit()
        if limit_result.orphaned_work_trees_cleaned:
            logger.info(
                f"Cache size limit enforced: removed {limit_result.orphaned_work_trees_cleaned} "
                f"work trees, freed {limit_result.bytes_freed} bytes"
            )
        result.absorb(limit_result)

        logger.info(
            f"Cleanup cycle completed: {result.orphaned_work_trees_cleaned} work trees, "
            f"{result.stale_locks_cleaned} locks, {result.bytes_freed} bytes freed, "
            f"{len(result.errors)} errors"
        )
        return result

    def _candidate_dirs(self) -> list[Path]:
        try:
            entries = list(self.config.base_dir.iterdir())
        except FileNotFoundError:
            return []
        return [
            entry
            for entry in entries
            if entry.is_dir() and not entry.is_symlink() and entry.name != CACHE_DIR_NAME
        ]

    def _should_remove(self, work_tree: Path) -> bool:
        metadata = self.lock_manager.read_lock(lock_path_for(work_tree))
        if metadata is not None:
            return self.lock_manager.is_stale(metadata)
        age = time.time() - work_tree.stat().st_mtime
        return age > self.config.stale_work_tree_age_seconds

    def _clean_orphaned_work_trees(self) -> CleanupResult:
        result = CleanupResult()
        for work_tree in self._candidate_dirs():
            if work_tree in self._active_work_trees:
                continue
            try:
                if not self._should_remove(work_tree):
                    continue
                size = directory_size(work_tree)
                self.remove_work_tree(work_tree)
            except OSError as e:
                logger.error(f"Failed to clean work tree {work_tree}: {e}")
                result.errors.append(e)
                continue
            result.orphaned_work_trees_cleaned += 1
            result.bytes_freed += size
            logger.info(f"Cleaned orphaned work tree {work_tree} ({size} bytes)")
        return result

    def _enforce_size_limit(self) -> CleanupResult:
        result = CleanupResult()
        limit = self.config.max_cache_size_bytes
        if not limit:
            return result

        total = 0
        candidates: list[tuple[float, int, Path]] = []
        for work_tree in self._candidate_dirs():
            try:
                size = directory_size(work_tree)
                total += size
                if work_tree in self._active_work_trees or self.lock_manager.is_lock_valid(work_tree):
                    continue
                candidates.append((work_tree.stat().st_mtime, size, work_tree))
            except OSError as e:
                result.errors.append(e)

        if total <= limit:
            return result

        logger.info(f"Cache size {total} exceeds limit {limit}, evicting least recently used")
        for _mtime, size, work_tree in sorted(candidates, key=lambda c: c[0]):
            if total <= limit:
                break
            try:
                self.remove_work_tree(work_tree)
            except OSError as e:
                result.errors.append(e)
                continue
            result.orphaned_work_trees_cleaned += 1
            result.bytes_freed += size
            total -= size
        return result

    def remove_work_tree(self, work_tree: Path) -> None:
        """Delete a work tree and its lock file."""
        shutil.rmtree(work_tree, ignore_errors=False)
        lock_path_for(work_tree).unlink(missing_ok=True)
        self._active_work_trees.discard(work_tree)

    async def shutdown_cleanup(self) -> None:
        """Remove registered work trees and release every lock; best effort."""
        self._shutting_down = True
        await self.stop()

        work_trees = list(self._active_work_trees)
        logger.info(f"Running shutdown cleanup for {len(work_trees)} work trees")
        for work_tree in work_trees:
            try:
                await asyncio.to_thread(shutil.rmtree, work_tree, True)
                lock_path_for(work_tree).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to clean up work tree {work_tree} during shutdown: {e}")
            self._active_work_trees.discard(work_tree)

        self.lock_manager.release_all()
        logger.info("Shutdown cleanup completed")
