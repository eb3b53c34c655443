"""Clones a repository into a locked work tree and builds its symbol index."""

import asyncio
import json
import logging
import os
import re
import shutil
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from redis.asyncio import Redis
from redis.exceptions import RedisError

from review_worker.repo_cache.cleanup import CleanupService
from review_worker.repo_cache.lock_manager import LockAcquisitionError, LockManager
from review_worker.repo_cache.models import CacheConfig
from review_worker.repo_cache.symbols import INDEXED_EXTENSIONS, extract_symbols

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 500 * 1024
MAX_SCAN_CONCURRENCY = 50
INDEX_TTL_SECONDS = 60 * 60
INDEX_KEY_PREFIX = "review-worker:index"

SKIPPED_DIRS = frozenset(
    {".git", "node_modules", "dist", "build", ".output", ".nuxt", "__pycache__", ".venv"}
)

_REPO_NAME_CHARS = re.compile(r"[^\w\-/]")
_URL_CREDENTIALS = re.compile(r"://[^@/\s]+@")


class InvalidRepositoryNameError(ValueError):
    """Raised for repository names that could escape the cache directory."""


class CloneError(Exception):
    """Raised when a git command fails."""


@dataclass
class ProvisionedRepo:
    """A cloned and indexed work tree. Call ``cleanup`` when done with it."""

    index: dict[str, list[str]]
    repo_dir: Path
    cleanup: Callable[[], Awaitable[None]]


def validate_repo_name(repo_full_name: str) -> str:
    """Check that ``repo_full_name`` only uses safe characters.

    Returns:
        The name itself

    Raises:
        InvalidRepositoryNameError: On any other character or ``..``
    """
    if (
        not repo_full_name
        or _REPO_NAME_CHARS.sub("", repo_full_name) != repo_full_name
        or ".." in repo_full_name
    ):
        raise InvalidRepositoryNameError(f"Invalid repository name: {repo_full_name}")
    return repo_full_name


def index_key(repo_full_name: str, job_id: str) -> str:
    return f"{INDEX_KEY_PREFIX}:{repo_full_name}:{job_id}"


def redact_credentials(text: str) -> str:
    return _URL_CREDENTIALS.sub("://***@", text)


async def run_git(*args: str, cwd: Path | None = None) -> None:
    """Run a git command without a shell.

    Raises:
        CloneError: If git exits with a non-zero status
    """
    process = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=str(cwd) if cwd else None,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        message = redact_credentials(stderr.decode("utf-8", errors="replace").strip())
        raise CloneError(f"git {args[0]} failed with code {process.returncode}: {message}")


class RepoProvisioner:
    """Provisions per-job work trees under the cache directory."""

    def __init__(
        self,
        lock_manager: LockManager,
        cleanup_service: CleanupService,
        redis: Redis | None = None,
        config: CacheConfig | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            lock_manager: Lock manager guarding work trees
            cleanup_service: Registry of active work trees
            redis: Optional Redis client used to persist the symbol index
            config: Cache settings (defaults to the lock manager's)
        """
        self.lock_manager = lock_manager
        self.cleanup_service = cleanup_service
        self.redis = redis
        self.config = config or lock_manager.config

    def work_tree_path(self, repo_full_name: str, job_id: str) -> Path:
        """Directory for one job's checkout.

        Raises:
            InvalidRepositoryNameError: If the name or job id would leave the cache
        """
        safe_name = validate_repo_name(repo_full_name).replace("/", "-")
        if not re.fullmatch(r"[\w\-.]+", job_id) or ".." in job_id:
            raise InvalidRepositoryNameError(f"Invalid job id for work tree: {job_id}")
        base_dir = self.config.base_dir.resolve()
        repo_dir = (base_dir / f"{safe_name}-{job_id}").resolve()
        if repo_dir.parent != base_dir:
            raise InvalidRepositoryNameError("Path traversal detected")
        return repo_dir

    async def provision(
        self,
        repo_full_name: str,
        clone_url: str,
        job_id: str,
        revision: str | None = None,
    ) -> ProvisionedRepo:
        """Clone, optionally pin, and index a repository.

        Args:
            repo_full_name: ``owner/name``
            clone_url: URL to clone from (may embed a token)
            job_id: Job owning the work tree
            revision: Optional commit to check out

        Returns:
            ProvisionedRepo whose ``cleanup`` removes the tree and its lock

        Raises:
            InvalidRepositoryNameError: For unsafe names
            LockAcquisitionError: If the work tree is locked by someone else
            CloneError: If git fails
        """
        repo_dir = self.work_tree_path(repo_full_name, job_id)
        self.config.base_dir.mkdir(parents=True, exist_ok=True)

        if not self.lock_manager.acquire(repo_dir, job_id):
            raise LockAcquisitionError(f"Could not acquire lock for {repo_dir}")
        self.cleanup_service.register_work_tree(repo_dir)

        async def cleanup() -> None:
            try:
                await asyncio.to_thread(shutil.rmtree, repo_dir, True)
            finally:
                self.lock_manager.release(repo_dir)
                self.cleanup_service.unregister_work_tree(repo_dir)

        try:
            logger.info(f"Cloning {repo_full_name} to {repo_dir}")
            await run_git("clone", "--depth", "1", clone_url, str(repo_dir))
            if revision:
                await run_git("fetch", "--depth", "1", "origin", revision, cwd=repo_dir)
                await run_git("checkout", "--detach", "FETCH_HEAD", cwd=repo_dir)

            logger.info(f"Starting file scan for indexing: {repo_full_name}")
            index = await self.scan(repo_dir)
        except BaseException:
            await cleanup()
            raise

        symbol_count = sum(len(symbols) for symbols in index.values())
        logger.info(
            f"Repository indexing completed: {repo_full_name} "
            f"({len(index)} files, {symbol_count} symbols)"
        )
        await self._persist_index(repo_full_name, job_id, index)

        return ProvisionedRepo(index=index, repo_dir=repo_dir, cleanup=cleanup)

    @asynccontextmanager
    async def provisioned(
        self,
        repo_full_name: str,
        clone_url: str,
        job_id: str,
        revision: str | None = None,
    ) -> AsyncIterator[ProvisionedRepo]:
        """``provision`` as a context manager; the work tree is always cleaned up."""
        repo = await self.provision(repo_full_name, clone_url, job_id, revision)
        try:
            yield repo
        finally:
            await repo.cleanup()

    async def scan(self, repo_dir: Path) -> dict[str, list[str]]:
        """Build ``relative path -> symbols`` for indexable files under ``repo_dir``."""
        files = await asyncio.to_thread(_collect_files, repo_dir)
        semaphore = asyncio.Semaphore(MAX_SCAN_CONCURRENCY)

        async def process(path: Path) -> tuple[str, list[str]]:
            async with semaphore:
                symbols = await asyncio.to_thread(_index_file, path)
            return path.relative_to(repo_dir).as_posix(), symbols

        results = await asyncio.gather(*(process(path) for path in files))
        return {relative: symbols for relative, symbols in sorted(results) if symbols}

    async def _persist_index(
        self, repo_full_name: str, job_id: str, index: dict[str, list[str]]
    ) -> None:
        if self.redis is None or not index:
            return
        key = index_key(repo_full_name, job_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping={path: json.dumps(symbols) for path, symbols in index.items()})
                pipe.expire(key, INDEX_TTL_SECONDS)
                await pipe.execute()
        except RedisError as e:
            logger.warning(f"Failed to persist repository index {key}: {e}")


def _collect_files(repo_dir: Path) -> list[Path]:
    files: list[Path] = []
    for root, dirs, names in os.walk(repo_dir, followlinks=False):
        dirs[:] = [d for d in dirs if d not in SKIPPED_DIRS]
        for name in names:
            path = Path(root) / name
            if name.endswith(".d.ts") or path.suffix.lower() not in INDEXED_EXTENSIONS:
                continue
            files.append(path)
    return files


def _index_file(path: Path) -> list[str]:
    try:
        stat = path.lstat()
        if path.is_symlink() or stat.st_size > MAX_FILE_SIZE_BYTES:
            return []
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Failed to process file {path}: {e}")
        return []
    return extract_symbols(content, path.suffix)
