"""Repository cache: locked per-job work trees, cleanup and indexing."""

from review_worker.repo_cache.cleanup import CleanupService
from review_worker.repo_cache.lock_manager import LockAcquisitionError, LockManager
from review_worker.repo_cache.models import CacheConfig, CleanupResult, LockMetadata
from review_worker.repo_cache.provisioner import (
    CloneError,
    InvalidRepositoryNameError,
    ProvisionedRepo,
    RepoProvisioner,
    validate_repo_name,
)

__all__ = [
    "CacheConfig",
    "CleanupResult",
    "CleanupService",
    "CloneError",
    "InvalidRepositoryNameError",
    "LockAcquisitionError",
    "LockManager",
    "LockMetadata",
    "ProvisionedRepo",
    "RepoProvisioner",
    "validate_repo_name",
]
