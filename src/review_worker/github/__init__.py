"""GitHub integration for the review worker."""

from review_worker.github.app import GitHubAppAuth, GitHubAppError
from review_worker.github.client import GitHubClient, GitHubClientFactory, ThreadComment

__all__ = [
    "GitHubAppAuth",
    "GitHubAppError",
    "GitHubClient",
    "GitHubClientFactory",
    "ThreadComment",
]
