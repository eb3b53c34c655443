"""AI review worker: queued multi-agent code reviews for GitHub pull requests."""

__version__ = "0.1.0"
