"""Configuration loading and validation for the review worker."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from review_worker.ai.models import DEFAULT_MODEL, UnknownModelError, provider_for
from review_worker.models.settings import (
    AgentExecutionMode,
    CustomPrompts,
    RepositorySettings,
    SeverityThreshold,
)
from review_worker.repo_cache.models import DEFAULT_BASE_DIR, CacheConfig


@dataclass
class AIConfig:
    """AI provider configuration. A provider without a key is skipped."""

    zhipu_api_key: str | None = None
    openrouter_api_key: str | None = None
    gemini_api_key: str | None = None
    timeout_seconds: float = 120.0
    retries_per_model: int = 2
    retry_delay_seconds: float = 1.0

    @property
    def has_provider(self) -> bool:
        return bool(self.zhipu_api_key or self.openrouter_api_key or self.gemini_api_key)


@dataclass
class GitHubConfig:
    """GitHub integration configuration."""

    token: str | None = None
    app_id: str | None = None
    private_key: str | None = None
    private_key_path: str | None = None
    webhook_secret: str | None = None
    base_url: str | None = None
    bot_login: str | None = None

    @property
    def uses_app(self) -> bool:
        return bool(self.app_id and (self.private_key or self.private_key_path))

    def load_private_key(self) -> str | None:
        """The app's PEM key, read from ``private_key_path`` if not given inline."""
        if self.private_key:
            return self.private_key
        if self.private_key_path:
            return Path(self.private_key_path).read_text()
        return None


@dataclass
class RedisConfig:
    url: str = "redis://localhost:6379/0"
    queue_prefix: str = "review-worker:queue"


@dataclass
class WorkerSettings:
    """Queue worker configuration."""

    concurrency: int = 5
    max_starts_per_window: int = 10
    start_window_seconds: float = 1.0
    claim_timeout_seconds: float = 1.0
    shutdown_grace_seconds: float = 30.0
    lease_seconds: float = 900.0
    max_attempts: int = 3
    backoff_base_seconds: float = 30.0
    repository_context: bool = True


@dataclass
class OrchestratorSettings:
    """Orchestrator configuration."""

    max_agent_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    max_comments: int = 30
    execution_mode: str = AgentExecutionMode.SEQUENTIAL.value


@dataclass
class RepoCacheSettings:
    """Repository cache configuration."""

    base_dir: str = str(DEFAULT_BASE_DIR)
    stale_work_tree_age_seconds: float = 3600.0
    lock_timeout_seconds: float = 300.0
    cleanup_interval_seconds: float = 900.0
    max_cache_size_bytes: int | None = 5 * 1024**3

    def to_cache_config(self) -> CacheConfig:
        return CacheConfig(
            base_dir=Path(self.base_dir),
            stale_work_tree_age_seconds=self.stale_work_tree_age_seconds,
            lock_timeout_seconds=self.lock_timeout_seconds,
            cleanup_interval_seconds=self.cleanup_interval_seconds,
            max_cache_size_bytes=self.max_cache_size_bytes,
        )


@dataclass
class RateLimitSettings:
    """Webhook rate limit, per installation."""

    max_requests: int = 100
    window_seconds: int = 60
    key_prefix: str = "review-worker:webhook:ratelimit"


@dataclass
class ServerSettings:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    health_check_path: str = "/health"


@dataclass
class Config:
    """Complete application configuration."""

    ai: AIConfig = field(default_factory=AIConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    repo_cache: RepoCacheSettings = field(default_factory=RepoCacheSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    repositories: dict[str, RepositorySettings] = field(default_factory=dict)
    # Problems found while parsing, reported by validate_config
    parse_errors: list[str] = field(default_factory=list)

    def repository_settings(self, repo_full_name: str) -> RepositorySettings | None:
        """Overrides for a repository; names compare case-insensitively."""
        return self.repositories.get(repo_full_name.lower())


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file (default: config.yaml)

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = Path("config.yaml")
        if not config_path.exists():
            config_path = Path("config.example.yaml")

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}

    raw_config = _expand_env_vars(raw_config)

    return _parse_config(raw_config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in config."""
    if isinstance(obj, str):
        if obj.startswith("${") and obj.endswith("}"):
            env_var = obj[2:-1]
            return os.environ.get(env_var, "")
        return obj
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _env_fallback(value: Any, env_var: str) -> str | None:
    return value or os.environ.get(env_var) or None


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw config dict into Config object."""
    errors: list[str] = []

    ai_raw = raw.get("ai") or {}
    ai = AIConfig(
        zhipu_api_key=_env_fallback(ai_raw.get("zhipu_api_key"), "ZAI_API_KEY"),
        openrouter_api_key=_env_fallback(ai_raw.get("openrouter_api_key"), "OPENROUTER_API_KEY"),
        gemini_api_key=_env_fallback(ai_raw.get("gemini_api_key"), "GEMINI_API_KEY"),
        timeout_seconds=float(ai_raw.get("timeout_seconds", 120.0)),
        retries_per_model=int(ai_raw.get("retries_per_model", 2)),
        retry_delay_seconds=float(ai_raw.get("retry_delay_seconds", 1.0)),
    )

    github_raw = raw.get("github") or {}
    github = GitHubConfig(
        token=_env_fallback(github_raw.get("token"), "GITHUB_TOKEN"),
        app_id=_env_fallback(github_raw.get("app_id"), "GITHUB_APP_ID"),
        private_key=_env_fallback(github_raw.get("private_key"), "GITHUB_APP_PRIVATE_KEY"),
        private_key_path=github_raw.get("private_key_path") or None,
        webhook_secret=_env_fallback(github_raw.get("webhook_secret"), "GITHUB_WEBHOOK_SECRET"),
        base_url=github_raw.get("base_url") or None,
        bot_login=github_raw.get("bot_login") or None,
    )

    redis_raw = raw.get("redis") or {}
    redis = RedisConfig(
        url=_env_fallback(redis_raw.get("url"), "REDIS_URL") or RedisConfig.url,
        queue_prefix=redis_raw.get("queue_prefix", RedisConfig.queue_prefix),
    )

    worker_raw = raw.get("worker") or {}
    worker = WorkerSettings(
        concurrency=int(worker_raw.get("concurrency", 5)),
        max_starts_per_window=int(worker_raw.get("max_starts_per_window", 10)),
        start_window_seconds=float(worker_raw.get("start_window_seconds", 1.0)),
        claim_timeout_seconds=float(worker_raw.get("claim_timeout_seconds", 1.0)),
        shutdown_grace_seconds=float(worker_raw.get("shutdown_grace_seconds", 30.0)),
        lease_seconds=float(worker_raw.get("lease_seconds", 900.0)),
        max_attempts=int(worker_raw.get("max_attempts", 3)),
        backoff_base_seconds=float(worker_raw.get("backoff_base_seconds", 30.0)),
        repository_context=bool(worker_raw.get("repository_context", True)),
    )

    orch_raw = raw.get("orchestrator") or {}
    orchestrator = OrchestratorSettings(
        max_agent_attempts=int(orch_raw.get("max_agent_attempts", 3)),
        retry_base_delay_seconds=float(orch_raw.get("retry_base_delay_seconds", 1.0)),
        max_comments=int(orch_raw.get("max_comments", 30)),
        execution_mode=str(
            orch_raw.get("execution_mode", AgentExecutionMode.SEQUENTIAL.value)
        ).lower(),
    )

    cache_raw = raw.get("repo_cache") or {}
    repo_cache = RepoCacheSettings(
        base_dir=str(cache_raw.get("base_dir", DEFAULT_BASE_DIR)),
        stale_work_tree_age_seconds=float(cache_raw.get("stale_work_tree_age_seconds", 3600.0)),
        lock_timeout_seconds=float(cache_raw.get("lock_timeout_seconds", 300.0)),
        cleanup_interval_seconds=float(cache_raw.get("cleanup_interval_seconds", 900.0)),
        max_cache_size_bytes=cache_raw.get("max_cache_size_bytes", 5 * 1024**3),
    )

    limit_raw = raw.get("rate_limit") or {}
    rate_limit = RateLimitSettings(
        max_requests=int(limit_raw.get("max_requests", 100)),
        window_seconds=int(limit_raw.get("window_seconds", 60)),
        key_prefix=limit_raw.get("key_prefix", RateLimitSettings.key_prefix),
    )

    server_raw = raw.get("server") or {}
    server = ServerSettings(
        host=server_raw.get("host", "0.0.0.0"),
        port=int(server_raw.get("port", 8080)),
        health_check_path=server_raw.get("health_check_path", "/health"),
    )

    repositories = {}
    for name, repo_raw in (raw.get("repositories") or {}).items():
        repositories[str(name).lower()] = _parse_repository(str(name), repo_raw or {}, errors)

    return Config(
        ai=ai,
        github=github,
        redis=redis,
        worker=worker,
        orchestrator=orchestrator,
        repo_cache=repo_cache,
        rate_limit=rate_limit,
        server=server,
        repositories=repositories,
        parse_errors=errors,
    )


def _parse_repository(name: str, raw: dict[str, Any], errors: list[str]) -> RepositorySettings:
    """Parse one repository's overrides; invalid values are reported and ignored."""
    threshold = None
    if raw.get("severity_threshold") is not None:
        try:
            threshold = SeverityThreshold(str(raw["severity_threshold"]).lower())
        except ValueError:
            errors.append(f"{name}: invalid severity_threshold {raw['severity_threshold']!r}")

    mode = None
    if raw.get("agent_execution_mode") is not None:
        try:
            mode = AgentExecutionMode(str(raw["agent_execution_mode"]).lower())
        except ValueError:
            errors.append(f"{name}: invalid agent_execution_mode {raw['agent_execution_mode']!r}")

    excluded = raw.get("excluded_patterns")
    if excluded is not None and not isinstance(excluded, list):
        errors.append(f"{name}: excluded_patterns must be a list")
        excluded = None

    prompts_raw = raw.get("custom_prompts") or {}
    return RepositorySettings(
        enabled=raw.get("enabled"),
        severity_threshold=threshold,
        excluded_patterns=[str(pattern) for pattern in excluded] if excluded is not None else None,
        preferred_model=raw.get("preferred_model"),
        agent_execution_mode=mode,
        verify_comments=raw.get("verify_comments"),
        custom_prompts=CustomPrompts(
            description_prompt=prompts_raw.get("description_prompt") or None,
            context_selection_prompt=prompts_raw.get("context_selection_prompt") or None,
            reply_prompt=prompts_raw.get("reply_prompt") or None,
        ),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of errors.

    Args:
        config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = list(config.parse_errors)

    if not config.ai.has_provider:
        errors.append(
            "No AI provider configured "
            "(set ZAI_API_KEY, OPENROUTER_API_KEY or GEMINI_API_KEY, or the ai section)"
        )

    if not config.github.uses_app and not config.github.token:
        errors.append(
            "Missing GitHub credentials (set GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY, or GITHUB_TOKEN)"
        )

    if not config.github.uses_app and not config.github.bot_login:
        errors.append("github.bot_login is required when not running as a GitHub App")

    try:
        AgentExecutionMode(config.orchestrator.execution_mode)
    except ValueError:
        errors.append(f"Invalid orchestrator.execution_mode: {config.orchestrator.execution_mode}")

    positive = {
        "worker.concurrency": config.worker.concurrency,
        "worker.max_starts_per_window": config.worker.max_starts_per_window,
        "worker.max_attempts": config.worker.max_attempts,
        "orchestrator.max_agent_attempts": config.orchestrator.max_agent_attempts,
        "orchestrator.max_comments": config.orchestrator.max_comments,
        "ai.retries_per_model": config.ai.retries_per_model,
        "rate_limit.max_requests": config.rate_limit.max_requests,
        "rate_limit.window_seconds": config.rate_limit.window_seconds,
    }
    for name, value in positive.items():
        if value <= 0:
            errors.append(f"{name} must be positive (got {value})")

    for name, settings in config.repositories.items():
        model = settings.preferred_model
        if not model or model == DEFAULT_MODEL:
            continue
        try:
            provider_for(model)
        except UnknownModelError:
            errors.append(f"{name}: unknown preferred_model {model!r}")

    return errors
