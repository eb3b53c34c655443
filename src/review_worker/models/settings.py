"""Per-repository review settings."""

from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatchcase

from review_worker.models.findings import Severity

DEFAULT_PREFERRED_MODEL = "default"


class AgentExecutionMode(Enum):
    """How the review agents are dispatched."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class SeverityThreshold(Enum):
    """Lowest severity that gets published as an inline comment."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _THRESHOLD_WEIGHTS[self]


_THRESHOLD_WEIGHTS = {
    SeverityThreshold.LOW: 1,
    SeverityThreshold.MEDIUM: 2,
    SeverityThreshold.HIGH: 3,
    SeverityThreshold.CRITICAL: 4,
}


@dataclass(frozen=True)
class CustomPrompts:
    """Optional system-prompt overrides for the auxiliary operations."""

    description_prompt: str | None = None
    context_selection_prompt: str | None = None
    reply_prompt: str | None = None


@dataclass
class RepositorySettings:
    """Overrides configured for a repository. ``None`` means "use the default"."""

    enabled: bool | None = None
    severity_threshold: SeverityThreshold | None = None
    excluded_patterns: list[str] | None = None
    preferred_model: str | None = None
    agent_execution_mode: AgentExecutionMode | None = None
    verify_comments: bool | None = None
    custom_prompts: CustomPrompts = field(default_factory=CustomPrompts)


@dataclass(frozen=True)
class ResolvedSettings:
    """Settings for one job: defaults merged with the repository's overrides."""

    enabled: bool = True
    severity_threshold: SeverityThreshold = SeverityThreshold.MEDIUM
    excluded_patterns: tuple[str, ...] = ()
    preferred_model: str = DEFAULT_PREFERRED_MODEL
    agent_execution_mode: AgentExecutionMode = AgentExecutionMode.PARALLEL
    verify_comments: bool = True
    custom_prompts: CustomPrompts = field(default_factory=CustomPrompts)

    def should_exclude(self, file_path: str) -> bool:
        return should_exclude_file(file_path, self.excluded_patterns)

    def meets_threshold(self, severity: Severity) -> bool:
        return meets_severity_threshold(severity, self.severity_threshold)


def resolve_settings(overrides: RepositorySettings | None) -> ResolvedSettings:
    """Build the immutable per-job settings value.

    A disabled repository only carries ``enabled=False``; its other overrides
    are irrelevant because no review runs.
    """
    defaults = ResolvedSettings()
    if overrides is None:
        return defaults
    if overrides.enabled is False:
        return ResolvedSettings(enabled=False)

    def pick(value, default):
        return default if value is None else value

    return ResolvedSettings(
        enabled=True,
        severity_threshold=pick(overrides.severity_threshold, defaults.severity_threshold),
        excluded_patterns=tuple(pick(overrides.excluded_patterns, defaults.excluded_patterns)),
        preferred_model=pick(overrides.preferred_model, defaults.preferred_model),
        agent_execution_mode=pick(overrides.agent_execution_mode, defaults.agent_execution_mode),
        verify_comments=pick(overrides.verify_comments, defaults.verify_comments),
        custom_prompts=overrides.custom_prompts,
    )


def should_exclude_file(file_path: str, excluded_patterns: tuple[str, ...] | list[str]) -> bool:
    """Check a changed file against the repository's exclusion globs.

    Absolute paths never come from a pull request and are never excluded.
    """
    if not excluded_patterns:
        return False
    if not file_path or file_path.startswith(("/", "\\")):
        return False
    return any(_glob_match(file_path, pattern) for pattern in excluded_patterns)


def _glob_match(file_path: str, pattern: str) -> bool:
    if fnmatchcase(file_path, pattern):
        return True
    # "**/" also matches zero directories, as in gitignore-style globs
    if pattern.startswith("**/"):
        return fnmatchcase(file_path, pattern[3:])
    return False


def meets_severity_threshold(severity: Severity, threshold: SeverityThreshold) -> bool:
    """Whether ``severity`` is at or above ``threshold``."""
    return severity.weight >= threshold.weight
