"""Errors raised by AI providers and the gateway."""


class AIError(Exception):
    """Base class for AI call failures."""

    def __init__(self, message: str, code: str = "unknown_error") -> None:
        super().__init__(message)
        self.code = code


class RetryableAIError(AIError):
    """Transient failure (timeout, rate limit, overload, 5xx); the same model may be retried."""


class TerminalAIError(AIError):
    """Failure that retrying the same model won't fix (auth, schema violation)."""


class AIExhaustedError(AIError):
    """Every candidate model failed."""

    def __init__(self, message: str, attempts: list | None = None) -> None:
        super().__init__(message, code="all_models_failed")
        self.attempts = attempts or []
