"""AI provider access for the review worker."""

from review_worker.ai.errors import AIError, AIExhaustedError, RetryableAIError, TerminalAIError
from review_worker.ai.gateway import AIGateway, AiResult
from review_worker.ai.models import (
    DEFAULT_MODEL,
    MODEL_REGISTRY,
    Provider,
    UnknownModelError,
    provider_for,
)
from review_worker.ai.providers import ChatProvider, ProviderConfig, TokenUsage

__all__ = [
    "AIError",
    "AIExhaustedError",
    "AIGateway",
    "AiResult",
    "ChatProvider",
    "DEFAULT_MODEL",
    "MODEL_REGISTRY",
    "Provider",
    "ProviderConfig",
    "RetryableAIError",
    "TerminalAIError",
    "TokenUsage",
    "UnknownModelError",
    "provider_for",
]
