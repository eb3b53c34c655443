"""Registry of the AI models the gateway may call, and which provider serves each."""

from enum import Enum

DEFAULT_MODEL = "default"


class Provider(Enum):
    """Model providers reachable through an OpenAI-compatible endpoint."""

    ZHIPU = "zhipu"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


PROVIDER_BASE_URLS = {
    Provider.ZHIPU: "https://api.z.ai/api/paas/v4",
    Provider.OPENROUTER: "https://openrouter.ai/api/v1",
    Provider.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai",
}

# Providers are tried in this order, each with its models in listed order
DEFAULT_MODELS: dict[Provider, tuple[str, ...]] = {
    Provider.ZHIPU: (
        "glm-4.5-flash",
        "glm-4.5-air",
    ),
    Provider.OPENROUTER: (
        "upstage/solar-pro-3:free",
        "qwen/qwen3-next-80b-a3b-instruct:free",
        "mistralai/devstral-2512:free",
        "google/gemma-3-27b-it:free",
        "tngtech/tng-r1t-chimera:free",
    ),
    Provider.GEMINI: (
        "gemini-3-flash-preview",
        "gemini-2.5-flash",
    ),
}

# Models that may be selected explicitly but are not in a default rotation
_EXTRA_MODELS: dict[str, Provider] = {
    "glm-4.6": Provider.ZHIPU,
    "gemini-2.5-flash-lite": Provider.GEMINI,
    "gemini-2.5-pro": Provider.GEMINI,
}

MODEL_REGISTRY: dict[str, Provider] = {
    **{model: provider for provider, models in DEFAULT_MODELS.items() for model in models},
    **_EXTRA_MODELS,
}


class UnknownModelError(ValueError):
    """Raised for a model id that isn't in the registry."""


def provider_for(model: str) -> Provider:
    """Look up the provider serving ``model``.

    Raises:
        UnknownModelError: If the model isn't registered
    """
    try:
        return MODEL_REGISTRY[model]
    except KeyError:
        raise UnknownModelError(f"Unknown model: {model}") from None


def default_rotation() -> list[tuple[str, Provider]]:
    """All default models in fallback order."""
    return [(model, provider) for provider, models in DEFAULT_MODELS.items() for model in models]
