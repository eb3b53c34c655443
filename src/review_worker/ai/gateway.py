"""Multi-provider AI gateway with per-model retries and model fallback."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic

from review_worker.ai.errors import AIError, AIExhaustedError, RetryableAIError
from review_worker.ai.models import (
    DEFAULT_MODEL,
    Provider,
    UnknownModelError,
    default_rotation,
    provider_for,
)
from review_worker.ai.providers import ChatProvider, ProviderConfig, SchemaT, TokenUsage
from review_worker.models.execution import AiAttempt, utc_now_iso

if TYPE_CHECKING:
    from review_worker.config import AIConfig

logger = logging.getLogger(__name__)


@dataclass
class AiResult(Generic[SchemaT]):
    """Successful gateway call, with every attempt it took to get there."""

    result: SchemaT
    usage: TokenUsage
    model: str
    duration_ms: int
    attempts: list[AiAttempt] = field(default_factory=list)


class AIGateway:
    """Routes structured-output requests across providers and models.

    Candidates are tried in order: the preferred model (when it is a known,
    non-default model), then every provider's default models. A candidate is
    retried on transient failures and abandoned on terminal ones.
    """

    def __init__(
        self,
        providers: dict[Provider, ChatProvider],
        retries_per_model: int = 2,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        """Initialize the gateway.

        Args:
            providers: Configured provider clients
            retries_per_model: Attempts per candidate model for retryable errors
            retry_delay_seconds: Fixed delay between attempts on the same model
        """
        self.providers = providers
        self.retries_per_model = max(1, retries_per_model)
        self.retry_delay_seconds = retry_delay_seconds

    @classmethod
    def from_config(cls, config: "AIConfig") -> "AIGateway":
        """Build a gateway with one client per provider that has an API key."""
        keys = {
            Provider.ZHIPU: config.zhipu_api_key,
            Provider.OPENROUTER: config.openrouter_api_key,
            Provider.GEMINI: config.gemini_api_key,
        }
        providers = {
            provider: ChatProvider(
                ProviderConfig(
                    provider=provider,
                    api_key=api_key,
                    timeout_seconds=config.timeout_seconds,
                )
            )
            for provider, api_key in keys.items()
            if api_key
        }
        return cls(
            providers,
            retries_per_model=config.retries_per_model,
            retry_delay_seconds=config.retry_delay_seconds,
        )

    async def aclose(self) -> None:
        """Close every provider client."""
        for provider in self.providers.values():
            await provider.close()

    async def __aenter__(self) -> "AIGateway":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def candidate_models(self, preferred_model: str | None = None) -> list[tuple[str, Provider]]:
        """Ordered list of ``(model, provider)`` pairs to try.

        Models whose provider has no usable client are left out.
        """
        candidates: list[tuple[str, Provider]] = []
        if preferred_model and preferred_model != DEFAULT_MODEL:
            try:
                candidates.append((preferred_model, provider_for(preferred_model)))
            except UnknownModelError:
                logger.warning(f"Unknown preferred model {preferred_model!r}, using defaults")

        for model, provider in default_rotation():
            if (model, provider) not in candidates:
                candidates.append((model, provider))

        return [
            (model, provider)
            for model, provider in candidates
            if provider in self.providers and self.providers[provider].available
        ]

    async def ask(
        self,
        content: str,
        system_instruction: str,
        response_schema: type[SchemaT],
        temperature: float = 0.1,
        preferred_model: str | None = DEFAULT_MODEL,
    ) -> AiResult[SchemaT]:
        """Ask for a structured answer, falling back across models.

        Args:
            content: User message
            system_instruction: System prompt
            response_schema: Pydantic model the answer must validate against
            temperature: Sampling temperature
            preferred_model: Model to try first ("default" for the rotation only)

        Returns:
            The first successful result, with all attempts made

        Raises:
            AIExhaustedError: If every candidate model failed
        """
        candidates = self.candidate_models(preferred_model)
        if not candidates:
            raise AIExhaustedError("No AI provider is configured")

        attempts: list[AiAttempt] = []
        last_error: AIError | None = None
        start = time.monotonic()

        for model, provider in candidates:
            client = self.providers[provider]
            for attempt_number in range(1, self.retries_per_model + 1):
                started_at = utc_now_iso()
                attempt_start = time.monotonic()
                try:
                    response = await client.complete(
                        model=model,
                        system_instruction=system_instruction,
                        content=content,
                        response_schema=response_schema,
                        temperature=temperature,
                    )
                except AIError as e:
                    last_error = e
                    attempts.append(
                        AiAttempt(
                            model=model,
                            started_at=started_at,
                            duration_ms=int((time.monotonic() - attempt_start) * 1000),
                            failed_at=utc_now_iso(),
                            error=e.code,
                        )
                    )
                    if not isinstance(e, RetryableAIError):
                        logger.warning(f"Model {model} failed ({e.code}), moving to next model")
                        break
                    if attempt_number < self.retries_per_model:
                        logger.info(
                            f"Model {model} attempt {attempt_number} failed ({e.code}), retrying"
                        )
                        await asyncio.sleep(self.retry_delay_seconds)
                    else:
                        logger.warning(f"Model {model} exhausted its retries ({e.code})")
                    continue

                attempts.append(
                    AiAttempt(
                        model=model,
                        started_at=started_at,
                        duration_ms=response.duration_ms,
                        completed_at=utc_now_iso(),
                        input_tokens=response.usage.input_tokens,
                        output_tokens=response.usage.output_tokens,
                    )
                )
                return AiResult(
                    result=response.result,
                    usage=response.usage,
                    model=model,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    attempts=attempts,
                )

        message = str(last_error) if last_error else "All models failed"
        raise AIExhaustedError(f"All AI models failed. Last error: {message}", attempts=attempts)
