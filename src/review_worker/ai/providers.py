"""OpenAI-compatible chat completion client used for every provider."""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from review_worker.ai.errors import RetryableAIError, TerminalAIError
from review_worker.ai.models import PROVIDER_BASE_URLS, Provider

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

OVERLOADED_STATUSES = {503, 529}


@dataclass
class ProviderConfig:
    """Connection settings for one provider."""

    provider: Provider
    api_key: str
    base_url: str | None = None
    timeout_seconds: float = 120.0

    @property
    def resolved_base_url(self) -> str:
        return self.base_url or PROVIDER_BASE_URLS[self.provider]


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class AiResponse(Generic[SchemaT]):
    """Parsed result of a single successful call."""

    result: SchemaT
    usage: TokenUsage
    model: str
    duration_ms: int


class ChatProvider:
    """Client for one provider's ``/chat/completions`` endpoint."""

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the provider client.

        Args:
            config: Provider connection settings
            client: Optional preconfigured HTTP client (tests inject a mock transport)
        """
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.resolved_base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout_seconds,
        )

    @property
    def provider(self) -> Provider:
        return self.config.provider

    @property
    def available(self) -> bool:
        """Whether an API key is configured for this provider."""
        return bool(self.config.api_key)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ChatProvider":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def complete(
        self,
        model: str,
        system_instruction: str,
        content: str,
        response_schema: type[SchemaT],
        temperature: float = 0.1,
    ) -> AiResponse[SchemaT]:
        """Run one chat completion and validate it against ``response_schema``.

        Args:
            model: Model id as the provider knows it
            system_instruction: System prompt
            content: User message
            response_schema: Pydantic model the JSON answer must conform to
            temperature: Sampling temperature

        Returns:
            Parsed response with token usage

        Raises:
            RetryableAIError: Timeouts, transport errors, rate limits, 5xx
            TerminalAIError: Auth failures, bad requests, schema violations
        """
        if not self.available:
            raise TerminalAIError(
                f"{self.provider.value} API key not configured", code="authentication_error"
            )

        body = {
            "model": model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _with_schema(system_instruction, response_schema)},
                {"role": "user", "content": content},
            ],
        }

        start = time.monotonic()
        logger.debug(f"Sending request to {self.provider.value} ({model})")
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise RetryableAIError(f"{model} request timeout: {e}", code="timeout") from e
        except httpx.TransportError as e:
            raise RetryableAIError(f"{model} network error: {e}", code="network_error") from e

        _raise_for_status(model, response)

        try:
            data = response.json()
            message = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TerminalAIError(
                f"{model} returned an unexpected response shape: {e}", code="invalid_response"
            ) from e

        try:
            result = response_schema.model_validate(_parse_json_response(message))
        except (ValueError, ValidationError) as e:
            raise TerminalAIError(
                f"{model} response does not match schema: {e}", code="schema_violation"
            ) from e

        usage = data.get("usage") or {}
        return AiResponse(
            result=result,
            usage=TokenUsage(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
            ),
            model=model,
            duration_ms=int((time.monotonic() - start) * 1000),
        )


def _with_schema(system_instruction: str, response_schema: type[BaseModel]) -> str:
    schema = json.dumps(response_schema.model_json_schema())
    return (
        f"{system_instruction}\n\n"
        f"Respond ONLY with a JSON object that conforms to this JSON schema:\n{schema}"
    )


def _raise_for_status(model: str, response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return

    detail = response.text[:300]
    message = f"{model} returned HTTP {status}: {detail}"
    lowered = detail.lower()

    if status in (401, 403):
        raise TerminalAIError(message, code="authentication_error")
    if status == 429:
        if "quota" in lowered:
            raise TerminalAIError(message, code="quota_exceeded")
        raise RetryableAIError(message, code="rate_limit_exceeded")
    if status in OVERLOADED_STATUSES:
        raise RetryableAIError(message, code="overloaded")
    if status >= 500:
        raise RetryableAIError(message, code="server_error")
    if status == 408:
        raise RetryableAIError(message, code="timeout")
    raise TerminalAIError(message, code=f"http_{status}")


def _parse_json_response(content: str) -> Any:
    """Parse JSON from a model answer, handling markdown code blocks."""
    content = content.strip()

    if "```json" in content:
        match = re.search(r"```json\s*([\s\S]*?)```", content)
        if match:
            content = match.group(1).strip()
    elif "```" in content:
        match = re.search(r"```\s*([\s\S]*?)```", content)
        if match:
            content = match.group(1).strip()

    if not content.startswith(("{", "[")):
        json_match = re.search(r"\{[\s\S]*\}", content)
        if json_match:
            content = json_match.group(0)

    return json.loads(content)
