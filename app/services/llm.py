# =============================================================================
# Reasoning Service Abstraction — Pluggable LLM Backend
# =============================================================================
#
# Every pipeline stage that needs judgement (classification, query
# generation, narrative formatting) talks to a "reasoning service" through
# one `complete()` method. Three implementations:
#
#   LLMProvider (Protocol)
#   ├── WebhookProvider          — workflow-automation webhook, single prompt
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — any OpenAI-compatible API
#   ├── get_llm_provider()       — cached factory, reads from config
#   └── create_provider()        — non-cached factory
#
# DESIGN DECISION: Providers normalise transport failures. A non-2xx
# response, a timeout or an SDK API error is raised as UpstreamServiceError.
# Content is returned untouched; parsing it is the caller's job, because
# what counts as "malformed" differs per stage.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx

from app.config import settings
from app.services.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any reasoning provider.

    For the webhook provider `content` is the raw response body, which may
    be JSON or plain text. Token counts are zero when the backend does not
    report usage.
    """

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Interface shared by every reasoning backend."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
            system: System prompt / instruction template.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).

        Raises:
            UpstreamServiceError: transport failure or non-success response.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Workflow Webhook
# ---------------------------------------------------------------------------


class WebhookProvider:
    """
    Reasoning service behind a workflow-automation webhook.

    The webhook takes one prompt per call, so the system prompt and the
    user messages are joined into a single text block. Payload:

        {"prompt": "...", "timestamp": "<ISO-8601>", "source": "querygenius"}
    """

    def __init__(
        self,
        url: str | None = None,
        client: httpx.AsyncClient | None = None,
        source: str | None = None,
    ) -> None:
        resolved_url = url or settings.webhook_url
        if not resolved_url:
            raise ValueError(
                "No webhook URL configured. Set WEBHOOK_URL in .env"
            )

        self._url = resolved_url
        self._source = source or settings.webhook_source
        # Only a client created here is closed by aclose()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
        )

        logger.info("Initialized WebhookProvider (url=%s)", self._url)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send the prompt to the webhook and return its raw body."""
        parts = [system] if system else []
        parts.extend(m["content"] for m in messages)
        payload = {
            "prompt": "\n\n".join(parts),
            "timestamp": datetime.now(UTC).isoformat(),
            "source": self._source,
        }

        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Webhook request failed: %s", e)
            raise UpstreamServiceError(
                detail=f"Webhook request failed: {type(e).__name__}",
            ) from e

        if response.is_error:
            logger.error(
                "Webhook error: %s %s",
                response.status_code, response.reason_phrase,
            )
            raise UpstreamServiceError(
                detail=f"Webhook returned {response.status_code}",
            )

        return LLMResponse(content=response.text, model="webhook")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# Implementation 2: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    Anthropic takes system prompts as a top-level `system=` kwarg, not as a
    message with role "system".
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(
            api_key=resolved_key,
            timeout=settings.http_timeout_seconds,
        )
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        from anthropic import APIError

        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except APIError as e:
            logger.error("Anthropic API error: %s", e)
            raise UpstreamServiceError(
                detail=f"Anthropic API error: {type(e).__name__}",
            ) from e

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Implementation 3: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that speaks the OpenAI chat completions API.

    Switching vendors is a config change:
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY or OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {
            "api_key": resolved_key,
            "timeout": settings.http_timeout_seconds,
        }
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        from openai import APIError

        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=all_messages,
                max_tokens=max_tokens or self._max_tokens,
                temperature=(
                    temperature if temperature is not None else self._temperature
                ),
            )
        except APIError as e:
            logger.error("OpenAI-compatible API error: %s", e)
            raise UpstreamServiceError(
                detail=f"LLM API error: {type(e).__name__}",
            ) from e

        content = response.choices[0].message.content or ""

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Factory Functions
# ---------------------------------------------------------------------------

KNOWN_PROVIDER_TYPES = {"webhook", "anthropic", "openai_compatible"}

# One cached instance per provider type. SDK clients keep their own
# connection pools, so they are reused across requests.
_providers: dict[str, LLMProvider] = {}


def create_provider(provider_type: str) -> LLMProvider:
    """
    Build a fresh provider of the given type from settings.

    Raises:
        ValueError: unknown provider type or missing URL/API key.
    """
    if provider_type == "webhook":
        return WebhookProvider()
    if provider_type == "anthropic":
        return AnthropicProvider()
    if provider_type == "openai_compatible":
        return OpenAICompatibleProvider()
    raise ValueError(
        f"Unknown provider type '{provider_type}'. "
        f"Supported types: {sorted(KNOWN_PROVIDER_TYPES)}"
    )


def get_llm_provider(provider_type: str | None = None) -> LLMProvider:
    """
    Return the cached provider for `provider_type` (default: llm_provider).
    """
    resolved = provider_type or settings.llm_provider
    if resolved not in _providers:
        _providers[resolved] = create_provider(resolved)
    return _providers[resolved]


def get_structured_llm_provider() -> LLMProvider:
    """Provider used by the descriptor (REST) pipeline."""
    return get_llm_provider(
        settings.structured_llm_provider or settings.llm_provider,
    )


async def close_providers() -> None:
    """Close every cached provider's connection pool and empty the cache."""
    for provider_type, provider in list(_providers.items()):
        await provider.aclose()
        logger.info("Closed %s provider", provider_type)
    _providers.clear()
