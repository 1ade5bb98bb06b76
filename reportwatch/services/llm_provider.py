"""
LLM provider abstraction for the AI collaborators.

Calls go to Anthropic Claude or to any OpenAI-compatible endpoint (OpenAI
itself, or a local Ollama/vLLM server), optionally falling back to the
other. Calls are synchronous; the enrichment service runs them in a worker
thread under a timeout, so SDK-level retries are disabled.

Both collaborators expect a JSON object back. A reply cut off by the token
limit cannot be parsed, so it is raised as a PARTIAL error instead of being
returned.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .llm_errors import LLMError, ErrorCategory, classify_llm_error

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


@dataclass
class LLMResponse:
    """Reply text plus accounting from whichever provider answered."""
    text: str
    provider: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency_ms: Optional[int] = None


def _truncated(provider: str, model: str, max_tokens: int) -> LLMError:
    return LLMError(
        category=ErrorCategory.PARTIAL,
        error_code="truncated",
        message=f"{model} stopped at max_tokens={max_tokens} before finishing its reply",
        provider=provider,
        retryable=False,
    )


class AnthropicProvider:
    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._timeout = timeout
        self._client = None

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self):
        if not self._api_key:
            raise LLMError(
                category=ErrorCategory.PERMANENT,
                error_code="not_configured",
                message="ANTHROPIC_API_KEY is not set",
                provider=self.name,
                retryable=False,
            )
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(
                api_key=self._api_key,
                max_retries=0,
                **({"timeout": self._timeout} if self._timeout else {}),
            )
        return self._client

    def call(
        self,
        system_prompt: str,
        user_message: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tokens: int = 800,
    ) -> LLMResponse:
        client = self._get_client()
        started = time.monotonic()
        message = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        if message.stop_reason == "max_tokens":
            raise _truncated(self.name, model, max_tokens)

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            text=text,
            provider=self.name,
            model=model,
            input_tokens=getattr(message.usage, "input_tokens", None),
            output_tokens=getattr(message.usage, "output_tokens", None),
            latency_ms=int((time.monotonic() - started) * 1000),
        )


class OpenAICompatibleProvider:
    """Any server speaking the chat completions API, asked for JSON mode."""

    name = "openai"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._timeout = timeout
        self._client = None

    def is_available(self) -> bool:
        # Local servers need only a base URL
        return bool(self._api_key or self._base_url)

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI
            kwargs = {"api_key": self._api_key or "not-needed", "max_retries": 0}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._timeout:
                kwargs["timeout"] = self._timeout
            self._client = OpenAI(**kwargs)
        return self._client

    def call(
        self,
        system_prompt: str,
        user_message: str,
        model: str = DEFAULT_OPENAI_MODEL,
        max_tokens: int = 800,
    ) -> LLMResponse:
        client = self._get_client()
        started = time.monotonic()
        completion = client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        choice = completion.choices[0]
        if choice.finish_reason == "length":
            raise _truncated(self.name, model, max_tokens)

        usage = completion.usage
        return LLMResponse(
            text=choice.message.content or "",
            provider=self.name,
            model=model,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            latency_ms=int((time.monotonic() - started) * 1000),
        )


class LLMRouter:
    """Dispatches a call to a named provider, then to an optional fallback."""

    def __init__(self, providers: Optional[Dict[str, object]] = None, timeout: Optional[float] = None):
        self._providers = providers or {
            "anthropic": AnthropicProvider(timeout=timeout),
            "openai": OpenAICompatibleProvider(timeout=timeout),
        }

    def get_provider(self, name: str):
        return self._providers.get(name)

    def provider_status(self) -> Dict[str, bool]:
        return {name: p.is_available() for name, p in self._providers.items()}

    def call(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 800,
        provider_name: str = "anthropic",
        fallback_provider: Optional[str] = None,
        fallback_model: Optional[str] = None,
    ) -> LLMResponse:
        """
        Call ``provider_name``; on failure try ``fallback_provider`` once.

        Raises:
            ValueError: ``provider_name`` is not registered
            LLMError: the last attempt's classified failure
        """
        if provider_name not in self._providers:
            raise ValueError(f"Unknown provider: {provider_name}")

        attempts: List[Tuple[str, Optional[str]]] = [(provider_name, model)]
        if fallback_provider and fallback_provider != provider_name and fallback_provider in self._providers:
            attempts.append((fallback_provider, fallback_model))

        last_error: Optional[LLMError] = None
        for name, attempt_model in attempts:
            provider = self._providers[name]
            kwargs = {"max_tokens": max_tokens}
            if attempt_model:
                kwargs["model"] = attempt_model
            try:
                return provider.call(system_prompt, user_message, **kwargs)
            except Exception as e:
                err = classify_llm_error(e, name)
                logger.warning(f"LLM call via '{name}' (model={attempt_model}) failed: {err}")
                if last_error is not None:
                    raise err from last_error
                last_error = err

        raise last_error


# Singleton
_router: Optional[LLMRouter] = None


def get_llm_router() -> LLMRouter:
    """Get the singleton router, with the AI call timeout applied to both SDKs."""
    global _router
    if _router is None:
        from .settings import get_settings_service
        _router = LLMRouter(timeout=get_settings_service().ai.call_timeout_seconds)
    return _router
