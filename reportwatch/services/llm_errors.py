"""
LLM error classification.

Maps raw Anthropic and OpenAI SDK exceptions onto a small set of categories
so the enrichment service can log a useful reason when it reports a
collaborator as unavailable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"    # Rate limit, timeout, server error
    PERMANENT = "permanent"    # Auth failed, bad request, credits exhausted
    PARTIAL = "partial"        # Unparseable model output


@dataclass
class LLMError(Exception):
    """Classified LLM error."""
    category: ErrorCategory
    error_code: str
    message: str
    provider: str
    retryable: bool = True
    status_code: Optional[int] = None
    original: Optional[Exception] = field(default=None, repr=False)

    def __str__(self):
        return f"[{self.provider}:{self.category.value}] {self.error_code}: {self.message}"


def _classify(sdk, exc: Exception, provider: str) -> LLMError:
    """Shared mapping; both SDKs expose the same exception names."""

    def error(category, code, status=None):
        return LLMError(
            category=category,
            error_code=code,
            message=str(exc),
            provider=provider,
            retryable=category != ErrorCategory.PERMANENT,
            status_code=status,
            original=exc,
        )

    if isinstance(exc, sdk.AuthenticationError):
        return error(ErrorCategory.PERMANENT, "authentication_error", 401)
    if isinstance(exc, sdk.PermissionDeniedError):
        code = _extract_error_type(exc) or "permission_denied"
        return error(ErrorCategory.PERMANENT, code, 403)
    if isinstance(exc, sdk.BadRequestError):
        return error(ErrorCategory.PERMANENT, "bad_request", 400)
    if isinstance(exc, sdk.RateLimitError):
        return error(ErrorCategory.TRANSIENT, "rate_limit", 429)
    if isinstance(exc, sdk.InternalServerError):
        return error(ErrorCategory.TRANSIENT, "server_error", getattr(exc, "status_code", 500))
    # APITimeoutError subclasses APIConnectionError in both SDKs
    if isinstance(exc, sdk.APITimeoutError):
        return error(ErrorCategory.TRANSIENT, "timeout")
    if isinstance(exc, sdk.APIConnectionError):
        return error(ErrorCategory.TRANSIENT, "connection_error")
    if isinstance(exc, sdk.APIStatusError):
        status = getattr(exc, "status_code", None)
        if status and status >= 500:
            return error(ErrorCategory.TRANSIENT, f"server_error_{status}", status)
        return error(ErrorCategory.PERMANENT, f"api_error_{status}", status)

    return error(ErrorCategory.TRANSIENT, "unknown")


def classify_anthropic_error(exc: Exception) -> LLMError:
    """Classify an Anthropic SDK exception into an LLMError."""
    import anthropic
    return _classify(anthropic, exc, "anthropic")


def classify_openai_error(exc: Exception) -> LLMError:
    """Classify an OpenAI SDK exception (any OpenAI-compatible endpoint)."""
    import openai
    return _classify(openai, exc, "openai")


def classify_llm_error(exc: Exception, provider: str) -> LLMError:
    if isinstance(exc, LLMError):
        return exc
    if provider == "anthropic":
        return classify_anthropic_error(exc)
    return classify_openai_error(exc)


def _extract_error_type(exc) -> Optional[str]:
    """Error type string from an API error body, e.g. credit_balance_too_low."""
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", {})
        if isinstance(error, dict):
            return error.get("type")
    return None
