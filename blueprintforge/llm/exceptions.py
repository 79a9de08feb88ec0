"""
Exception classes for the generation resilience pipeline.

Every failure the pipeline can surface is a GenerationError tagged with one
ErrorKind. Callers branch on the kind rather than on exception text, which
keeps the retry, fallback and terminal-failure rules explicit.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx


class ErrorKind(Enum):
    """Failure kinds surfaced by the pipeline."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    MAX_TOKENS_EXCEEDED = "max_tokens_exceeded"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    NO_PROVIDER_AVAILABLE = "no_provider_available"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


# Kinds the provider client retries locally before giving up.
TRANSPORT_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_ERROR,
        ErrorKind.NETWORK,
    }
)


@dataclass(frozen=True)
class FailureClassification:
    """Kind, human-readable reason and the wrapped cause of a failure."""

    kind: ErrorKind
    reason: str
    cause: Optional[BaseException] = None


class GenerationError(Exception):
    """Base exception for all generation pipeline errors."""

    kind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        cause: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.error_type = error_type
        self.cause = cause
        self.metadata = metadata or {}

    def __str__(self):
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"

    @property
    def is_retryable(self) -> bool:
        """Whether the provider client may retry this failure locally."""
        return self.kind in TRANSPORT_KINDS

    def classify(self) -> FailureClassification:
        return FailureClassification(
            kind=self.kind, reason=self.message, cause=self.cause or self
        )


class LLMTimeoutError(GenerationError):
    """Request exceeded its per-attempt deadline."""

    kind = ErrorKind.TIMEOUT


class LLMRateLimitError(GenerationError):
    """Rate limit exceeded error."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, provider, **kwargs)
        self.retry_after = retry_after


class LLMAuthenticationError(GenerationError):
    """Authentication/authorization error."""

    kind = ErrorKind.AUTH


class LLMClientError(GenerationError):
    """Provider rejected the request (4xx other than auth and rate limit)."""

    kind = ErrorKind.CLIENT_ERROR


class LLMServerError(GenerationError):
    """Provider-side failure (5xx)."""

    kind = ErrorKind.SERVER_ERROR


class LLMConnectionError(GenerationError):
    """Network connection error when calling the provider."""

    kind = ErrorKind.NETWORK


class MaxTokensExceededError(GenerationError):
    """Output ceiling escalation exhausted without a complete response."""

    kind = ErrorKind.MAX_TOKENS_EXCEEDED

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        final_max_tokens: Optional[int] = None,
        attempts: int = 0,
        **kwargs,
    ):
        super().__init__(message, provider, **kwargs)
        self.final_max_tokens = final_max_tokens
        self.attempts = attempts


class ParseError(GenerationError):
    """Provider text could not be parsed as JSON, even after repair."""

    kind = ErrorKind.PARSE_ERROR

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        preview: str = "",
        position: Optional[int] = None,
        strategies: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, provider, **kwargs)
        self.preview = preview
        self.position = position
        self.strategies = strategies or []


class ValidationError(GenerationError):
    """Document parsed but does not have the required shape."""

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: str = "INVALID_STRUCTURE",
        issues: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, provider, **kwargs)
        self.code = code
        self.issues = issues or []


class ConfigurationError(GenerationError):
    """Provider chain configuration is unusable."""

    kind = ErrorKind.CONFIGURATION


class NoProviderAvailableError(GenerationError):
    """All configured providers failed or were unavailable."""

    kind = ErrorKind.NO_PROVIDER_AVAILABLE

    def __init__(self, provider_errors: Dict[str, BaseException]):
        self.provider_errors = provider_errors
        error_summary = ", ".join(
            [f"{provider}: {str(error)}" for provider, error in provider_errors.items()]
        )
        last_cause = list(provider_errors.values())[-1] if provider_errors else None
        super().__init__(
            f"All providers failed: {error_summary or 'none attempted'}",
            cause=last_cause,
        )

    @property
    def causes(self) -> List[BaseException]:
        """Underlying failures in the order providers were tried."""
        return list(self.provider_errors.values())


def error_for_status(
    status_code: int,
    message: str,
    provider: Optional[str] = None,
    error_type: Optional[str] = None,
    retry_after: Optional[int] = None,
) -> GenerationError:
    """
    Map a non-2xx provider response to the matching error class.

    Args:
        status_code: HTTP status code returned by the provider
        message: Error message extracted from the body
        provider: Provider that returned the response
        error_type: Machine-readable error type from the body, if any
        retry_after: Retry-After header value in seconds, if any

    Returns:
        GenerationError subclass for the status
    """
    common = {"status_code": status_code, "error_type": error_type}

    if status_code == 429 or error_type == "rate_limit_error":
        return LLMRateLimitError(message, provider, retry_after, **common)
    if status_code in (401, 403):
        return LLMAuthenticationError(message, provider, **common)
    if status_code == 408:
        return LLMTimeoutError(message, provider, **common)
    if 400 <= status_code < 500:
        return LLMClientError(message, provider, **common)
    if status_code >= 500:
        return LLMServerError(message, provider, **common)
    return GenerationError(message, provider, **common)


def classify_error(error: BaseException, provider: Optional[str] = None) -> GenerationError:
    """
    Classify a raw exception into an appropriate GenerationError type.

    Args:
        error: The original exception
        provider: The provider that generated the error

    Returns:
        Classified GenerationError subclass
    """
    if isinstance(error, GenerationError):
        if provider and not error.provider:
            error.provider = provider
        return error

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return LLMTimeoutError("Request timed out", provider, cause=error)

    if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return LLMConnectionError(f"Network error: {error}", provider, cause=error)

    if isinstance(error, json.JSONDecodeError):
        return ParseError(
            f"Invalid JSON: {error.msg}",
            provider,
            preview=error.doc[:500],
            position=error.pos,
            cause=error,
        )

    error_message = str(error)
    lowered = error_message.lower()
    status_code = getattr(error, "status_code", None)

    if isinstance(status_code, int):
        classified = error_for_status(status_code, error_message, provider)
        classified.cause = error
        return classified

    if any(keyword in lowered for keyword in ["timed out", "timeout"]):
        return LLMTimeoutError(error_message, provider, cause=error)

    if any(
        keyword in lowered
        for keyword in ["fetch failed", "network", "connection", "unreachable", "dns"]
    ):
        return LLMConnectionError(error_message, provider, cause=error)

    if any(
        keyword in lowered for keyword in ["rate limit", "too many requests"]
    ):
        retry_match = re.search(r"retry[- ]after[:\s]+(\d+)", error_message, re.IGNORECASE)
        retry_after = int(retry_match.group(1)) if retry_match else None
        return LLMRateLimitError(error_message, provider, retry_after, cause=error)

    return GenerationError(error_message, provider, cause=error)
