"""
Abstract base class for generation providers.

This module defines the request/response data model and the interface that
every provider implements so the client and orchestrator can drive any of
them the same way.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx

from .exceptions import (
    GenerationError,
    LLMConnectionError,
    LLMTimeoutError,
    error_for_status,
)


class StopReason(Enum):
    """Why the provider stopped generating."""

    COMPLETED = "completed"
    TOKEN_LIMIT = "token_limit"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    """One role-tagged conversation turn."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationRequest:
    """
    Immutable description of one generation call.

    Escalation never mutates a request; `with_max_tokens` returns a copy.
    """

    system: str
    messages: Tuple[Message, ...]
    provider: str
    max_tokens: int
    temperature: float
    model: str

    def __post_init__(self):
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if not self.messages:
            raise ValueError("At least one message is required")

    @classmethod
    def from_prompt(
        cls,
        system: str,
        user: str,
        provider: str,
        max_tokens: int,
        temperature: float,
        model: str,
    ) -> "GenerationRequest":
        """Build a single-turn request from system and user text."""
        return cls(
            system=system,
            messages=(Message(role="user", content=user),),
            provider=provider,
            max_tokens=max_tokens,
            temperature=temperature,
            model=model,
        )

    def with_max_tokens(self, max_tokens: int) -> "GenerationRequest":
        return replace(self, max_tokens=max_tokens)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class GenerationResponse:
    """Standardized response from generation providers."""

    text: str
    stop_reason: StopReason
    usage: TokenUsage
    provider: str
    model: str
    latency: float
    raw_stop_reason: Optional[str] = None
    attempts: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate response data."""
        if not isinstance(self.text, str):
            raise ValueError("Response text must be a string")
        if self.latency < 0:
            raise ValueError("Latency cannot be negative")


@dataclass
class ProviderHealthCheck:
    """Result of an active reachability probe."""

    is_healthy: bool
    provider: str
    last_check: float = 0.0
    response_time: Optional[float] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.last_check == 0:
            self.last_check = time.time()


class LLMProvider(ABC):
    """
    Abstract base class for generation providers.

    Subclasses translate a GenerationRequest into their wire format and the
    provider reply back into a GenerationResponse. They perform exactly one
    outbound call per `complete`; retries and timeouts belong to the client.
    """

    # Native stop reasons mapped to StopReason.TOKEN_LIMIT
    TOKEN_LIMIT_REASONS: Tuple[str, ...] = ("max_tokens", "length")

    def __init__(
        self,
        name: str,
        api_key: Optional[str],
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the provider.

        Args:
            name: Provider id used in logs, metrics and provenance
            api_key: Credential sent with each request, if the provider needs one
            base_url: API base URL
            http_client: Optional preconfigured client (tests inject a mock transport)
        """
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    @abstractmethod
    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        """
        Perform one outbound generation call.

        Args:
            request: The generation request

        Returns:
            GenerationResponse with text, stop reason and usage

        Raises:
            GenerationError: If the call fails
        """
        pass

    @abstractmethod
    async def check_health(self) -> ProviderHealthCheck:
        """Probe the provider without generating content."""
        pass

    def map_stop_reason(self, native: Optional[str]) -> StopReason:
        if native is None:
            return StopReason.COMPLETED
        if native in self.TOKEN_LIMIT_REASONS:
            return StopReason.TOKEN_LIMIT
        if native == "error":
            return StopReason.ERROR
        return StopReason.COMPLETED

    async def _post(self, path: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded body or raise a mapped error."""
        try:
            response = await self._client.post(
                f"{self.base_url}{path}", json=payload, headers=headers
            )
        except httpx.HTTPError as e:
            raise self._handle_api_error(e) from e

        if response.status_code >= 400:
            raise self._handle_http_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise GenerationError(
                f"Provider returned a non-JSON body: {response.text[:200]}",
                self.name,
                status_code=response.status_code,
                cause=e,
            ) from e

    def _handle_http_error(self, response: httpx.Response) -> GenerationError:
        """
        Handle non-2xx responses.

        Args:
            response: HTTP response object

        Returns:
            Appropriate GenerationError
        """
        error_message, error_type = self._extract_error(response)

        retry_after = response.headers.get("retry-after")
        try:
            retry_after = int(retry_after) if retry_after else None
        except ValueError:
            retry_after = None

        error = error_for_status(
            response.status_code,
            error_message,
            provider=self.name,
            error_type=error_type,
            retry_after=retry_after,
        )
        error.metadata["response_text"] = response.text[:500]
        return error

    def _extract_error(self, response: httpx.Response) -> Tuple[str, Optional[str]]:
        try:
            error_data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text[:200]}", None

        error = error_data.get("error") if isinstance(error_data, dict) else None
        if isinstance(error, dict):
            return (
                error.get("message", f"HTTP {response.status_code}"),
                error.get("type"),
            )
        if isinstance(error, str):
            return error, None
        return f"HTTP {response.status_code}", None

    def _handle_api_error(self, error: Exception) -> GenerationError:
        """
        Convert transport exceptions to GenerationError.

        Args:
            error: Exception raised by httpx

        Returns:
            Appropriate GenerationError
        """
        if isinstance(error, httpx.TimeoutException):
            return LLMTimeoutError("Request timed out", self.name, cause=error)
        if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError)):
            return LLMConnectionError(
                f"Network error occurred: {error}", self.name, cause=error
            )
        return GenerationError(str(error), self.name, cause=error)

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
