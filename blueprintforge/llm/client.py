"""
Provider client with timeout, transport retry and ceiling escalation.

ProviderClient drives one provider for one logical call. Each outbound call
runs under its own deadline; transport failures are retried with
exponential backoff; a reply cut off by the output ceiling is reissued with
a larger ceiling instead of being returned.
"""

import asyncio
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from blueprintforge.utils.logging import get_logger

from .config import ProviderConfig, RetryConfig
from .exceptions import (
    GenerationError,
    LLMRateLimitError,
    LLMServerError,
    LLMTimeoutError,
    MaxTokensExceededError,
    ParseError,
    classify_error,
)
from .provider import GenerationRequest, GenerationResponse, LLMProvider, StopReason

logger = get_logger(__name__)

PREVIEW_LENGTH = 500


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one outbound call, reported to the attempt callback."""

    provider: str
    success: bool
    latency: float
    max_tokens: int
    stop_reason: Optional[StopReason] = None
    error: Optional[GenerationError] = None


AttemptCallback = Callable[[AttemptOutcome], None]


class ProviderClient:
    """
    Call one provider with deadline, retry and escalation.

    The client has no side effects besides the outbound calls; telemetry is
    handed to the optional `on_attempt` callback for the caller to record.
    """

    def __init__(
        self,
        provider: LLMProvider,
        provider_config: ProviderConfig,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            provider: Provider performing the outbound calls
            provider_config: Slot settings (timeout and retry count are used here)
            retry_config: Backoff and escalation budget
            sleep: Awaitable used between retries (tests pass a no-op)
        """
        self.provider = provider
        self.provider_config = provider_config
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.provider.name

    async def generate(
        self,
        request: GenerationRequest,
        on_attempt: Optional[AttemptCallback] = None,
    ) -> GenerationResponse:
        """
        Generate a complete response, escalating the ceiling on truncation.

        Args:
            request: Initial request; never mutated
            on_attempt: Called after every outbound call

        Returns:
            GenerationResponse whose stop reason is not token_limit, with
            `attempts` set to the number of outbound calls made

        Raises:
            GenerationError: Classified failure; `metadata["attempts"]`
                carries the number of outbound calls made
        """
        retry = self.retry_config
        current = request
        calls = 0

        for round_index in range(retry.max_escalation_attempts):
            try:
                response, round_calls = await self._call_with_retry(current, on_attempt)
            except GenerationError as e:
                e.metadata["attempts"] = calls + e.metadata.get("round_calls", 0)
                raise
            calls += round_calls

            if response.stop_reason != StopReason.TOKEN_LIMIT:
                response.attempts = calls
                return response

            next_ceiling = min(
                math.ceil(current.max_tokens * retry.escalation_factor),
                retry.max_output_tokens_cap,
            )
            is_last_round = round_index + 1 >= retry.max_escalation_attempts
            if is_last_round or next_ceiling <= current.max_tokens:
                break

            logger.warning(
                f"Response from {self.name} hit the {current.max_tokens} token ceiling, "
                f"retrying with {next_ceiling}",
                extra={
                    "event": "provider.escalation",
                    "provider": self.name,
                    "previous_max_tokens": current.max_tokens,
                    "max_tokens": next_ceiling,
                    "round": round_index + 1,
                },
            )
            current = current.with_max_tokens(next_ceiling)

        raise MaxTokensExceededError(
            f"Response still truncated at {current.max_tokens} tokens after {calls} calls",
            self.name,
            final_max_tokens=current.max_tokens,
            attempts=calls,
            metadata={"attempts": calls},
        )

    async def _call_with_retry(
        self, request: GenerationRequest, on_attempt: Optional[AttemptCallback]
    ):
        """Call the provider, retrying transport failures at a fixed ceiling."""
        max_retries = self.provider_config.max_retries
        timeout = self.provider_config.timeout
        retry_index = 0
        calls = 0

        while True:
            calls += 1
            logger.info(
                f"Calling {self.name} (call {calls}, max_tokens {request.max_tokens})",
                extra={
                    "event": "provider.attempt.start",
                    "provider": self.name,
                    "model": request.model,
                    "max_tokens": request.max_tokens,
                    "attempt": calls,
                },
            )
            start_time = time.monotonic()

            try:
                response = await asyncio.wait_for(
                    self.provider.complete(request), timeout=timeout
                )
                if response.stop_reason == StopReason.ERROR:
                    raise LLMServerError(
                        f"Provider reported stop reason {response.raw_stop_reason!r}",
                        self.name,
                    )
            except asyncio.TimeoutError as e:
                error = LLMTimeoutError(
                    f"Request exceeded {timeout}s deadline", self.name, cause=e
                )
            except Exception as e:
                error = classify_error(e, self.name)
            else:
                self._notify(
                    on_attempt,
                    AttemptOutcome(
                        provider=self.name,
                        success=True,
                        latency=time.monotonic() - start_time,
                        max_tokens=request.max_tokens,
                        stop_reason=response.stop_reason,
                    ),
                )
                return response, calls

            self._notify(
                on_attempt,
                AttemptOutcome(
                    provider=self.name,
                    success=False,
                    latency=time.monotonic() - start_time,
                    max_tokens=request.max_tokens,
                    error=error,
                ),
            )

            if not error.is_retryable or retry_index >= max_retries:
                error.metadata["round_calls"] = calls
                raise error

            delay = self.retry_config.backoff_delay(retry_index)
            if isinstance(error, LLMRateLimitError) and error.retry_after:
                delay = min(max(delay, error.retry_after), self.retry_config.max_delay)

            logger.warning(
                f"{self.name} failed with {error.kind.value}, retrying in {delay:.1f}s "
                f"({retry_index + 1}/{max_retries})",
                extra={
                    "event": "provider.retry",
                    "provider": self.name,
                    "error_kind": error.kind.value,
                    "delay": delay,
                    "retry": retry_index + 1,
                },
            )
            await self._sleep(delay)
            retry_index += 1

    @staticmethod
    def _notify(callback: Optional[AttemptCallback], outcome: AttemptOutcome):
        if callback is not None:
            callback(outcome)

    @staticmethod
    def extract_text(response: GenerationResponse) -> str:
        """Return the plain generated text of a response."""
        return response.text.strip()

    @staticmethod
    def parse_json(response: GenerationResponse) -> Any:
        """
        Parse the response text as JSON.

        Raises:
            ParseError: If the text is not valid JSON
        """
        text = ProviderClient.extract_text(response)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Failed to parse JSON from {response.provider}: {e.msg}",
                response.provider,
                preview=text[:PREVIEW_LENGTH],
                position=e.pos,
                strategies=["direct"],
                cause=e,
            ) from e
