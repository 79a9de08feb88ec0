"""
Anthropic provider implementation.

Speaks the Messages API (`POST {base}/v1/messages`). Used for both the
primary and secondary slots, which differ only in model, ceiling and timeout.
"""

import time
from typing import Any, Dict, Optional

import httpx

from blueprintforge.utils.logging import get_logger

from .provider import (
    GenerationRequest,
    GenerationResponse,
    LLMProvider,
    ProviderHealthCheck,
    TokenUsage,
)

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_BASE_URL = "https://api.anthropic.com"


class AnthropicProvider(LLMProvider):
    """
    Provider for Anthropic's Messages API.
    """

    def __init__(
        self,
        name: str,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, api_key, base_url or DEFAULT_BASE_URL, http_client)
        if not self.api_key:
            logger.warning(f"No Anthropic API key configured for provider {name}")

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": request.system,
            "messages": [message.to_dict() for message in request.messages],
        }

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        """
        Generate a response using the Messages API.

        Args:
            request: The generation request

        Returns:
            GenerationResponse with joined text blocks

        Raises:
            GenerationError: If the request fails
        """
        start_time = time.monotonic()
        payload = self._build_payload(request)

        logger.debug(
            f"Making Anthropic request with model {request.model}, max_tokens {request.max_tokens}"
        )

        data = await self._post("/v1/messages", payload, self._headers())

        text = "\n".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage", {})
        native_stop = data.get("stop_reason")

        return GenerationResponse(
            text=text,
            stop_reason=self.map_stop_reason(native_stop),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            provider=self.name,
            model=data.get("model", request.model),
            latency=time.monotonic() - start_time,
            raw_stop_reason=native_stop,
            metadata={"response_id": data.get("id")},
        )

    async def check_health(self) -> ProviderHealthCheck:
        """
        Check the API with a minimal one-token request.

        Returns:
            ProviderHealthCheck indicating provider availability
        """
        start_time = time.monotonic()
        try:
            response = await self._client.post(
                f"{self.base_url}/v1/messages",
                json={
                    "model": "claude-3-5-haiku-20241022",
                    "max_tokens": 1,
                    "messages": [{"role": "user", "content": "ping"}],
                },
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Health check failed for {self.name}: {e}")
            return ProviderHealthCheck(
                is_healthy=False, provider=self.name, error_message=str(e)
            )

        if response.status_code == 200:
            return ProviderHealthCheck(
                is_healthy=True,
                provider=self.name,
                response_time=time.monotonic() - start_time,
            )
        return ProviderHealthCheck(
            is_healthy=False,
            provider=self.name,
            error_message=f"API returned status {response.status_code}",
        )
