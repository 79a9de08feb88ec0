"""
OpenAI-compatible provider implementation.

Covers any service exposing `POST {base}/chat/completions` with Bearer
authentication (OpenAI, Perplexity and similar gateways).
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

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleProvider(LLMProvider):
    """
    Provider for chat-completions style APIs.
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
            logger.warning(f"No API key configured for provider {name}")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key or ''}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(message.to_dict() for message in request.messages)
        return {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        """
        Generate a response using chat completions.

        Args:
            request: The generation request

        Returns:
            GenerationResponse built from the first choice

        Raises:
            GenerationError: If the request fails
        """
        start_time = time.monotonic()

        logger.debug(f"Making chat-completions request with model {request.model}")

        data = await self._post("/chat/completions", self._build_payload(request), self._headers())

        choices = data.get("choices") or [{}]
        choice = choices[0]
        text = (choice.get("message") or {}).get("content") or ""
        native_stop = choice.get("finish_reason")
        usage = data.get("usage", {})

        return GenerationResponse(
            text=text,
            stop_reason=self.map_stop_reason(native_stop),
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
            provider=self.name,
            model=data.get("model", request.model),
            latency=time.monotonic() - start_time,
            raw_stop_reason=native_stop,
            metadata={"response_id": data.get("id")},
        )

    async def check_health(self) -> ProviderHealthCheck:
        """
        Check the API by listing models.

        Returns:
            ProviderHealthCheck indicating provider availability
        """
        start_time = time.monotonic()
        try:
            response = await self._client.get(
                f"{self.base_url}/models", headers=self._headers()
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
