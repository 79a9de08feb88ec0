"""
Ollama provider implementation.

Local last-resort provider. Requests JSON-formatted, non-streaming output
from `POST {base}/api/chat`; no credential is required.
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

DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaProvider(LLMProvider):
    """
    Provider for a local Ollama server.
    """

    def __init__(
        self,
        name: str,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, api_key, base_url or DEFAULT_BASE_URL, http_client)

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(message.to_dict() for message in request.messages)
        return {
            "model": request.model,
            "messages": messages,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        start_time = time.monotonic()

        logger.debug(f"Making Ollama request with model {request.model}")

        data = await self._post(
            "/api/chat",
            self._build_payload(request),
            {"Content-Type": "application/json"},
        )

        text = (data.get("message") or {}).get("content") or ""
        native_stop = data.get("done_reason")

        return GenerationResponse(
            text=text,
            stop_reason=self.map_stop_reason(native_stop),
            usage=TokenUsage(
                input_tokens=data.get("prompt_eval_count", 0),
                output_tokens=data.get("eval_count", 0),
            ),
            provider=self.name,
            model=data.get("model", request.model),
            latency=time.monotonic() - start_time,
            raw_stop_reason=native_stop,
        )

    async def check_health(self) -> ProviderHealthCheck:
        """Probe `/api/tags`, which answers without loading a model."""
        start_time = time.monotonic()
        try:
            response = await self._client.get(f"{self.base_url}/api/tags")
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
