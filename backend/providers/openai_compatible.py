"""
OpenAI-Compatible Provider
Chat-completions client over httpx. Maps transport failures onto the gateway
error taxonomy: timeouts, retryable upstream failures (5xx, 429, connection
errors) and permanent rejections (other 4xx).
"""

import time
from typing import Any, Dict, Optional

import httpx

from core.logging import get_logger
from core.exceptions import ProviderError, ProviderTimeoutError
from providers.base import Completion, CompletionProvider, PromptContext

# Initialize logger
logger = get_logger("provider")

TRANSIENT_STATUS_CODES = {408, 409, 425, 429}


class OpenAICompatibleProvider(CompletionProvider):
    """
    Provider for any endpoint speaking the OpenAI chat-completions API.

    A single AsyncClient is reused across calls; call close() on shutdown.
    """

    name = "openai_compatible"

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = str(base_url).rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds)
        )

    @classmethod
    def from_settings(cls, settings) -> "OpenAICompatibleProvider":
        return cls(
            base_url=str(settings.provider.base_url),
            model=settings.provider.model,
            api_key=settings.provider_api_key_value,
            timeout_seconds=settings.provider.timeout_seconds
        )

    def _build_payload(self, prompt: PromptContext) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user}
            ],
            "temperature": 0.0 if prompt.strict else prompt.temperature,
            "max_tokens": prompt.max_output_tokens,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "generated_plan", "schema": prompt.schema}
            }
        }

    async def complete(self, prompt: PromptContext) -> Completion:
        start_time = time.time()

        try:
            response = await self._client.post("/chat/completions", json=self._build_payload(prompt))
            response.raise_for_status()
        except httpx.TimeoutException:
            raise ProviderTimeoutError(timeout_seconds=self.timeout_seconds)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            transient = status_code >= 500 or status_code in TRANSIENT_STATUS_CODES
            logger.warning(
                "provider_http_error",
                provider_status=status_code,
                transient=transient,
                body=e.response.text[:500]
            )
            raise ProviderError(
                reason=f"Provider returned HTTP {status_code}",
                transient=transient,
                provider_status=status_code
            )
        except httpx.RequestError as e:
            raise ProviderError(reason=f"Provider unreachable: {e}", transient=True)

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(reason=f"Malformed provider envelope: {e}", transient=True)

        usage = data.get("usage") or {}

        logger.debug(
            "provider_call_completed",
            model=data.get("model", self.model),
            latency_ms=round((time.time() - start_time) * 1000, 2),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens")
        )

        return Completion(
            text=text,
            model=data.get("model", self.model),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens")
        )

    async def close(self):
        await self._client.aclose()


__all__ = ["OpenAICompatibleProvider"]
