from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import Settings, settings
from .errors import CompletionServiceError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class CompletionOptions:
    max_output_tokens: int
    temperature: float


# Per-phase presets
POST_MORTEM_OPTIONS = CompletionOptions(max_output_tokens=2000, temperature=0.7)
PATTERN_DETECTION_OPTIONS = CompletionOptions(max_output_tokens=1000, temperature=0.3)
COACHING_OPTIONS = CompletionOptions(max_output_tokens=1500, temperature=0.7)


class CompletionService(Protocol):
    async def complete(self, prompt: str, options: CompletionOptions) -> str: ...


def _extract_text(content: Any) -> str:
    # Only blocks with type == "text" carry the answer.
    if not isinstance(content, list):
        return ""
    texts: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                texts.append(text)
    return "".join(texts).strip()


class AnthropicCompletionClient:
    """Async client for the Anthropic Messages API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Settings | None = None,
    ) -> None:
        cfg = config or settings
        self._api_key = api_key if api_key is not None else cfg.anthropic_api_key
        self._model = model or cfg.completion_model
        self._timeout = httpx.Timeout(timeout_seconds or cfg.completion_timeout)
        self._client = httpx.AsyncClient(
            base_url=(base_url or cfg.anthropic_base_url).rstrip("/"),
            timeout=self._timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AnthropicCompletionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        if not self._api_key:
            raise CompletionServiceError("Anthropic API key not configured")

        body = {
            "model": self._model,
            "max_tokens": options.max_output_tokens,
            "temperature": options.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        try:
            resp = await self._client.post("/v1/messages", json=body, headers=headers)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise CompletionServiceError(f"Completion request timed out: {e}") from e
        except httpx.RequestError as e:
            raise CompletionServiceError(f"Completion request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise CompletionServiceError(
                f"Completion API error {status}: {e.response.text[:500]}", status_code=status
            ) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise CompletionServiceError("Completion API returned a non-JSON body") from e

        text = _extract_text(data.get("content") if isinstance(data, dict) else None)
        if not text:
            raise CompletionServiceError("Unexpected response format from completion API")

        usage = data.get("usage") or {}
        logger.debug(
            "Completion finished: model=%s input_tokens=%s output_tokens=%s",
            data.get("model", self._model),
            usage.get("input_tokens"),
            usage.get("output_tokens"),
        )
        return text
