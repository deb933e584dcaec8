"""
Anthropic provider — Messages API.

Anthropic has no verbosity knob; reasoning effort maps to an extended
thinking budget only for "high" (thinking needs temperature 1, so the
configured temperature is dropped in that case). Web search uses the
server-side web_search tool.
"""
from __future__ import annotations

import base64
import logging
import time
from typing import Sequence

import anthropic

from providers.base import (
    InferenceOptions, ProviderResponse, VisionProvider, split_data_uri,
)

logger = logging.getLogger(__name__)

_THINKING_BUDGET = 2048
_WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


def _image_block(url: str) -> dict:
    inline = split_data_uri(url)
    if inline:
        mime, data = inline
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": mime, "data": base64.b64encode(data).decode()},
        }
    return {"type": "image", "source": {"type": "url", "url": url}}


class AnthropicProvider(VisionProvider):

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5", timeout: float = 120.0):
        self.name = "anthropic"
        self.model_id = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def build_request(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> dict:
        content = [_image_block(u) for u in image_urls]
        content.append({"type": "text", "text": prompt})

        request: dict = {
            "model": self.model_id,
            "max_tokens": options.max_output_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if options.reasoning_effort == "high":
            request["max_tokens"] = options.max_output_tokens + _THINKING_BUDGET
            request["thinking"] = {"type": "enabled", "budget_tokens": _THINKING_BUDGET}
        else:
            request["temperature"] = options.temperature
        if options.web_search:
            request["tools"] = [_WEB_SEARCH_TOOL]
        return request

    async def complete(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> ProviderResponse:
        t0 = time.monotonic()
        message = await self._client.messages.create(
            **self.build_request(prompt, image_urls, options)
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        # With web search the answer is split across several text blocks
        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return ProviderResponse(
            text=text,
            model_id=self.model_id,
            latency_ms=latency_ms,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
        )
