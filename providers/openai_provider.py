"""
OpenAI provider — Responses API.

Reasoning models (gpt-5*, o-series) take `reasoning.effort` and
`text.verbosity` and reject `temperature`; older chat models take
`temperature` only. Web search is the hosted `web_search` tool.
"""
from __future__ import annotations

import logging
import time
from typing import Sequence

from openai import AsyncOpenAI

from providers.base import InferenceOptions, ProviderResponse, VisionProvider

logger = logging.getLogger(__name__)

_REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def is_reasoning_model(model: str) -> bool:
    return model.startswith(_REASONING_PREFIXES)


class OpenAIProvider(VisionProvider):

    def __init__(self, api_key: str, model: str = "gpt-5.1", timeout: float = 120.0):
        self.name = "openai"
        self.model_id = model
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def build_request(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> dict:
        content: list[dict] = [{"type": "input_text", "text": prompt}]
        for url in image_urls:
            content.append({"type": "input_image", "image_url": url, "detail": "auto"})

        request: dict = {
            "model": self.model_id,
            "input": [{"role": "user", "content": content}],
            "max_output_tokens": options.max_output_tokens,
        }
        if is_reasoning_model(self.model_id):
            request["reasoning"] = {"effort": options.reasoning_effort}
            request["text"] = {"verbosity": options.verbosity}
        else:
            request["temperature"] = options.temperature
        if options.web_search:
            request["tools"] = [{"type": "web_search"}]
        return request

    async def complete(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> ProviderResponse:
        t0 = time.monotonic()
        response = await self._client.responses.create(
            **self.build_request(prompt, image_urls, options)
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        usage = response.usage
        return ProviderResponse(
            text=response.output_text or "",
            model_id=self.model_id,
            latency_ms=latency_ms,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )
