"""
Google Gemini provider — uses the google-genai SDK.

Reasoning effort maps to a thinking budget; web search is Google Search
grounding. Inline data: URIs are sent as bytes, other URLs by reference.
"""
from __future__ import annotations

import logging
import time
from typing import Sequence

from google import genai
from google.genai import types as genai_types

from providers.base import (
    InferenceOptions, ProviderResponse, VisionProvider, split_data_uri,
)

logger = logging.getLogger(__name__)

_THINKING_BUDGETS = {"low": 512, "medium": 2048, "high": 8192}


def _image_part(url: str) -> genai_types.Part:
    inline = split_data_uri(url)
    if inline:
        mime, data = inline
        return genai_types.Part.from_bytes(data=data, mime_type=mime)
    return genai_types.Part.from_uri(file_uri=url, mime_type="image/jpeg")


class GeminiProvider(VisionProvider):

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self.name     = "google"
        self.model_id = model
        self._client  = genai.Client(api_key=api_key)

    def build_config(self, options: InferenceOptions) -> genai_types.GenerateContentConfig:
        tools = None
        if options.web_search:
            tools = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
        return genai_types.GenerateContentConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_output_tokens,
            thinking_config=genai_types.ThinkingConfig(
                thinking_budget=_THINKING_BUDGETS[options.reasoning_effort],
            ),
            tools=tools,
        )

    async def complete(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> ProviderResponse:
        contents: list = [_image_part(u) for u in image_urls]
        contents.append(prompt)

        t0 = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=contents,
            config=self.build_config(options),
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        usage = response.usage_metadata
        return ProviderResponse(
            text=response.text or "",
            model_id=self.model_id,
            latency_ms=latency_ms,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
