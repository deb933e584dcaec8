"""
inference_client.py — retrying wrapper around the active inference provider.

Retry policy:
  • transport failures (any SDK / network exception) and empty responses are
    retried up to options.max_retries times, sleeping 1s, 2s, 4s, … between
    attempts (backoff_base × 2^attempt)
  • a response that arrives but holds no parseable JSON is NOT retried; it
    raises JsonParseError straight away
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

import config
from providers.base import (
    EmptyResponseError,
    InferenceOptions,
    ProviderResponse,
    TransportError,
    VisionProvider,
    parse_json_response,
)

logger = logging.getLogger(__name__)


def stage_options(stage: str, category: Optional[str] = None, **overrides) -> InferenceOptions:
    """Build InferenceOptions from config.STAGE_SETTINGS for one stage (and category)."""
    settings = dict(config.STAGE_SETTINGS.get(stage, {}))
    if category and isinstance(settings.get(category), dict):
        settings = dict(settings[category])
    settings = {k: v for k, v in settings.items() if not isinstance(v, dict)}
    settings.setdefault("max_output_tokens", config.INFERENCE_MAX_OUTPUT_TOKENS)
    settings.setdefault("max_retries", config.INFERENCE_MAX_RETRIES)
    settings.update(overrides)
    return InferenceOptions(**settings)


def with_user_text(prompt: str, user_text: Optional[str]) -> str:
    if user_text and user_text.strip():
        return f'{prompt}\n\nUSER PROVIDED TEXT: "{user_text.strip()}"'
    return prompt


class InferenceClient:

    def __init__(
        self,
        provider: Optional[VisionProvider] = None,
        backoff_base: float = 1.0,
    ) -> None:
        self._provider = provider
        self.backoff_base = backoff_base
        self.last_response: Optional[ProviderResponse] = None

    @property
    def provider(self) -> VisionProvider:
        if self._provider is None:
            from providers.manager import get_provider
            self._provider = get_provider()
        return self._provider

    @property
    def model_name(self) -> str:
        return self.provider.full_name

    async def call(
        self,
        prompt: str,
        images: Sequence[str] = (),
        options: Optional[InferenceOptions] = None,
        user_text: Optional[str] = None,
    ) -> str:
        """Return the raw response text. Raises TransportError once retries run out."""
        options = options or InferenceOptions()
        full_prompt = with_user_text(prompt, user_text)
        provider = self.provider
        attempts = options.max_retries + 1
        last_exc: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                response = await provider.complete(full_prompt, list(images), options)
                if not response.text or not response.text.strip():
                    raise EmptyResponseError(f"[{provider.full_name}] Empty response")
                self.last_response = response
                logger.info(
                    "[%s] OK — attempt=%d tokens=%d/%d latency=%dms",
                    provider.full_name, attempt + 1,
                    response.input_tokens, response.output_tokens, response.latency_ms,
                )
                return response.text
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "[%s] Attempt %d/%d failed: %s",
                    provider.full_name, attempt + 1, attempts, exc,
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(self.backoff_base * (2 ** attempt))

        logger.error("[%s] Failed after %d attempt(s)", provider.full_name, attempts)
        if isinstance(last_exc, TransportError):
            raise last_exc
        raise TransportError(
            f"[{provider.full_name}] Failed after {attempts} attempt(s): {last_exc}"
        ) from last_exc

    async def call_and_parse(
        self,
        prompt: str,
        images: Sequence[str] = (),
        options: Optional[InferenceOptions] = None,
        user_text: Optional[str] = None,
    ) -> dict:
        """call() then extract the JSON object. JsonParseError is raised without retrying."""
        raw = await self.call(prompt, images, options, user_text)
        return parse_json_response(raw, self.model_name)
