"""
Provider Manager — picks and caches the inference provider.

Modes (INFERENCE_PROVIDER):
  auto       — first provider whose key is set: openai → anthropic → google
  openai     — force OpenAI (Responses API)
  anthropic  — force Anthropic (Messages API)
  google     — force Gemini (google-genai)

The provider is built lazily on first use so importing the pipeline never
needs a key; reset_provider() drops the cache after a config change.
"""
from __future__ import annotations

import logging
from typing import Optional

import config
from providers.base import VisionProvider

logger = logging.getLogger(__name__)

# Module-level cache, reset to None by reset_provider()
_provider: Optional[VisionProvider] = None

_AUTO_ORDER = ("openai", "anthropic", "google")


def _make_openai() -> Optional[VisionProvider]:
    if not config.OPENAI_API_KEY:
        return None
    from providers.openai_provider import OpenAIProvider
    return OpenAIProvider(
        config.OPENAI_API_KEY, config.OPENAI_MODEL, timeout=config.INFERENCE_TIMEOUT_SECS,
    )


def _make_anthropic() -> Optional[VisionProvider]:
    if not config.ANTHROPIC_API_KEY:
        return None
    from providers.anthropic_provider import AnthropicProvider
    return AnthropicProvider(
        config.ANTHROPIC_API_KEY, config.ANTHROPIC_MODEL, timeout=config.INFERENCE_TIMEOUT_SECS,
    )


def _make_google() -> Optional[VisionProvider]:
    if not config.GOOGLE_API_KEY:
        return None
    from providers.gemini_provider import GeminiProvider
    return GeminiProvider(config.GOOGLE_API_KEY, config.GEMINI_MODEL)


_FACTORIES = {
    "openai": _make_openai,
    "anthropic": _make_anthropic,
    "google": _make_google,
}


def _build_provider() -> VisionProvider:
    mode = (config.INFERENCE_PROVIDER or "auto").strip().lower()

    if mode != "auto":
        factory = _FACTORIES.get(mode)
        if factory is None:
            raise ValueError(
                f"Unknown INFERENCE_PROVIDER '{mode}'. Use auto, {', '.join(_AUTO_ORDER)}."
            )
        provider = factory()
        if provider is None:
            raise RuntimeError(f"INFERENCE_PROVIDER={mode} but its API key is not set.")
        logger.info("Loaded provider: %s", provider.full_name)
        return provider

    for name in _AUTO_ORDER:
        provider = _FACTORIES[name]()
        if provider is not None:
            logger.info("Loaded provider: %s (auto)", provider.full_name)
            return provider

    raise RuntimeError(
        "No inference provider available.\n"
        "Set at least one key in .env:\n"
        "  • OPENAI_API_KEY\n"
        "  • ANTHROPIC_API_KEY\n"
        "  • GOOGLE_API_KEY"
    )


def get_provider() -> VisionProvider:
    global _provider
    if _provider is None:
        _provider = _build_provider()
    return _provider


def reset_provider() -> None:
    global _provider
    _provider = None
