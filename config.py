"""
Central configuration — reads from .env file.

Every setting is a plain module attribute computed once at import time.
Code reads config.X at call time (never `from config import X`) so tests
and the CLI can override a value with a simple attribute assignment.

Nothing here is required at import: a missing inference key only fails
when the first stage actually needs a provider.
"""
from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "true" if default else "false")
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _env_id_set(name: str, default: str) -> set[str]:
    return {x.strip() for x in os.getenv(name, default).split(",") if x.strip()}


# ── Storage ───────────────────────────────────────────────────────────────────
DATA_DIR: str = os.getenv("DATA_DIR", "data")

# ── Inference providers ───────────────────────────────────────────────────────
# auto      → first provider with a key: openai, then anthropic, then google
# openai | anthropic | google → force one
INFERENCE_PROVIDER: str = os.getenv("INFERENCE_PROVIDER", "auto")

OPENAI_API_KEY: Optional[str]    = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
GOOGLE_API_KEY: Optional[str]    = os.getenv("GOOGLE_API_KEY")

OPENAI_MODEL: str    = os.getenv("OPENAI_MODEL", "gpt-5.1")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
GEMINI_MODEL: str    = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# Retries after the first attempt; backoff is 1s, 2s, 4s, …
INFERENCE_MAX_RETRIES: int     = int(os.getenv("INFERENCE_MAX_RETRIES", "2"))
INFERENCE_TIMEOUT_SECS: float  = float(os.getenv("INFERENCE_TIMEOUT_SECS", "120"))
INFERENCE_MAX_OUTPUT_TOKENS: int = int(os.getenv("INFERENCE_MAX_OUTPUT_TOKENS", "1500"))

# Per-stage inference settings. "identification" is keyed by category.
STAGE_SETTINGS: dict[str, dict] = {
    "category": {
        "reasoning_effort": "low",
        "verbosity": "low",
        "web_search": False,
        "max_output_tokens": 500,
    },
    "identification": {
        "electronics": {"reasoning_effort": "low", "verbosity": "low", "web_search": False},
        "fashion":     {"reasoning_effort": "low", "verbosity": "low", "web_search": False},
        "other":       {"reasoning_effort": "low", "verbosity": "low", "web_search": False},
    },
    "verification": {
        "reasoning_effort": "medium",
        "verbosity": "medium",
        "web_search": True,
        "max_output_tokens": 2000,
    },
    "pricing": {
        "electronics": {"reasoning_effort": "low",    "verbosity": "medium", "web_search": True},
        "fashion":     {"reasoning_effort": "low",    "verbosity": "medium", "web_search": True},
        "other":       {"reasoning_effort": "medium", "verbosity": "medium", "web_search": True},
    },
}

# ── Validation ────────────────────────────────────────────────────────────────
MIN_CONFIDENCE_ELECTRONICS: int = int(os.getenv("MIN_CONFIDENCE_ELECTRONICS", "50"))
MIN_CONFIDENCE_FASHION: int     = int(os.getenv("MIN_CONFIDENCE_FASHION", "40"))
MIN_CONFIDENCE_OTHER: int       = int(os.getenv("MIN_CONFIDENCE_OTHER", "40"))

# Fashion items normally need a brand; set true to accept unbranded items
FASHION_ALLOW_MISSING_BRAND: bool = _env_bool("FASHION_ALLOW_MISSING_BRAND", False)
FASHION_MAX_MISSING_DETAILS: int  = int(os.getenv("FASHION_MAX_MISSING_DETAILS", "5"))
FASHION_VALID_GENDERS: tuple[str, ...] = ("Men", "Women", "Unisex", "Kids", "Baby")

# ── Uploads ───────────────────────────────────────────────────────────────────
MIN_IMAGES: int        = int(os.getenv("MIN_IMAGES", "1"))
MAX_IMAGES: int        = int(os.getenv("MAX_IMAGES", "5"))
MAX_FILE_SIZE_MB: float = float(os.getenv("MAX_FILE_SIZE_MB", "10"))
ALLOWED_MIME_TYPES: tuple[str, ...] = (
    "image/jpeg", "image/png", "image/webp", "image/gif", "image/heic",
)

# ── Marketplace search (eBay Browse API) ──────────────────────────────────────
EBAY_CLIENT_ID: Optional[str]     = os.getenv("EBAY_CLIENT_ID")
EBAY_CLIENT_SECRET: Optional[str] = os.getenv("EBAY_CLIENT_SECRET")
EBAY_MARKETPLACE_ID: str          = os.getenv("EBAY_MARKETPLACE_ID", "EBAY_US")
EBAY_TIMEOUT_SECS: float          = float(os.getenv("EBAY_TIMEOUT_SECS", "10"))
SEARCH_RESULT_LIMIT: int          = int(os.getenv("SEARCH_RESULT_LIMIT", "10"))

# Marketplace category ids a result must belong to; None = no filter.
# 9355 cell phones, 177 laptops, 171485 tablets, 11450 clothing/shoes/accessories
CATEGORY_ALLOW_LISTS: dict[str, Optional[set[str]]] = {
    "electronics": _env_id_set("EBAY_ELECTRONICS_CATEGORIES", "9355,177,171485"),
    "fashion":     _env_id_set("EBAY_FASHION_CATEGORIES", "11450"),
    "other":       None,
}

# ── Pricing ───────────────────────────────────────────────────────────────────
# market → structured marketplace search only
# model  → model-estimated pricing only
# auto   → market first, model estimate when the search fails or finds nothing
PRICING_STRATEGY: str = os.getenv("PRICING_STRATEGY", "auto")

ANALYZER_VERSION: str = "2.0"
