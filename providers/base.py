"""
Shared types and base class for all inference providers.

A provider turns (prompt, image URLs, options) into raw model text. It knows
nothing about stages, retries or JSON: those live in inference_client.py.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────────

class InferenceError(Exception):
    """Base class for inference failures."""


class TransportError(InferenceError):
    """Network / HTTP / SDK failure. Retried with backoff."""


class EmptyResponseError(TransportError):
    """The service answered but returned no text. Retried like a transport error."""


class JsonParseError(InferenceError):
    """A successful response with no parseable JSON object. Never retried."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


# ── Options / response ─────────────────────────────────────────────────────────

REASONING_LEVELS = ("low", "medium", "high")


@dataclass
class InferenceOptions:
    reasoning_effort: str = "medium"    # low | medium | high
    verbosity: str = "low"              # low | medium | high
    web_search: bool = False
    max_output_tokens: int = 1500
    temperature: float = 0.2
    max_retries: int = 2

    def __post_init__(self) -> None:
        if self.reasoning_effort not in REASONING_LEVELS:
            raise ValueError(f"reasoning_effort must be one of {REASONING_LEVELS}")
        if self.verbosity not in REASONING_LEVELS:
            raise ValueError(f"verbosity must be one of {REASONING_LEVELS}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


@dataclass
class ProviderResponse:
    text: str
    model_id: str
    latency_ms: int
    input_tokens: int = 0
    output_tokens: int = 0


# ── JSON extraction ────────────────────────────────────────────────────────────

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def _strip_fences(text: str) -> str:
    text = text.strip()
    # Strip ```json ... ``` or ``` ... ``` fences if present
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return text.strip()


def clean_json_string(raw: str) -> str:
    """
    Cut the first balanced {...} object out of free-form model text.

    Braces inside JSON strings are ignored while counting depth. Anything
    after the matching close brace is dropped, and a comma directly before
    a closing } or ] is removed. Returns "" if no object start is found.
    """
    text = _strip_fences(raw)
    start = text.find("{")
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escaped = False
    end = -1
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                end = i
                break

    # Unbalanced: keep everything from the first brace and let json.loads decide
    candidate = text[start:end + 1] if end != -1 else text[start:]
    return _TRAILING_COMMA.sub(r"\1", candidate)


def parse_json_response(raw: str, provider_name: str = "inference") -> dict:
    """
    Parse the JSON object from a model response.
    Tries the text as-is first, then the extracted object.
    Raises JsonParseError on failure.
    """
    if not raw or not raw.strip():
        raise JsonParseError(f"[{provider_name}] Empty response, nothing to parse", raw or "")
    try:
        data = json.loads(_strip_fences(raw))
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    cleaned = clean_json_string(raw)
    if not cleaned:
        logger.error("[%s] No JSON object in response: %s", provider_name, raw[:300])
        raise JsonParseError(f"[{provider_name}] No JSON object found in response", raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", provider_name, raw[:300])
        raise JsonParseError(f"[{provider_name}] JSON parse error: {exc}", raw) from exc
    if not isinstance(data, dict):
        raise JsonParseError(f"[{provider_name}] Expected a JSON object", raw)
    return data


# ── Image helpers ──────────────────────────────────────────────────────────────

def detect_mime_type(data: bytes) -> str:
    """Sniff the image type from magic bytes (default jpeg)."""
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:12] in (b"ftypheic", b"ftypheix", b"ftypmif1"):
        return "image/heic"
    return "image/jpeg"


def split_data_uri(url: str) -> Optional[tuple[str, bytes]]:
    """Return (mime_type, bytes) for a base64 data: URI, or None for any other URL."""
    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, b64 = url[5:].split(";base64,", 1)
    return header or "image/jpeg", base64.b64decode(b64)


# ── Abstract base ──────────────────────────────────────────────────────────────

class VisionProvider(ABC):
    """Base class all inference providers must implement."""

    name: str           # e.g. "openai"
    model_id: str       # e.g. "gpt-5.1"

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        image_urls: Sequence[str],
        options: InferenceOptions,
    ) -> ProviderResponse:
        """Send one request. SDK errors propagate; the client wraps them."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"
