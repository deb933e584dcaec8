"""
image_store.py — where uploaded photos go before inference.

Images are stored once, up front; every later stage refers to them by URL.
DataUriImageStore keeps the bytes inline as data: URIs, which every
provider accepts. A bucket-backed store only has to implement put().
"""
from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from providers.base import detect_mime_type

logger = logging.getLogger(__name__)


class ImageValidationError(ValueError):
    """Rejected upload (count, size, or type). `code` is a short machine-readable reason."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class ImageUpload:
    data: bytes
    mime_type: str = ""
    filename: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.mime_type:
            self.mime_type = detect_mime_type(self.data)

    @classmethod
    def from_path(cls, path: str) -> "ImageUpload":
        with open(path, "rb") as f:
            data = f.read()
        return cls(data=data, filename=path)


class ImageStore(ABC):

    @abstractmethod
    async def put(self, upload: ImageUpload) -> str:
        """Store one image and return a stable URL for it."""
        ...

    async def put_many(self, uploads: Sequence[ImageUpload]) -> list[str]:
        """Store all images concurrently, preserving order."""
        return list(await asyncio.gather(*(self.put(u) for u in uploads)))


class DataUriImageStore(ImageStore):

    async def put(self, upload: ImageUpload) -> str:
        b64 = base64.b64encode(upload.data).decode()
        return f"data:{upload.mime_type};base64,{b64}"
