"""
Abstract base for structured marketplace search backends.
Every backend returns the same MarketItem list — the pricing layer
doesn't care which marketplace answered.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MarketItem:
    item_id: str
    title: str
    price: Optional[float]          # None when the listing has no numeric price
    currency: str
    condition: str
    category_ids: list[str] = field(default_factory=list)   # categories + leaf categories
    item_url: Optional[str] = None
    image_url: Optional[str] = None

    def in_categories(self, allowed: Optional[set[str]]) -> bool:
        """True if any of the item's category ids is allowed (None = allow all)."""
        if allowed is None:
            return True
        return any(cid in allowed for cid in self.category_ids)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "price": self.price,
            "currency": self.currency,
            "condition": self.condition,
            "category_ids": list(self.category_ids),
            "item_url": self.item_url,
        }


class SearchBackendError(Exception):
    """A search request failed. `status` is the HTTP status when there was one."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)


class SearchBackend(ABC):
    """All backends must implement this interface."""

    @abstractmethod
    async def search(self, query: str, limit: int = 10) -> list[MarketItem]:
        """
        Keyword search. Returns up to `limit` items, marketplace order.
        Raises SearchBackendError on auth / HTTP / network failure.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name for logs/display."""
        ...
