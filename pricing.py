"""
pricing.py — resale price for an identified product.

Two interchangeable strategies:

  StructuredMarketSearch  keyword search on the marketplace (eBay Browse API),
                          filtered to the category's allow-list, reduced to
                          min / max / average / count
  ModelEstimatedPricing   the inference model (web search on) estimates
                          per-marketplace ranges and a recommended price

PRICING_STRATEGY picks one: market | model | auto (market, then model when the
search fails or finds nothing). Neither strategy raises: failures come back as
a PricingOutcome with success=False and an error message.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import config
from inference_client import InferenceClient, stage_options
from models import Category
from prompts import pricing_prompt
from search_backends.base import MarketItem, SearchBackend, SearchBackendError
from validators import coerce_number, coerce_text

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200
_PLACEHOLDERS = ("", "none", "unknown", "n/a", "null", "not visible")
_QUERY_CONDITIONS = ("new", "like new", "refurbished")


# ── Query building ────────────────────────────────────────────────────────────

def _clean(value: Any) -> str:
    text = coerce_text(value).strip()
    if text.lower() in _PLACEHOLDERS or "not visible" in text.lower():
        return ""
    return text


def build_search_query(product: dict[str, Any]) -> str:
    """
    Marketplace keyword query, most specific first:
      brand + model (+ variant) → brand or model alone → identified_product,
      then storage, then size (unless already in the query), then condition
      (only new / like new / refurbished). Capped at 200 characters.
    """
    brand = _clean(product.get("brand"))
    model = _clean(product.get("model"))
    parts: list[str] = []

    if brand and model:
        parts.append(f"{brand} {model}")
        variant = _clean(product.get("model_variant"))
        if variant:
            parts.append(variant)
    elif brand or model:
        parts.append(brand or model)

    if not parts:
        identified = _clean(product.get("identified_product"))
        if identified:
            parts.append(identified)

    storage = _clean(product.get("storage"))
    if storage:
        parts.append(storage)

    size = _clean(product.get("size"))
    if size and size.lower() not in " ".join(parts).lower():
        parts.append(size)

    condition = _clean(product.get("condition_rating")).lower()
    if condition in _QUERY_CONDITIONS:
        parts.append(condition)

    return " ".join(parts)[:MAX_QUERY_LENGTH].strip()


# ── Statistics ────────────────────────────────────────────────────────────────

@dataclass
class PriceStatistics:
    average_price: float = 0.0
    min_price: float = 0.0
    max_price: float = 0.0
    count: int = 0
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "average_price": self.average_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "count": self.count,
            "currency": self.currency,
        }


def compute_price_statistics(prices: Iterable[Any], currency: str = "USD") -> PriceStatistics:
    """Stats over the numeric prices; non-numeric entries are skipped, not counted."""
    values = [v for v in (coerce_number(p) for p in prices) if v is not None]
    if not values:
        return PriceStatistics(currency=currency)
    return PriceStatistics(
        average_price=round(sum(values) / len(values), 2),
        min_price=round(min(values), 2),
        max_price=round(max(values), 2),
        count=len(values),
        currency=currency,
    )


def filter_items(items: Iterable[MarketItem], category: Category | str) -> list[MarketItem]:
    allowed = config.CATEGORY_ALLOW_LISTS.get(Category(category).value)
    return [item for item in items if item.in_categories(allowed)]


# ── Outcome ───────────────────────────────────────────────────────────────────

@dataclass
class PricingOutcome:
    strategy: str                                   # market | model
    success: bool
    statistics: Optional[PriceStatistics] = None    # market strategy only
    estimate: dict = field(default_factory=dict)    # model strategy only
    query: Optional[str] = None
    items: list[MarketItem] = field(default_factory=list)
    error: Optional[str] = None
    auth_failed: bool = False
    fallback_error: Optional[str] = None            # market error when auto fell back

    @classmethod
    def failed(cls, strategy: str, error: str, **kwargs) -> "PricingOutcome":
        return cls(strategy=strategy, success=False, error=error, **kwargs)


# ── Strategies ────────────────────────────────────────────────────────────────

_backend: Optional[SearchBackend] = None


def get_backend() -> SearchBackend:
    """Return the marketplace backend, building it once on first call."""
    global _backend
    if _backend is None:
        _backend = _build_backend()
        logger.info("Search backend: %s", _backend.name)
    return _backend


def _build_backend() -> SearchBackend:
    if not (config.EBAY_CLIENT_ID and config.EBAY_CLIENT_SECRET):
        raise RuntimeError(
            "No marketplace search configured.\n"
            "Set EBAY_CLIENT_ID and EBAY_CLIENT_SECRET in .env "
            "or use PRICING_STRATEGY=model."
        )
    from search_backends.ebay_backend import EbayBrowseBackend
    return EbayBrowseBackend(
        config.EBAY_CLIENT_ID,
        config.EBAY_CLIENT_SECRET,
        marketplace_id=config.EBAY_MARKETPLACE_ID,
        timeout=config.EBAY_TIMEOUT_SECS,
    )


class StructuredMarketSearch:
    name = "market"

    def __init__(self, backend: Optional[SearchBackend] = None) -> None:
        self._backend = backend

    async def search(self, product: dict[str, Any], category: Category | str) -> PricingOutcome:
        query = build_search_query(product)
        if not query:
            return PricingOutcome.failed(self.name, "No usable search terms for this product")

        try:
            backend = self._backend or get_backend()
            items = await backend.search(query, limit=config.SEARCH_RESULT_LIMIT)
        except SearchBackendError as exc:
            logger.error("[pricing] Market search failed for '%s': %s", query, exc)
            return PricingOutcome.failed(
                self.name, str(exc), query=query, auth_failed=exc.is_auth_error,
                statistics=PriceStatistics(),
            )
        except Exception as exc:
            logger.error("[pricing] Market search failed for '%s': %s", query, exc)
            return PricingOutcome.failed(self.name, str(exc), query=query, statistics=PriceStatistics())

        valid = filter_items(items, category)
        currency = next((i.currency for i in valid if i.price is not None), "USD")
        stats = compute_price_statistics((i.price for i in valid), currency)
        logger.info(
            "[pricing] '%s': %d item(s), %d in category, %d priced",
            query, len(items), len(valid), stats.count,
        )
        if stats.count == 0:
            return PricingOutcome.failed(
                self.name, "No matching listings with a price", query=query,
                items=valid, statistics=stats,
            )
        return PricingOutcome(
            strategy=self.name, success=True, statistics=stats, query=query, items=valid,
        )


class ModelEstimatedPricing:
    name = "model"

    def __init__(self, client: Optional[InferenceClient] = None) -> None:
        self._client = client or InferenceClient()

    async def estimate(self, product: dict[str, Any], category: Category | str) -> PricingOutcome:
        try:
            data = await self._client.call_and_parse(
                pricing_prompt(product, category),
                options=stage_options("pricing", Category(category).value),
            )
        except Exception as exc:
            logger.error("[pricing] Model estimate failed: %s", exc)
            return PricingOutcome.failed(self.name, str(exc))
        if not data:
            return PricingOutcome.failed(self.name, "Model returned an empty estimate")
        return PricingOutcome(strategy=self.name, success=True, estimate=data)


class PricingAggregator:

    def __init__(
        self,
        market: Optional[StructuredMarketSearch] = None,
        model: Optional[ModelEstimatedPricing] = None,
        strategy: Optional[str] = None,
    ) -> None:
        self.market = market or StructuredMarketSearch()
        self._model = model
        self._strategy = strategy

    @property
    def model(self) -> ModelEstimatedPricing:
        if self._model is None:
            self._model = ModelEstimatedPricing()
        return self._model

    @property
    def strategy(self) -> str:
        return (self._strategy or config.PRICING_STRATEGY or "auto").strip().lower()

    async def price(self, product: dict[str, Any], category: Category | str) -> PricingOutcome:
        strategy = self.strategy
        try:
            if strategy == "market":
                return await self.market.search(product, category)
            if strategy == "model":
                return await self.model.estimate(product, category)

            outcome = await self.market.search(product, category)
            if outcome.success:
                return outcome
            logger.info("[pricing] Market search unusable (%s); falling back to model", outcome.error)
            fallback = await self.model.estimate(product, category)
            fallback.fallback_error = outcome.error
            return fallback
        except Exception as exc:
            logger.error("[pricing] Unexpected failure (%s): %s", strategy, exc, exc_info=True)
            return PricingOutcome.failed(strategy, str(exc))
