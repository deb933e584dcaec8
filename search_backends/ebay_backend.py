"""
eBay Browse API backend.

Auth: OAuth2 client-credentials grant (application token, no user consent)
  POST https://api.ebay.com/identity/v1/oauth2/token
  Authorization: Basic base64(client_id:client_secret)
  grant_type=client_credentials&scope=https://api.ebay.com/oauth/api_scope

The access token is held in a TokenCache owned by this backend instance and
refreshed 60s before eBay says it expires. Two searches racing on an expired
token share a single refresh.

Search: GET /buy/browse/v1/item_summary/search?q=…&limit=…
  X-EBAY-C-MARKETPLACE-ID selects the site (EBAY_US by default).
"""
from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from typing import Awaitable, Callable, Optional

import aiohttp

from search_backends.base import MarketItem, SearchBackend, SearchBackendError

logger = logging.getLogger(__name__)

# ── API constants ──────────────────────────────────────────────────────────────
TOKEN_URL  = "https://api.ebay.com/identity/v1/oauth2/token"
SEARCH_URL = "https://api.ebay.com/buy/browse/v1/item_summary/search"
API_SCOPE  = "https://api.ebay.com/oauth/api_scope"

TOKEN_REFRESH_MARGIN_SECS = 60


# ── Token cache ────────────────────────────────────────────────────────────────

class TokenCache:
    """
    One cached bearer token with a TTL.

    `fetch` returns (token, expires_in_seconds). The token is treated as
    stale `refresh_margin` seconds before it really expires. `clock` is
    injectable for tests (defaults to time.monotonic).
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[tuple[str, int]]],
        refresh_margin: float = TOKEN_REFRESH_MARGIN_SECS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._margin = refresh_margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        if self.valid:
            return self._token
        async with self._lock:
            # Another waiter may have refreshed while we queued
            if self.valid:
                return self._token
            token, expires_in = await self._fetch()
            self._token = token
            self._expires_at = self._clock() + max(float(expires_in) - self._margin, 0.0)
            logger.info("Obtained marketplace access token (expires in %ss)", expires_in)
            return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


# ── Price parsing ─────────────────────────────────────────────────────────────

def _parse_price(value) -> Optional[float]:
    """'$1,299.00' / '150.5' / 150.5 → float; anything non-numeric → None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d.]", "", str(value))
    if not cleaned or cleaned.count(".") > 1:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


# ── Backend ────────────────────────────────────────────────────────────────────

class EbayBrowseBackend(SearchBackend):

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        marketplace_id: str = "EBAY_US",
        timeout: float = 10.0,
        token_cache: Optional[TokenCache] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._marketplace_id = marketplace_id
        self._timeout = timeout
        self.token_cache = token_cache or TokenCache(self._request_token)

    @property
    def name(self) -> str:
        return f"eBay Browse API ({self._marketplace_id})"

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def _request_token(self) -> tuple[str, int]:
        basic = base64.b64encode(f"{self._client_id}:{self._client_secret}".encode()).decode()
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {basic}",
        }
        form = {"grant_type": "client_credentials", "scope": API_SCOPE}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    TOKEN_URL,
                    headers=headers,
                    data=form,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise SearchBackendError(
                            f"eBay token error {resp.status}: {text[:200]}", status=resp.status,
                        )
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SearchBackendError(f"eBay token request failed: {exc}") from exc

        token = data.get("access_token")
        if not token:
            raise SearchBackendError("eBay token response has no access_token", status=401)
        return token, int(data.get("expires_in", 7200))

    # ── Search ────────────────────────────────────────────────────────────────

    async def search(self, query: str, limit: int = 10) -> list[MarketItem]:
        token = await self.token_cache.get()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": self._marketplace_id,
        }
        params = {"q": query, "limit": str(limit)}

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    SEARCH_URL,
                    headers=headers,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        if resp.status == 401:
                            # Token revoked early; next call fetches a new one
                            self.token_cache.invalidate()
                        raise SearchBackendError(
                            f"eBay search error {resp.status}: {text[:200]}", status=resp.status,
                        )
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SearchBackendError(f"eBay search request failed: {exc}") from exc

        raw_items = data.get("itemSummaries") or []
        items = [item for item in (self._parse_item(r) for r in raw_items) if item]
        logger.info("eBay returned %d item(s) for query '%s'", len(items), query)
        return items

    # ── Parser ────────────────────────────────────────────────────────────────

    def _parse_item(self, raw: dict) -> Optional[MarketItem]:
        if not raw or not isinstance(raw, dict):
            return None
        item_id = raw.get("itemId")
        if not item_id:
            return None

        category_ids = [
            str(c.get("categoryId")) for c in raw.get("categories") or [] if c.get("categoryId")
        ]
        for leaf in raw.get("leafCategoryIds") or []:
            if str(leaf) not in category_ids:
                category_ids.append(str(leaf))

        price = raw.get("price") or {}
        return MarketItem(
            item_id=str(item_id),
            title=str(raw.get("title") or ""),
            price=_parse_price(price.get("value")),
            currency=price.get("currency") or "USD",
            condition=str(raw.get("condition") or "N/A"),
            category_ids=category_ids,
            item_url=raw.get("itemWebUrl"),
            image_url=(raw.get("image") or {}).get("imageUrl"),
        )
