"""
Tests for search_backends/ebay_backend.py.

Covers:
  - _parse_price: various formats
  - TokenCache: fetch once, refresh margin, expiry, invalidate, shared refresh
  - _parse_item: categories + leaf categories merged, missing fields
  - search(): success, HTTP error, 401 invalidates the token, network error
  - token request: Basic auth header, client_credentials grant
"""
from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from search_backends.base import SearchBackendError
from search_backends.ebay_backend import (
    API_SCOPE,
    EbayBrowseBackend,
    TokenCache,
    _parse_price,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def fake_response(payload: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.text = AsyncMock(return_value="error text")
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def fake_session(get_resp=None, post_resp=None) -> MagicMock:
    session = MagicMock()
    session.get = MagicMock(return_value=get_resp)
    session.post = MagicMock(return_value=post_resp)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.fixture
def backend():
    cache = TokenCache(AsyncMock(return_value=("tok-1", 7200)))
    return EbayBrowseBackend("client-id", "client-secret", token_cache=cache)


# ── _parse_price ───────────────────────────────────────────────────────────────

class TestParsePrice:
    def test_plain(self):
        assert _parse_price("150.50") == 150.5

    def test_dollar_and_comma(self):
        assert _parse_price("$1,299.00") == 1299.0

    def test_number(self):
        assert _parse_price(42) == 42.0

    def test_not_a_price(self):
        assert _parse_price("N/A") is None
        assert _parse_price(None) is None
        assert _parse_price(True) is None


# ── TokenCache ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestTokenCache:
    async def test_fetched_once_while_valid(self):
        fetch = AsyncMock(return_value=("abc", 7200))
        cache = TokenCache(fetch, clock=FakeClock())
        assert await cache.get() == "abc"
        assert await cache.get() == "abc"
        assert fetch.await_count == 1

    async def test_refreshed_inside_margin(self):
        clock = FakeClock()
        fetch = AsyncMock(side_effect=[("old", 120), ("new", 120)])
        cache = TokenCache(fetch, refresh_margin=60, clock=clock)
        assert await cache.get() == "old"
        clock.now += 59
        assert await cache.get() == "old"
        clock.now += 2          # 61s in: within 60s of real expiry
        assert await cache.get() == "new"

    async def test_invalidate_forces_refetch(self):
        fetch = AsyncMock(side_effect=[("a", 7200), ("b", 7200)])
        cache = TokenCache(fetch, clock=FakeClock())
        await cache.get()
        cache.invalidate()
        assert not cache.valid
        assert await cache.get() == "b"

    async def test_concurrent_callers_share_one_refresh(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return "shared", 7200

        cache = TokenCache(fetch, clock=FakeClock())
        tokens = await asyncio.gather(*(cache.get() for _ in range(5)))
        assert tokens == ["shared"] * 5
        assert calls == 1


# ── _parse_item ────────────────────────────────────────────────────────────────

class TestParseItem:
    def test_full(self, backend):
        item = backend._parse_item({
            "itemId": "v1|123|0",
            "title": "Apple iPhone 13 128GB",
            "price": {"value": "399.99", "currency": "USD"},
            "condition": "Used",
            "categories": [{"categoryId": "9355"}, {"categoryId": "15032"}],
            "leafCategoryIds": ["9355", "171485"],
            "itemWebUrl": "https://www.ebay.com/itm/123",
            "image": {"imageUrl": "https://i.ebayimg.com/1.jpg"},
        })
        assert item.item_id == "v1|123|0"
        assert item.price == 399.99
        assert item.category_ids == ["9355", "15032", "171485"]
        assert item.image_url == "https://i.ebayimg.com/1.jpg"

    def test_missing_price_and_currency(self, backend):
        item = backend._parse_item({"itemId": "1", "title": "x"})
        assert item.price is None
        assert item.currency == "USD"
        assert item.condition == "N/A"

    def test_no_id_skipped(self, backend):
        assert backend._parse_item({"title": "x"}) is None


# ── search() ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSearch:
    async def test_success(self, backend):
        payload = {"itemSummaries": [
            {"itemId": str(i), "title": f"Item {i}", "price": {"value": str(100 + i), "currency": "USD"}}
            for i in range(3)
        ]}
        session = fake_session(get_resp=fake_response(payload))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            items = await backend.search("iphone 13", limit=3)

        assert [i.price for i in items] == [100.0, 101.0, 102.0]
        kwargs = session.get.call_args.kwargs
        assert kwargs["params"] == {"q": "iphone 13", "limit": "3"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok-1"
        assert kwargs["headers"]["X-EBAY-C-MARKETPLACE-ID"] == "EBAY_US"

    async def test_empty_results(self, backend):
        session = fake_session(get_resp=fake_response({"total": 0}))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            assert await backend.search("nothing") == []

    async def test_http_error(self, backend):
        session = fake_session(get_resp=fake_response({}, status=500))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            with pytest.raises(SearchBackendError, match="500") as exc_info:
                await backend.search("x")
        assert exc_info.value.is_auth_error is False

    async def test_401_invalidates_token(self, backend):
        await backend.token_cache.get()
        session = fake_session(get_resp=fake_response({}, status=401))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            with pytest.raises(SearchBackendError) as exc_info:
                await backend.search("x")
        assert exc_info.value.is_auth_error
        assert not backend.token_cache.valid

    async def test_network_error_wrapped(self, backend):
        session = fake_session()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("reset"))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            with pytest.raises(SearchBackendError, match="request failed"):
                await backend.search("x")


# ── token request ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRequestToken:
    async def test_client_credentials_grant(self):
        backend = EbayBrowseBackend("my-id", "my-secret")
        session = fake_session(post_resp=fake_response({"access_token": "fresh", "expires_in": 7200}))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            token, expires_in = await backend._request_token()

        assert (token, expires_in) == ("fresh", 7200)
        kwargs = session.post.call_args.kwargs
        expected = base64.b64encode(b"my-id:my-secret").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
        assert kwargs["data"] == {"grant_type": "client_credentials", "scope": API_SCOPE}

    async def test_token_error_status(self):
        backend = EbayBrowseBackend("my-id", "bad-secret")
        session = fake_session(post_resp=fake_response({}, status=401))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            with pytest.raises(SearchBackendError) as exc_info:
                await backend._request_token()
        assert exc_info.value.is_auth_error

    async def test_missing_access_token(self):
        backend = EbayBrowseBackend("my-id", "my-secret")
        session = fake_session(post_resp=fake_response({"expires_in": 7200}))
        with patch("search_backends.ebay_backend.aiohttp.ClientSession", return_value=session):
            with pytest.raises(SearchBackendError, match="access_token"):
                await backend._request_token()
