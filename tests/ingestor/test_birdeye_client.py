"""Tests for the BirdEye client."""

import json
import time
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import raw_token

from token_filter_pipeline.ingestor.birdeye_client import (
    METADATA_MULTIPLE_PATH,
    METADATA_SINGLE_PATH,
    TOKEN_LIST_PATH,
    WALLET_TOKEN_BALANCE_PATH,
    BirdeyeClient,
    BirdeyeClientError,
)
from token_filter_pipeline.ingestor.models import TokenMetadata
from token_filter_pipeline.retry import RateLimiter, RetryError

# ============================================================================
# Helpers
# ============================================================================


def ok(data) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data})


def make_client(handler, **kwargs) -> BirdeyeClient:
    kwargs.setdefault("request_delay_seconds", 0)
    kwargs.setdefault("retry_base_delay", 0)
    return BirdeyeClient("test-key", transport=httpx.MockTransport(handler), **kwargs)


def meta_payload(address: str) -> dict:
    return {
        "address": address,
        "symbol": "SYM",
        "name": "Symbol",
        "decimals": 6,
        "extensions": {"twitter": "https://twitter.com/sym"},
    }


# ============================================================================
# RateLimiter Tests
# ============================================================================


class TestRateLimiter:
    """Tests for RateLimiter."""

    async def test_first_acquire_does_not_wait(self) -> None:
        """First call should not wait."""
        limiter = RateLimiter(0.5)
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start < 0.05

    async def test_enforces_interval(self) -> None:
        """Subsequent calls should be rate limited."""
        limiter = RateLimiter(0.1)
        await limiter.acquire()
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start >= 0.08


# ============================================================================
# Token list Tests
# ============================================================================


class TestListTokens:
    """Tests for BirdeyeClient.list_tokens."""

    async def test_sends_headers_and_params(self) -> None:
        """Test the request carries auth, chain and pagination."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"items": [raw_token("Mint111")]})

        client = make_client(handler, chain="solana")
        items = await client.list_tokens({"min_liquidity": 10000}, offset=100, limit=50)
        await client.close()

        assert len(items) == 1
        request = seen[0]
        assert request.url.path == TOKEN_LIST_PATH
        assert request.headers["X-API-KEY"] == "test-key"
        assert request.headers["x-chain"] == "solana"
        assert request.url.params["min_liquidity"] == "10000"
        assert request.url.params["offset"] == "100"
        assert request.url.params["limit"] == "50"

    async def test_retries_transient_errors(self) -> None:
        """Test 429/5xx responses are retried."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(429 if calls == 1 else 503)
            return ok({"tokens": []})

        client = make_client(handler, max_retries=3)
        assert await client.list_tokens({}, offset=0, limit=10) == []
        assert calls == 3
        await client.close()

    async def test_gives_up_after_retries(self) -> None:
        """Test exhausting retries raises RetryError."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        client = make_client(handler, max_retries=2)
        with pytest.raises(RetryError):
            await client.list_tokens({}, offset=0, limit=10)
        assert calls == 3
        await client.close()

    async def test_client_error_not_retried(self) -> None:
        """Test a 400 fails immediately."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, text="bad filter")

        client = make_client(handler, max_retries=3)
        with pytest.raises(BirdeyeClientError, match="400"):
            await client.list_tokens({}, offset=0, limit=10)
        assert calls == 1
        await client.close()

    async def test_unsuccessful_body(self) -> None:
        """Test success=false is an error."""
        client = make_client(
            lambda r: httpx.Response(200, json={"success": False, "message": "denied"})
        )
        with pytest.raises(BirdeyeClientError, match="denied"):
            await client.list_tokens({}, offset=0, limit=10)
        await client.close()

    async def test_missing_items(self) -> None:
        """Test a body without an items array is an error."""
        client = make_client(lambda r: ok({"total": 0}))
        with pytest.raises(BirdeyeClientError):
            await client.list_tokens({}, offset=0, limit=10)
        await client.close()


# ============================================================================
# Metadata Tests
# ============================================================================


class TestFetchMetadata:
    """Tests for metadata lookups."""

    async def test_multiple_skips_missing_addresses(self) -> None:
        """Test addresses absent from the response are absent from the result."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"A": meta_payload("A"), "B": meta_payload("B"), "C": "garbage"})

        client = make_client(handler)
        result = await client.fetch_metadata(["A", "B", "C", "D"])
        await client.close()

        assert set(result) == {"A", "B"}
        assert result["A"].twitter == "https://twitter.com/sym"
        assert seen[0].url.path == METADATA_MULTIPLE_PATH
        assert seen[0].url.params["list_address"] == "A,B,C,D"

    async def test_rejects_more_than_fifty(self) -> None:
        """Test the 50-address cap."""
        client = make_client(lambda r: ok({}))
        with pytest.raises(ValueError):
            await client.fetch_metadata([f"M{i}" for i in range(51)])
        await client.close()

    async def test_uses_cache_first(self) -> None:
        """Test cached addresses are not requested again."""
        cached = TokenMetadata(address="A", symbol="CACHED")
        redis = AsyncMock()
        redis.get.side_effect = lambda key: (
            json.dumps(cached.to_dict()) if key.endswith(":A") else None
        )
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"B": meta_payload("B")})

        client = make_client(handler, redis=redis)
        result = await client.fetch_metadata(["A", "B"])
        await client.close()

        assert result["A"].symbol == "CACHED"
        assert result["B"].symbol == "SYM"
        assert seen[0].url.params["list_address"] == "B"
        redis.set.assert_awaited_once()
        assert redis.set.await_args.args[0] == "birdeye:solana:meta:B"

    async def test_cache_failure_is_not_fatal(self) -> None:
        """Test a Redis outage falls through to the API."""
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")

        client = make_client(lambda r: ok(meta_payload("A")), redis=redis)
        metadata = await client.fetch_metadata_single("A")
        await client.close()

        assert metadata.symbol == "SYM"

    async def test_single_lookup(self) -> None:
        """Test the single-address endpoint."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok(meta_payload("A"))

        client = make_client(handler)
        metadata = await client.fetch_metadata_single("A")
        await client.close()

        assert metadata.address == "A"
        assert seen[0].url.path == METADATA_SINGLE_PATH
        assert seen[0].url.params["address"] == "A"


# ============================================================================
# Holdings Tests
# ============================================================================


class TestFetchHoldings:
    """Tests for wallet holdings checks."""

    async def test_holding_found(self) -> None:
        """Test a positive balance becomes a holding."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"uiAmount": 42.0, "valueUsd": 10.0})

        client = make_client(handler)
        holding = await client.fetch_holdings("W1", "Mint111")
        await client.close()

        assert holding is not None
        assert holding.balance == 42.0
        assert seen[0].url.path == WALLET_TOKEN_BALANCE_PATH
        assert seen[0].url.params["wallet"] == "W1"
        assert seen[0].url.params["token_address"] == "Mint111"

    async def test_not_found_means_no_holding(self) -> None:
        """Test a 404 is treated as no position."""
        client = make_client(lambda r: httpx.Response(404))
        assert await client.fetch_holdings("W1", "Mint111") is None
        await client.close()

    async def test_zero_balance_means_no_holding(self) -> None:
        """Test a zero balance is treated as no position."""
        client = make_client(lambda r: ok({"uiAmount": 0}))
        assert await client.fetch_holdings("W1", "Mint111") is None
        await client.close()
