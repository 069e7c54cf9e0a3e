"""BirdEye market-data client with rate limiting, retries and caching.

This module provides the market-data collaborator used by the pipeline:
- Paginated token-list queries under a filter parameter set
- Single and multi-address token metadata lookups (Redis cache-first)
- Wallet token balances for tracked-wallet ownership checks

All requests share one minimum-interval rate limiter, so concurrent stage
workers never exceed the configured aggregate request rate.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx
from redis.asyncio import Redis

from token_filter_pipeline.ingestor.models import (
    RecordValidationError,
    TokenHolding,
    TokenMetadata,
)
from token_filter_pipeline.retry import RateLimiter, RetryError, retry_async

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_API_URL = "https://public-api.birdeye.so"
DEFAULT_CHAIN = "solana"
DEFAULT_REQUEST_DELAY_SECONDS = 0.5
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_METADATA_CACHE_TTL_SECONDS = 3600
DEFAULT_CACHE_PREFIX = "birdeye:"

# BirdEye accepts at most 50 addresses per multi-address metadata request.
MAX_METADATA_ADDRESSES = 50

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

TOKEN_LIST_PATH = "/defi/v3/token/list"
METADATA_MULTIPLE_PATH = "/defi/v3/token/meta-data/multiple"
METADATA_SINGLE_PATH = "/defi/v3/token/meta-data/single"
WALLET_TOKEN_BALANCE_PATH = "/v1/wallet/token_balance"


class BirdeyeClientError(Exception):
    """Base exception for BirdEye client errors."""


class BirdeyeNotFoundError(BirdeyeClientError):
    """Raised when a requested resource does not exist (e.g., 404)."""


class BirdeyeTransientError(BirdeyeClientError):
    """Raised for retryable errors (429/5xx, network issues, timeouts)."""


class BirdeyeClient:
    """Async BirdEye API client.

    Example:
        ```python
        client = BirdeyeClient(api_key="...", redis=Redis.from_url("redis://localhost:6379"))
        records = await client.list_tokens({"min_liquidity": 10_000}, offset=0, limit=100)
        metadata = await client.fetch_metadata([r["address"] for r in records])
        await client.close()
        ```
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        chain: str = DEFAULT_CHAIN,
        redis: Redis | None = None,
        request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        metadata_cache_ttl_seconds: int = DEFAULT_METADATA_CACHE_TTL_SECONDS,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the BirdEye client.

        Args:
            api_key: BirdEye API key.
            api_url: API host.
            chain: Chain name sent in the x-chain header.
            redis: Optional Redis client for metadata caching.
            request_delay_seconds: Minimum delay between consecutive requests.
            max_retries: Retries per request on transient errors.
            retry_base_delay: Initial backoff delay (doubles per retry).
            timeout_seconds: Per-request timeout.
            metadata_cache_ttl_seconds: Metadata cache TTL; 0 disables caching.
            rate_limiter: Shared limiter; one is created if omitted.
            transport: Optional httpx transport (used by tests).
        """
        self._api_url = api_url.rstrip("/")
        self._chain = chain
        self._redis = redis
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._timeout = timeout_seconds
        self._metadata_cache_ttl = metadata_cache_ttl_seconds
        self._rate_limiter = rate_limiter or RateLimiter(request_delay_seconds)
        self._cache_prefix = f"{DEFAULT_CACHE_PREFIX}{chain}:"

        self._http = httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "X-API-KEY": api_key,
                "x-chain": chain,
                "accept": "application/json",
            },
            timeout=timeout_seconds,
            transport=transport,
        )

        logger.info(
            "Initialized BirdeyeClient with host=%s, chain=%s, min_interval=%.2fs",
            self._api_url,
            chain,
            self._rate_limiter.min_interval,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _request_once(self, path: str, params: Mapping[str, Any]) -> Any:
        await self._rate_limiter.acquire()
        try:
            response = await self._http.get(path, params=dict(params))
        except httpx.TimeoutException as e:
            raise BirdeyeTransientError(f"timeout calling {path}: {e}") from e
        except httpx.TransportError as e:
            raise BirdeyeTransientError(f"network error calling {path}: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise BirdeyeTransientError(f"{path} returned HTTP {response.status_code}")
        if response.status_code == 404:
            raise BirdeyeNotFoundError(f"{path} returned HTTP 404")
        if response.status_code >= 400:
            raise BirdeyeClientError(
                f"{path} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BirdeyeClientError(f"{path} returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise BirdeyeClientError(f"{path} returned an unexpected body")
        if body.get("success") is False:
            raise BirdeyeClientError(f"{path} failed: {body.get('message') or 'unknown error'}")
        return body.get("data")

    async def _get(self, path: str, params: Mapping[str, Any]) -> Any:
        """GET with rate limiting and exponential backoff on transient errors.

        Raises:
            BirdeyeClientError: On non-retryable failures.
            RetryError: When transient failures exhaust every attempt.
        """
        return await retry_async(
            lambda: self._request_once(path, params),
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            retry_on=(BirdeyeTransientError,),
            description=f"BirdEye {path}",
        )

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _cache_key(self, key_type: str, address: str) -> str:
        return f"{self._cache_prefix}{key_type}:{address}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis or self._metadata_cache_ttl <= 0:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        if not self._redis or self._metadata_cache_ttl <= 0:
            return
        try:
            await self._redis.set(key, value, ex=self._metadata_cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_tokens(
        self,
        filters: Mapping[str, Any],
        offset: int,
        limit: int,
    ) -> list[Any]:
        """Fetch one page of the token list.

        Args:
            filters: Query parameters (filters plus sort directives).
            offset: Page offset.
            limit: Page size.

        Returns:
            Raw, unvalidated records.
        """
        params = {**filters, "offset": offset, "limit": limit}
        data = await self._get(TOKEN_LIST_PATH, params)
        if isinstance(data, dict):
            items = data.get("items", data.get("tokens"))
        else:
            items = data
        if not isinstance(items, list):
            raise BirdeyeClientError("token list response has no items array")
        return items

    async def fetch_metadata_single(self, address: str) -> TokenMetadata:
        """Fetch metadata for one token (cache-first).

        Raises:
            BirdeyeClientError: If the payload is missing or malformed.
            RetryError: If transient failures exhaust every attempt.
        """
        cache_key = self._cache_key("meta", address)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            try:
                return TokenMetadata.from_dict(json.loads(cached))
            except (ValueError, TypeError):
                logger.debug("Ignoring corrupt metadata cache entry for %s", address)

        data = await self._get(METADATA_SINGLE_PATH, {"address": address})
        try:
            metadata = TokenMetadata.from_api(address, data)
        except RecordValidationError as e:
            raise BirdeyeClientError(str(e)) from e
        await self._set_cached(cache_key, json.dumps(metadata.to_dict()))
        return metadata

    async def fetch_metadata(self, addresses: Sequence[str]) -> dict[str, TokenMetadata]:
        """Fetch metadata for up to 50 tokens in one request (cache-first).

        Addresses missing from the response are simply absent from the result.

        Raises:
            ValueError: If more than 50 addresses are requested.
            BirdeyeClientError: On non-retryable failures.
            RetryError: If transient failures exhaust every attempt.
        """
        if len(addresses) > MAX_METADATA_ADDRESSES:
            raise ValueError(f"at most {MAX_METADATA_ADDRESSES} addresses per metadata request")

        result: dict[str, TokenMetadata] = {}
        missing: list[str] = []
        for address in addresses:
            cached = await self._get_cached(self._cache_key("meta", address))
            if cached is None:
                missing.append(address)
                continue
            try:
                result[address] = TokenMetadata.from_dict(json.loads(cached))
            except (ValueError, TypeError):
                missing.append(address)

        if not missing:
            return result

        data = await self._get(METADATA_MULTIPLE_PATH, {"list_address": ",".join(missing)})
        if not isinstance(data, dict):
            raise BirdeyeClientError("metadata response is not an object")

        for address in missing:
            payload = data.get(address)
            if payload is None:
                continue
            try:
                metadata = TokenMetadata.from_api(address, payload)
            except RecordValidationError as e:
                logger.warning("Skipping malformed metadata: %s", e)
                continue
            result[address] = metadata
            await self._set_cached(self._cache_key("meta", address), json.dumps(metadata.to_dict()))

        return result

    async def fetch_holdings(self, wallet: str, token_address: str) -> TokenHolding | None:
        """Return the wallet's holding of a token, or None when it holds none.

        Raises:
            BirdeyeClientError: On non-retryable failures.
            RetryError: If transient failures exhaust every attempt.
        """
        try:
            data = await self._get(
                WALLET_TOKEN_BALANCE_PATH,
                {"wallet": wallet, "token_address": token_address},
            )
        except BirdeyeNotFoundError:
            return None
        return TokenHolding.from_api(wallet, token_address, data)


__all__ = [
    "BirdeyeClient",
    "BirdeyeClientError",
    "BirdeyeNotFoundError",
    "BirdeyeTransientError",
    "MAX_METADATA_ADDRESSES",
    "RetryError",
]
