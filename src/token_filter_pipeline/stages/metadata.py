"""Metadata/social analysis stage.

Enriches candidates with token metadata, then scores them on social
presence and project legitimacy. A candidate whose metadata cannot be
obtained is dropped without aborting the rest of its chunk.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any, Protocol

from token_filter_pipeline.ingestor.birdeye_client import (
    MAX_METADATA_ADDRESSES,
    BirdeyeClientError,
)
from token_filter_pipeline.ingestor.models import TokenMetadata
from token_filter_pipeline.llm.client import DecisionFunction
from token_filter_pipeline.llm.prompts import METADATA_ANALYSIS_PROMPT
from token_filter_pipeline.retry import RetryError
from token_filter_pipeline.stages.models import StageName, StageResult, TokenCandidate
from token_filter_pipeline.stages.scoring import chunked, score_in_batches

logger = logging.getLogger(__name__)

FETCH_ERRORS: tuple[type[Exception], ...] = (BirdeyeClientError, RetryError)


class MetadataSource(Protocol):
    async def fetch_metadata(self, addresses: Sequence[str]) -> dict[str, TokenMetadata]: ...

    async def fetch_metadata_single(self, address: str) -> TokenMetadata: ...


def metadata_item(candidate: TokenCandidate) -> dict[str, Any]:
    market = candidate.score_for(StageName.MARKET)
    return {
        "address": candidate.address,
        "symbol": candidate.symbol,
        "name": candidate.name,
        "metadata": candidate.metadata_snapshot.to_dict() if candidate.metadata_snapshot else None,
        "market_score": market.score if market else None,
    }


class MetadataAnalysisStage:
    """Enriches candidates with metadata and drops those below the threshold."""

    def __init__(
        self,
        source: MetadataSource,
        decide: DecisionFunction,
        *,
        threshold: float = 0.5,
        batch_size: int = 10,
        concurrency: int = 4,
    ) -> None:
        self._source = source
        self._decide = decide
        self._threshold = threshold
        self._batch_size = batch_size
        self._concurrency = concurrency

    async def _fetch_chunk(
        self, addresses: list[str], semaphore: asyncio.Semaphore
    ) -> dict[str, TokenMetadata]:
        async with semaphore:
            try:
                return await self._source.fetch_metadata(addresses)
            except FETCH_ERRORS as e:
                logger.warning(
                    "Metadata chunk of %d failed (%s); falling back to single lookups",
                    len(addresses),
                    e,
                )

        async def single(address: str) -> tuple[str, TokenMetadata | None]:
            async with semaphore:
                try:
                    return address, await self._source.fetch_metadata_single(address)
                except FETCH_ERRORS as e:
                    logger.warning("Metadata lookup failed for %s: %s", address, e)
                    return address, None

        results = await asyncio.gather(*(single(a) for a in addresses))
        return {address: meta for address, meta in results if meta is not None}

    async def enrich(
        self, candidates: Sequence[TokenCandidate]
    ) -> tuple[list[TokenCandidate], list[TokenCandidate]]:
        """Attach metadata. Returns (enriched, dropped)."""
        semaphore = asyncio.Semaphore(self._concurrency)
        addresses = [c.address for c in candidates]
        chunks = await asyncio.gather(
            *(
                self._fetch_chunk(chunk, semaphore)
                for chunk in chunked(addresses, MAX_METADATA_ADDRESSES)
            )
        )
        found: dict[str, TokenMetadata] = {}
        for chunk in chunks:
            found.update(chunk)

        enriched: list[TokenCandidate] = []
        dropped: list[TokenCandidate] = []
        for candidate in candidates:
            metadata = found.get(candidate.address)
            if metadata is None:
                dropped.append(candidate.reject(StageName.METADATA, "metadata unavailable"))
            else:
                enriched.append(candidate.with_metadata(metadata))
        if dropped:
            logger.warning("Dropped %d candidates without metadata", len(dropped))
        return enriched, dropped

    async def run(self, candidates: Sequence[TokenCandidate]) -> StageResult:
        started = time.monotonic()
        enriched, dropped = await self.enrich(candidates)
        result = await score_in_batches(
            enriched,
            stage=StageName.METADATA,
            decide=self._decide,
            prompt=METADATA_ANALYSIS_PROMPT,
            build_item=metadata_item,
            threshold=self._threshold,
            batch_size=self._batch_size,
            concurrency=self._concurrency,
            detail_keys=("social_score", "dev_score"),
        )
        result.rejected = dropped + result.rejected
        result.stats.count_in = len(candidates)
        result.stats.count_errored += len(dropped)
        result.stats.duration_seconds = time.monotonic() - started
        if dropped:
            result.errors.append(f"metadata unavailable for {len(dropped)} candidates")
        return result
