"""Ownership (KOL) analysis stage.

Checks whether tracked wallets hold each surviving candidate and attaches
the positions as evidence. This stage enriches only: it never rejects a
candidate, so its output count always equals its input count.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from token_filter_pipeline.ingestor.birdeye_client import BirdeyeClientError
from token_filter_pipeline.ingestor.models import TokenHolding
from token_filter_pipeline.retry import RetryError, retry_async
from token_filter_pipeline.stages.models import (
    OwnershipEvidence,
    StageName,
    StageResult,
    StageScore,
    StageStats,
    TokenCandidate,
)
from token_filter_pipeline.storage.document_store import (
    KOL_POSITIONS,
    DocumentStore,
    DocumentStoreError,
)
from token_filter_pipeline.storage.repos import TrackedWalletDTO

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (wallet_address, token_address) -> best-effort position entry time
EntryTimeProvider = Callable[[str, str], Awaitable[datetime | None]]


class HoldingsSource(Protocol):
    async def fetch_holdings(self, wallet: str, token_address: str) -> TokenHolding | None: ...


class WalletRegistry(Protocol):
    async def list_active_wallets(self) -> list[TrackedWalletDTO]: ...


class FirstSeenEntryTimes:
    """Entry times from the first sighting of a (wallet, token) position.

    The first time a position is observed, that time is recorded in the
    ``kol_positions`` collection; later runs reuse it. This approximates the
    real entry time from above.
    """

    def __init__(self, store: DocumentStore, *, read_only: bool = False) -> None:
        self._store = store
        self._read_only = read_only

    async def __call__(self, wallet_address: str, token_address: str) -> datetime | None:
        key = f"{wallet_address}:{token_address}"
        existing = await self._store.get(KOL_POSITIONS, key)
        if existing and existing.get("first_seen_at"):
            try:
                return datetime.fromisoformat(existing["first_seen_at"])
            except (TypeError, ValueError):
                logger.warning(
                    "Ignoring malformed first_seen_at %r for %s", existing["first_seen_at"], key
                )
                return None

        now = datetime.now(UTC)
        if not self._read_only:
            await self._store.upsert(
                KOL_POSITIONS,
                key,
                {
                    "wallet_address": wallet_address,
                    "token_address": token_address,
                    "first_seen_at": now.isoformat(),
                },
            )
        return now


class OwnershipAnalysisStage:
    """Attaches tracked-wallet positions to candidates."""

    def __init__(
        self,
        holdings: HoldingsSource,
        *,
        registry: WalletRegistry | None = None,
        entry_time_provider: EntryTimeProvider | None = None,
        concurrency: int = 4,
        store_timeout_seconds: float = 10.0,
        store_max_retries: int = 2,
        store_retry_base_delay: float = 0.5,
    ) -> None:
        self._holdings = holdings
        self._registry = registry
        self._entry_time = entry_time_provider
        self._concurrency = concurrency
        self._store_timeout = store_timeout_seconds
        self._store_max_retries = store_max_retries
        self._store_retry_base_delay = store_retry_base_delay

    async def _store_call(self, func: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_async(
            func,
            max_retries=self._store_max_retries,
            base_delay=self._store_retry_base_delay,
            retry_on=(DocumentStoreError,),
            timeout=self._store_timeout,
            description=description,
        )

    async def _load_wallets(self, errors: list[str]) -> list[TrackedWalletDTO]:
        if self._registry is None:
            return []
        try:
            return await self._store_call(
                self._registry.list_active_wallets, "load tracked wallets"
            )
        except RetryError as e:
            msg = f"loading tracked wallets failed: {e}"
            logger.error("Loading tracked wallets failed: %s", e)
            errors.append(msg)
            return []

    async def _entry_time_for(self, wallet_address: str, token_address: str) -> datetime | None:
        if self._entry_time is None:
            return None
        try:
            return await self._store_call(
                lambda: self._entry_time(wallet_address, token_address),
                f"entry time {wallet_address}:{token_address}",
            )
        except RetryError as e:
            logger.warning(
                "Entry time lookup failed for %s/%s: %s", wallet_address, token_address, e
            )
            return None

    async def run(self, candidates: Sequence[TokenCandidate]) -> StageResult:
        started = time.monotonic()
        errors: list[str] = []
        wallets = await self._load_wallets(errors)
        semaphore = asyncio.Semaphore(self._concurrency)
        failures = 0

        async def check(
            wallet: TrackedWalletDTO, address: str, token: str
        ) -> OwnershipEvidence | None:
            nonlocal failures
            async with semaphore:
                try:
                    holding = await self._holdings.fetch_holdings(address, token)
                except (BirdeyeClientError, RetryError) as e:
                    failures += 1
                    logger.warning("Holdings check failed for %s in %s: %s", address, token, e)
                    return None
            if holding is None:
                return None
            return OwnershipEvidence(
                wallet_id=wallet.id,
                wallet_name=wallet.name,
                wallet_address=address,
                position_size=holding.balance,
                value_usd=holding.value_usd,
                entry_time=await self._entry_time_for(address, token),
                entry_time_approximate=True,
                confidence=min(1.0, max(0.0, float(wallet.influence_score))),
            )

        async def annotate(candidate: TokenCandidate) -> TokenCandidate:
            found = await asyncio.gather(
                *(
                    check(wallet, address, candidate.address)
                    for wallet in wallets
                    for address in wallet.wallet_addresses
                )
            )
            for evidence in found:
                if evidence is not None:
                    candidate = candidate.with_evidence(evidence)
            top = max((e.confidence for e in candidate.ownership_evidence), default=0.0)
            kol_names = {e.wallet_name for e in candidate.ownership_evidence}
            return candidate.with_score(
                StageScore(
                    stage=StageName.OWNERSHIP,
                    score=top,
                    details={"kol_count": float(len(kol_names))},
                )
            )

        survivors = list(await asyncio.gather(*(annotate(c) for c in candidates)))
        if failures:
            errors.append(f"{failures} holdings checks failed")

        stats = StageStats(
            stage=StageName.OWNERSHIP.value,
            count_in=len(candidates),
            count_out=len(survivors),
            count_errored=failures,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "ownership analysis: %d candidates, %d wallets, %d with KOL holders, %d failed checks",
            len(candidates),
            len(wallets),
            sum(1 for c in survivors if c.ownership_evidence),
            failures,
        )
        return StageResult(survivors=survivors, rejected=[], stats=stats, errors=errors)
