"""Pipeline orchestrator for the Token Filter Pipeline.

This module provides the PipelineOrchestrator that drives one run through
every stage in order, and ``run_pipeline``, which wires the orchestrator to
BirdEye, the decision function and the document store.

Pipeline flow:
    Parameter Selection → Token List → Market Analysis → Metadata Analysis
    → Ownership (KOL) Analysis → Reasoning → Persistence
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from token_filter_pipeline.config import Settings, get_settings
from token_filter_pipeline.ingestor.birdeye_client import BirdeyeClient
from token_filter_pipeline.ingestor.token_list import TokenListFetcher
from token_filter_pipeline.llm.client import LLMClient
from token_filter_pipeline.stages.market import MarketAnalysisStage
from token_filter_pipeline.stages.metadata import MetadataAnalysisStage
from token_filter_pipeline.stages.models import (
    PipelineRun,
    PipelineRunSummary,
    PipelineState,
    StageResult,
    StageStats,
    TokenCandidate,
    new_run_id,
)
from token_filter_pipeline.stages.ownership import FirstSeenEntryTimes, OwnershipAnalysisStage
from token_filter_pipeline.stages.parameters import FilterParameterSelector
from token_filter_pipeline.stages.persistence import PersistenceResult, PersistenceStage
from token_filter_pipeline.stages.reasoning import ReasoningStage
from token_filter_pipeline.storage.database import DatabaseManager
from token_filter_pipeline.storage.document_store import DocumentStoreError, SQLDocumentStore

if TYPE_CHECKING:
    from typing import Any

    from token_filter_pipeline.llm.client import DecisionFunction
    from token_filter_pipeline.stages.ownership import WalletRegistry
    from token_filter_pipeline.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

__all__ = ["PipelineOrchestrator", "PipelineState", "run_pipeline"]


class PipelineCancelled(Exception):
    """Raised internally when a cancellation request is seen at a checkpoint."""


class PipelineOrchestrator:
    """Runs the stages of one pipeline run strictly in sequence.

    Each stage receives the previous stage's survivors. Cancellation is
    cooperative and checked between stages; a cancelled run keeps the
    statistics collected so far and persists nothing.

    An orchestrator drives exactly one run.
    """

    def __init__(
        self,
        *,
        selector: FilterParameterSelector,
        fetcher: TokenListFetcher,
        market: MarketAnalysisStage,
        metadata: MetadataAnalysisStage,
        ownership: OwnershipAnalysisStage,
        reasoning: ReasoningStage,
        persistence: PersistenceStage,
    ) -> None:
        self._selector = selector
        self._fetcher = fetcher
        self._market = market
        self._metadata = metadata
        self._ownership = ownership
        self._reasoning = reasoning
        self._persistence = persistence

        self._state = PipelineState.IDLE
        self._cancel_event = asyncio.Event()

    @property
    def state(self) -> PipelineState:
        """Current orchestrator state."""
        return self._state

    def cancel(self) -> None:
        """Request cancellation at the next stage boundary."""
        if not self._state.is_terminal:
            logger.info("Cancellation requested (state=%s)", self._state.value)
        self._cancel_event.set()

    def _transition(self, state: PipelineState) -> None:
        if self._cancel_event.is_set():
            raise PipelineCancelled
        logger.info("Pipeline %s -> %s", self._state.value, state.value)
        self._state = state

    def _record(self, run: PipelineRun, result: StageResult) -> list[TokenCandidate]:
        run.stages.append(result.stats)
        run.errors.extend(result.errors)
        return result.survivors

    async def run(self) -> PipelineRunSummary:
        """Execute one full run.

        Returns:
            The run summary. Unexpected errors end the run in FAILED with the
            statistics gathered so far.

        Raises:
            RuntimeError: If this orchestrator has already been used.
        """
        if self._state != PipelineState.IDLE:
            raise RuntimeError(f"Cannot start a run in state {self._state.value}")

        run = PipelineRun(run_id=new_run_id(), started_at=datetime.now(UTC))
        persisted = PersistenceResult()
        logger.info("Starting pipeline run %s", run.run_id)

        try:
            self._transition(PipelineState.SELECTING_PARAMETERS)
            run.parameters = await self._selector.select()

            self._transition(PipelineState.FETCHING_LIST)
            fetched = await self._fetcher.fetch(run.parameters)
            candidates = [TokenCandidate.from_record(r) for r in fetched.records]
            run.fetched = candidates
            run.stages.append(
                StageStats(
                    stage="fetch",
                    count_in=len(candidates) + fetched.skipped + fetched.duplicates,
                    count_out=len(candidates),
                    count_errored=fetched.skipped,
                )
            )
            run.errors.extend(fetched.errors)

            self._transition(PipelineState.ANALYZING_MARKET)
            candidates = self._record(run, await self._market.run(candidates))

            self._transition(PipelineState.ANALYZING_METADATA)
            candidates = self._record(run, await self._metadata.run(candidates))

            self._transition(PipelineState.ANALYZING_OWNERSHIP)
            candidates = self._record(run, await self._ownership.run(candidates))

            self._transition(PipelineState.REASONING)
            candidates = self._record(run, await self._reasoning.run(candidates))
            run.candidates = candidates

            self._transition(PipelineState.PERSISTING)
            run.finished_at = datetime.now(UTC)
            persisted = await self._persistence.run(run)

            self._state = PipelineState.DONE
        except PipelineCancelled:
            self._state = PipelineState.CANCELLED
            logger.warning("Pipeline run %s cancelled", run.run_id)
        except Exception as e:
            self._state = PipelineState.FAILED
            run.errors.append(f"unexpected error: {e}")
            logger.exception("Pipeline run %s failed", run.run_id)

        summary = PipelineRunSummary(
            run_id=run.run_id,
            state=self._state,
            stages=list(run.stages),
            survivor_count=len(run.candidates),
            persisted=persisted.persisted,
            persist_failed=persisted.failed,
            errors=list(run.errors),
            parameters=run.parameters,
        )
        logger.info(
            "Pipeline run %s finished: state=%s survivors=%d persisted=%d failed=%d errors=%d",
            run.run_id,
            summary.state.value,
            summary.survivor_count,
            summary.persisted,
            summary.persist_failed,
            len(summary.errors),
        )
        return summary


def build_orchestrator(
    settings: Settings,
    *,
    market_data: Any,
    decide: DecisionFunction,
    store: DocumentStore,
    registry: WalletRegistry | None = None,
    dry_run: bool = False,
) -> PipelineOrchestrator:
    """Assemble an orchestrator from settings and collaborators.

    Args:
        settings: Application settings.
        market_data: BirdEye-compatible client (token list, metadata, holdings).
        decide: Decision function.
        store: Document store.
        registry: Tracked wallet registry.
        dry_run: Skip every document-store write.
    """
    analysis = settings.analysis
    return PipelineOrchestrator(
        selector=FilterParameterSelector(
            decide,
            floors=settings.filter.floors(),
            max_filters=settings.filter.max_filters,
            sort_by=settings.filter.sort_by,
            sort_type=settings.filter.sort_type,
            limit=settings.birdeye.page_size,
            max_retries=settings.filter.selector_max_retries,
        ),
        fetcher=TokenListFetcher(market_data, max_offset=settings.birdeye.max_offset),
        market=MarketAnalysisStage(
            decide,
            threshold=analysis.market_threshold,
            batch_size=analysis.market_batch_size,
            concurrency=analysis.concurrency,
        ),
        metadata=MetadataAnalysisStage(
            market_data,
            decide,
            threshold=analysis.metadata_threshold,
            batch_size=analysis.metadata_batch_size,
            concurrency=analysis.concurrency,
        ),
        ownership=OwnershipAnalysisStage(
            market_data,
            registry=registry,
            entry_time_provider=FirstSeenEntryTimes(store, read_only=dry_run),
            concurrency=analysis.concurrency,
            store_timeout_seconds=settings.persistence.timeout_seconds,
            store_max_retries=settings.persistence.max_retries,
            store_retry_base_delay=settings.persistence.retry_base_delay,
        ),
        reasoning=ReasoningStage(decide, concurrency=analysis.concurrency),
        persistence=PersistenceStage(
            store,
            max_retries=settings.persistence.max_retries,
            timeout_seconds=settings.persistence.timeout_seconds,
            retry_base_delay=settings.persistence.retry_base_delay,
            dry_run=dry_run,
        ),
    )


async def run_pipeline(
    settings: Settings | None = None,
    *,
    market_data: Any = None,
    decide: DecisionFunction | None = None,
    store: DocumentStore | None = None,
    registry: WalletRegistry | None = None,
    dry_run: bool | None = None,
) -> PipelineRunSummary:
    """Run the pipeline once.

    Collaborators that are not supplied are built from settings and closed
    when the run ends.

    An unreachable document store ends the run in FAILED before any stage
    runs.

    Raises:
        ConfigurationError: If settings are invalid for a run. Raised before
            any stage runs.
    """
    settings = settings or get_settings()
    settings.validate_requirements(command="run")
    dry_run = settings.dry_run if dry_run is None else dry_run

    redis: Redis | None = None
    db: DatabaseManager | None = None
    owned_clients: list[Any] = []

    try:
        if market_data is None:
            if settings.redis.enabled:
                redis = Redis.from_url(settings.redis.url)
            market_data = BirdeyeClient(
                settings.birdeye.api_key.get_secret_value() if settings.birdeye.api_key else "",
                api_url=settings.birdeye.api_url,
                chain=settings.birdeye.chain,
                redis=redis,
                request_delay_seconds=settings.birdeye.request_delay_ms / 1000,
                max_retries=settings.birdeye.max_retries,
                retry_base_delay=settings.birdeye.retry_base_delay,
                timeout_seconds=settings.birdeye.timeout_seconds,
                metadata_cache_ttl_seconds=settings.birdeye.metadata_cache_ttl_seconds,
            )
            owned_clients.append(market_data)

        if decide is None:
            llm = LLMClient(
                settings.llm.api_key.get_secret_value() if settings.llm.api_key else "",
                base_url=settings.llm.base_url,
                model=settings.llm.model,
                temperature=settings.llm.temperature,
                max_tokens=settings.llm.max_tokens,
                timeout=settings.llm.timeout_seconds,
                max_retries=settings.llm.max_retries,
                retry_base_delay=settings.llm.retry_base_delay,
            )
            owned_clients.append(llm)
            decide = llm.complete

        if store is None:
            db = DatabaseManager(settings.database.url)
            sql_store = SQLDocumentStore(db)
            try:
                await sql_store.ensure_schema()
            except DocumentStoreError as e:
                logger.error("Document store unavailable, run not started: %s", e)
                return PipelineRunSummary(
                    run_id=new_run_id(),
                    state=PipelineState.FAILED,
                    stages=[],
                    survivor_count=0,
                    errors=[str(e)],
                )
            store = sql_store
            if registry is None:
                registry = sql_store

        orchestrator = build_orchestrator(
            settings,
            market_data=market_data,
            decide=decide,
            store=store,
            registry=registry,
            dry_run=dry_run,
        )
        return await orchestrator.run()
    finally:
        for client in owned_clients:
            await client.close()
        if db is not None:
            await db.dispose_async()
        if redis is not None:
            await redis.aclose()
