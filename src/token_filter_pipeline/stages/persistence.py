"""Persistence stage: writes results, market snapshots and the run record.

Every write is bounded by a timeout and retried with backoff. A write that
still fails is counted and skipped; the stage itself never aborts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from token_filter_pipeline.retry import RetryError, retry_async
from token_filter_pipeline.stages.models import PipelineRun
from token_filter_pipeline.storage.document_store import (
    MARKET_SNAPSHOTS,
    PIPELINE_RESULTS,
    PIPELINE_RUNS,
    DocumentStore,
    DocumentStoreError,
)

logger = logging.getLogger(__name__)


@dataclass
class PersistenceResult:
    """Write counters for one run."""

    attempted: int = 0
    persisted: int = 0
    failed: int = 0
    snapshots_written: int = 0
    snapshots_failed: int = 0
    run_record_written: bool = False


def result_key(address: str, run_id: str) -> str:
    return f"{address}:{run_id}"


class PersistenceStage:
    """Writes a finished run to the document store."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        max_retries: int = 3,
        timeout_seconds: float = 10.0,
        retry_base_delay: float = 0.5,
        dry_run: bool = False,
    ) -> None:
        self._store = store
        self._max_retries = max_retries
        self._timeout = timeout_seconds
        self._retry_base_delay = retry_base_delay
        self._dry_run = dry_run

    async def _write(self, collection: str, key: str, document: dict[str, Any]) -> bool:
        try:
            await retry_async(
                lambda: self._store.upsert(collection, key, document),
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
                retry_on=(DocumentStoreError,),
                timeout=self._timeout,
                description=f"upsert {collection}/{key}",
            )
        except RetryError as e:
            logger.error("Giving up on %s/%s: %s", collection, key, e.last_exception or e)
            return False
        return True

    async def run(self, run: PipelineRun) -> PersistenceResult:
        """Persist final survivors, raw snapshots and the run record."""
        result = PersistenceResult(attempted=len(run.candidates))
        if self._dry_run:
            logger.info("Dry run: skipping persistence of %d results", len(run.candidates))
            return result

        persisted_at = datetime.now(UTC).isoformat()
        for candidate in run.candidates:
            document = {**candidate.to_dict(), "run_id": run.run_id, "persisted_at": persisted_at}
            key = result_key(candidate.address, run.run_id)
            if await self._write(PIPELINE_RESULTS, key, document):
                result.persisted += 1
            else:
                result.failed += 1
                run.errors.append(f"failed to persist result for {candidate.address}")

        for candidate in run.fetched:
            snapshot = {
                "address": candidate.address,
                "symbol": candidate.symbol,
                "run_id": run.run_id,
                "captured_at": run.started_at.isoformat(),
                "market": candidate.market_snapshot,
            }
            key = result_key(candidate.address, run.run_id)
            if await self._write(MARKET_SNAPSHOTS, key, snapshot):
                result.snapshots_written += 1
            else:
                result.snapshots_failed += 1

        run_document = {
            **run.to_dict(),
            "persisted": result.persisted,
            "persist_failed": result.failed,
            "snapshots_written": result.snapshots_written,
        }
        result.run_record_written = await self._write(PIPELINE_RUNS, run.run_id, run_document)
        if not result.run_record_written:
            run.errors.append(f"failed to persist run record {run.run_id}")

        logger.info(
            "Persisted %d/%d results (%d failed), %d snapshots (%d failed)",
            result.persisted,
            result.attempted,
            result.failed,
            result.snapshots_written,
            result.snapshots_failed,
        )
        return result
