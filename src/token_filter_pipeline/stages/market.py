"""Market analysis stage: scores candidates on their market snapshot."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from token_filter_pipeline.llm.client import DecisionFunction
from token_filter_pipeline.llm.prompts import MARKET_ANALYSIS_PROMPT
from token_filter_pipeline.stages.models import StageName, StageResult, TokenCandidate
from token_filter_pipeline.stages.scoring import score_in_batches

DEFAULT_BATCH_SIZE = 20
MAX_BATCH_SIZE = 50


def market_item(candidate: TokenCandidate) -> dict[str, Any]:
    return {
        "address": candidate.address,
        "symbol": candidate.symbol,
        "name": candidate.name,
        "market": candidate.market_snapshot,
    }


class MarketAnalysisStage:
    """Batch-scores candidates and drops those below the market threshold."""

    def __init__(
        self,
        decide: DecisionFunction,
        *,
        threshold: float = 0.5,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = 4,
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self._decide = decide
        self._threshold = threshold
        self._batch_size = batch_size
        self._concurrency = concurrency

    async def run(self, candidates: Sequence[TokenCandidate]) -> StageResult:
        return await score_in_batches(
            candidates,
            stage=StageName.MARKET,
            decide=self._decide,
            prompt=MARKET_ANALYSIS_PROMPT,
            build_item=market_item,
            threshold=self._threshold,
            batch_size=self._batch_size,
            concurrency=self._concurrency,
        )
