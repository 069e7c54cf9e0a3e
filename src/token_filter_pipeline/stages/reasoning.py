"""Reasoning stage: one structured final assessment per survivor."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from token_filter_pipeline.llm.client import DecisionFunction
from token_filter_pipeline.llm.parsing import (
    DecisionParseError,
    clamp_unit,
    extract_json,
    parse_number,
    required_text,
)
from token_filter_pipeline.llm.prompts import REASONING_PROMPT
from token_filter_pipeline.stages.models import (
    RECOMMENDATIONS,
    FinalReasoning,
    StageName,
    StageResult,
    StageScore,
    StageStats,
    TokenCandidate,
)
from token_filter_pipeline.stages.scoring import DECISION_ERRORS

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "market_analysis",
    "sentiment_analysis",
    "social_signals",
    "risk_assessment",
    "final_recommendation",
)


def parse_reasoning(parsed: Any, *, default_conviction: float) -> FinalReasoning:
    """Validate a reasoning response.

    Raises:
        DecisionParseError: If the response is not an object or any required
            field is missing or empty.
    """
    if not isinstance(parsed, dict):
        raise DecisionParseError("reasoning response is not an object")
    fields = {name: required_text(parsed, name) for name in REQUIRED_FIELDS}

    recommendation = parsed.get("recommendation")
    if isinstance(recommendation, str) and recommendation.strip().lower() in RECOMMENDATIONS:
        recommendation = recommendation.strip().lower()
    else:
        recommendation = "watch"

    conviction = parse_number(parsed.get("conviction"))
    if conviction is None:
        conviction = default_conviction
    else:
        conviction, clamped = clamp_unit(conviction)
        if clamped:
            logger.warning("Clamped reasoning conviction to %.1f", conviction)

    return FinalReasoning(**fields, recommendation=recommendation, conviction=conviction)


def reasoning_payload(candidate: TokenCandidate) -> dict[str, Any]:
    return {
        "address": candidate.address,
        "symbol": candidate.symbol,
        "name": candidate.name,
        "market": candidate.market_snapshot,
        "stage_scores": [s.to_dict() for s in candidate.stage_scores],
        "ownership_evidence": [e.to_dict() for e in candidate.ownership_evidence],
        "metadata": candidate.metadata_snapshot.to_dict() if candidate.metadata_snapshot else None,
    }


class ReasoningStage:
    """Produces a FinalReasoning for each survivor; failures drop only that candidate."""

    def __init__(self, decide: DecisionFunction, *, concurrency: int = 4) -> None:
        self._decide = decide
        self._concurrency = concurrency

    async def run(self, candidates: Sequence[TokenCandidate]) -> StageResult:
        started = time.monotonic()
        semaphore = asyncio.Semaphore(self._concurrency)
        errors: list[str] = []

        async def reason(candidate: TokenCandidate) -> TokenCandidate:
            try:
                async with semaphore:
                    text = await self._decide(REASONING_PROMPT, reasoning_payload(candidate))
                reasoning = parse_reasoning(
                    extract_json(text), default_conviction=candidate.gating_mean
                )
            except DECISION_ERRORS as e:
                msg = f"reasoning failed for {candidate.address}: {e}"
                logger.warning("Reasoning failed for %s: %s", candidate.address, e)
                errors.append(msg)
                return candidate.reject(StageName.REASONING, "reasoning failed")

            return candidate.with_score(
                StageScore(stage=StageName.REASONING, score=reasoning.conviction)
            ).with_reasoning(reasoning)

        results = await asyncio.gather(*(reason(c) for c in candidates))
        survivors = [c for c in results if c.survived]
        rejected = [c for c in results if not c.survived]

        stats = StageStats(
            stage=StageName.REASONING.value,
            count_in=len(candidates),
            count_out=len(survivors),
            count_errored=len(rejected),
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "reasoning: %d in, %d out, %d errored",
            stats.count_in,
            stats.count_out,
            stats.count_errored,
        )
        return StageResult(survivors=survivors, rejected=rejected, stats=stats, errors=errors)
