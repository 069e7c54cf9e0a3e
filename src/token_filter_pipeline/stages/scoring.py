"""Batched decision-function scoring shared by the market and metadata stages.

Scoring is fail-closed: a candidate the decision function does not score,
or scores with a non-numeric value, is rejected. Out-of-range scores are
clamped into [0, 1] and flagged rather than rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from token_filter_pipeline.llm.client import DecisionFunction, LLMClientError
from token_filter_pipeline.llm.parsing import (
    DecisionParseError,
    clamp_unit,
    extract_json,
    parse_number,
    string_list,
    token_entries,
)
from token_filter_pipeline.retry import RetryError
from token_filter_pipeline.stages.models import (
    StageName,
    StageResult,
    StageScore,
    StageStats,
    TokenCandidate,
)

logger = logging.getLogger(__name__)

# Failures of one decision call; anything else is unexpected and propagates.
DECISION_ERRORS: tuple[type[Exception], ...] = (
    LLMClientError,
    RetryError,
    DecisionParseError,
    asyncio.TimeoutError,
)


def chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class _BatchOutcome:
    __slots__ = ("candidates", "errored", "errors")

    def __init__(self) -> None:
        self.candidates: list[TokenCandidate] = []
        self.errored = 0
        self.errors: list[str] = []


def _score_candidate(
    candidate: TokenCandidate,
    entry: dict[str, Any] | None,
    *,
    stage: StageName,
    threshold: float,
    detail_keys: Sequence[str],
    outcome: _BatchOutcome,
) -> TokenCandidate:
    if entry is None:
        outcome.errored += 1
        logger.warning(
            "%s: %s omitted from decision response, rejecting", stage.value, candidate.address
        )
        return candidate.reject(stage, "omitted from decision response")

    raw = parse_number(entry.get("score"))
    if raw is None:
        outcome.errored += 1
        logger.warning(
            "%s: %s has non-numeric score %r, rejecting",
            stage.value,
            candidate.address,
            entry.get("score"),
        )
        return candidate.reject(stage, "non-numeric score")

    score, clamped = clamp_unit(raw)
    if clamped:
        logger.warning(
            "%s: clamped score %.4f to %.1f for %s", stage.value, raw, score, candidate.address
        )

    details: dict[str, float] = {}
    for key in detail_keys:
        value = parse_number(entry.get(key))
        if value is not None:
            details[key] = clamp_unit(value)[0]

    scored = candidate.with_score(
        StageScore(
            stage=stage,
            score=score,
            strengths=string_list(entry.get("strengths")),
            risks=string_list(entry.get("risks")),
            details=details,
            clamped=clamped,
        )
    )
    if score < threshold:
        return scored.reject(stage, f"score {score:.2f} below threshold {threshold:.2f}")
    return scored


async def score_in_batches(
    candidates: Sequence[TokenCandidate],
    *,
    stage: StageName,
    decide: DecisionFunction,
    prompt: str,
    build_item: Callable[[TokenCandidate], dict[str, Any]],
    threshold: float,
    batch_size: int,
    concurrency: int,
    detail_keys: Sequence[str] = (),
) -> StageResult:
    """Score candidates in batches with bounded concurrency.

    Args:
        candidates: Surviving candidates entering the stage.
        stage: Stage recorded on each score.
        decide: Decision function.
        prompt: System prompt for the decision function.
        build_item: Builds the per-candidate payload entry.
        threshold: Minimum score to survive.
        batch_size: Candidates per decision call.
        concurrency: Maximum concurrent decision calls.
        detail_keys: Optional sub-score keys kept in ``StageScore.details``.

    Returns:
        StageResult with survivors, rejected candidates and stats.
    """
    started = time.monotonic()
    semaphore = asyncio.Semaphore(concurrency)

    async def run_batch(index: int, batch: list[TokenCandidate]) -> _BatchOutcome:
        outcome = _BatchOutcome()
        async with semaphore:
            try:
                text = await decide(prompt, {"tokens": [build_item(c) for c in batch]})
                entries = token_entries(extract_json(text))
            except DECISION_ERRORS as e:
                msg = f"{stage.value} batch {index} failed: {e}"
                logger.error("%s; rejecting %d candidates", msg, len(batch))
                outcome.errors.append(msg)
                outcome.errored += len(batch)
                outcome.candidates = [c.reject(stage, "decision batch failed") for c in batch]
                return outcome

        by_address: dict[str, dict[str, Any]] = {}
        for entry in entries:
            address = entry.get("address")
            if isinstance(address, str) and address not in by_address:
                by_address[address] = entry

        for candidate in batch:
            outcome.candidates.append(
                _score_candidate(
                    candidate,
                    by_address.get(candidate.address),
                    stage=stage,
                    threshold=threshold,
                    detail_keys=detail_keys,
                    outcome=outcome,
                )
            )
        return outcome

    outcomes = await asyncio.gather(
        *(run_batch(i, batch) for i, batch in enumerate(chunked(candidates, batch_size)))
    )

    survivors: list[TokenCandidate] = []
    rejected: list[TokenCandidate] = []
    errors: list[str] = []
    errored = 0
    for outcome in outcomes:
        errored += outcome.errored
        errors.extend(outcome.errors)
        for c in outcome.candidates:
            (survivors if c.survived else rejected).append(c)

    stats = StageStats(
        stage=stage.value,
        count_in=len(candidates),
        count_out=len(survivors),
        count_errored=errored,
        duration_seconds=time.monotonic() - started,
    )
    logger.info(
        "%s analysis: %d in, %d out, %d errored",
        stage.value,
        stats.count_in,
        stats.count_out,
        stats.count_errored,
    )
    return StageResult(survivors=survivors, rejected=rejected, stats=stats, errors=errors)
