"""Filter parameter selection.

The decision function proposes token-list filters; the proposal is
validated, and the configured floors are merged in unconditionally, so no
proposal can weaken a floor. If no valid proposal arrives within the retry
budget, the floors alone are used.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from token_filter_pipeline.llm.client import DecisionFunction
from token_filter_pipeline.llm.parsing import DecisionParseError, extract_json, parse_number
from token_filter_pipeline.llm.prompts import FILTER_SELECTION_PROMPT, SCREEN_OBJECTIVE
from token_filter_pipeline.stages.models import FilterParameterSet
from token_filter_pipeline.stages.scoring import DECISION_ERRORS

logger = logging.getLogger(__name__)

# Every narrowing parameter the token-list endpoint accepts.
ALLOWED_PARAMETERS: frozenset[str] = frozenset(
    f"{bound}_{metric}"
    for bound in ("min", "max")
    for metric in (
        "liquidity",
        "market_cap",
        "fdv",
        "holder",
        "volume_24h_usd",
        "volume_1h_usd",
        "volume_24h_change_percent",
        "volume_1h_change_percent",
        "price_change_24h_percent",
        "price_change_1h_percent",
        "trade_24h_count",
        "trade_1h_count",
        "recent_listing_time",
    )
)

# Directives owned by configuration/pagination, never by the decision function.
FIXED_KEYS: frozenset[str] = frozenset({"sort_by", "sort_type", "limit", "offset"})


def _counterpart(key: str) -> str:
    bound, _, metric = key.partition("_")
    return f"{'max' if bound == 'min' else 'min'}_{metric}"


class FilterParameterSelector:
    """Chooses the filter parameter set for a run."""

    def __init__(
        self,
        decide: DecisionFunction,
        *,
        floors: Mapping[str, float],
        max_filters: int,
        sort_by: str,
        sort_type: str,
        limit: int,
        max_retries: int = 2,
        objective: str = SCREEN_OBJECTIVE,
    ) -> None:
        """Initialize the selector.

        Raises:
            ValueError: If the floors cannot fit in ``max_filters`` slots, a
                floor is not positive, or a floor name is not an allowed parameter.
        """
        if len(floors) > max_filters:
            raise ValueError(f"{len(floors)} mandatory floors exceed max_filters={max_filters}")
        for name, value in floors.items():
            if name not in ALLOWED_PARAMETERS:
                raise ValueError(f"floor {name} is not an allowed parameter")
            if value <= 0:
                raise ValueError(f"floor {name} must be positive")

        self._decide = decide
        self._floors = dict(floors)
        self._max_filters = max_filters
        self._sort_by = sort_by
        self._sort_type = sort_type
        self._limit = limit
        self._max_retries = max_retries
        self._objective = objective

    def fallback(self) -> FilterParameterSet:
        """The floors plus the fixed sort directives."""
        return FilterParameterSet(
            filters=dict(self._floors),
            sort_by=self._sort_by,
            sort_type=self._sort_type,
            limit=self._limit,
            source="fallback",
        )

    async def select(self) -> FilterParameterSet:
        """Ask the decision function for filters, retrying then falling back."""
        payload = {
            "objective": self._objective,
            "allowed_parameters": sorted(ALLOWED_PARAMETERS),
            "mandatory_floors": self._floors,
            "max_filters": self._max_filters,
        }

        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                text = await self._decide(FILTER_SELECTION_PROMPT, payload)
                proposed = self._validate(extract_json(text))
            except DECISION_ERRORS as e:
                logger.warning("Filter selection attempt %d/%d failed: %s", attempt, attempts, e)
                continue
            params = self._merge(proposed)
            logger.info("Selected filters: %s", params.filters)
            return params

        logger.warning("Filter selection exhausted %d attempts; using floors only", attempts)
        return self.fallback()

    def _validate(self, parsed: Any) -> dict[str, float]:
        """Validate a proposal into an ordered mapping of allowed keys.

        Raises:
            DecisionParseError: If the proposal is not a flat mapping of
                non-negative numbers, or proposes too many filters.
        """
        if not isinstance(parsed, dict):
            raise DecisionParseError("filter proposal is not an object")
        if isinstance(parsed.get("filters"), dict):
            parsed = parsed["filters"]

        requested = [key for key in parsed if key not in FIXED_KEYS]
        if len(requested) > self._max_filters:
            raise DecisionParseError(
                f"proposal has {len(requested)} filters, limit is {self._max_filters}"
            )

        proposed: dict[str, float] = {}
        for key in requested:
            raw = parsed[key]
            if key not in ALLOWED_PARAMETERS:
                logger.warning("Dropping unknown filter parameter %r", key)
                continue
            value = parse_number(raw)
            if value is None or value < 0:
                raise DecisionParseError(f"filter {key} has invalid value {raw!r}")
            proposed[key] = value
        return proposed

    def _merge(self, proposed: Mapping[str, float]) -> FilterParameterSet:
        filters: dict[str, float] = {}
        for name, floor in self._floors.items():
            value = proposed.get(name)
            if value is None:
                filters[name] = floor
            elif name.startswith("min_"):
                filters[name] = max(value, floor)
            else:
                filters[name] = min(value, floor)

        for key, value in proposed.items():
            if key in filters:
                continue
            if len(filters) >= self._max_filters:
                logger.warning("Dropping filter %s=%s: no free slots", key, value)
                continue
            if key.startswith("max_"):
                lower = filters.get(_counterpart(key))
                if lower is not None and value < lower:
                    logger.warning(
                        "Dropping inconsistent filter %s=%s below %s=%s",
                        key,
                        value,
                        _counterpart(key),
                        lower,
                    )
                    continue
            filters[key] = value

        return FilterParameterSet(
            filters=filters,
            sort_by=self._sort_by,
            sort_type=self._sort_type,
            limit=self._limit,
            source="decision",
        )
