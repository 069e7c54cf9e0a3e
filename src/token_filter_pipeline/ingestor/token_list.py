"""Token list retrieval under a filter parameter set.

Pages through the BirdEye token list, validating every record before it
becomes a candidate. Malformed records are counted and skipped; a page that
still fails after the client's retries ends pagination early with whatever
was already accumulated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from token_filter_pipeline.ingestor.birdeye_client import BirdeyeClientError
from token_filter_pipeline.ingestor.models import RecordValidationError, TokenRecord
from token_filter_pipeline.retry import RetryError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from token_filter_pipeline.stages.models import FilterParameterSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_OFFSET = 1000


class TokenListSource(Protocol):
    """Anything that can serve token-list pages."""

    async def list_tokens(
        self, filters: Mapping[str, Any], offset: int, limit: int
    ) -> list[Any]: ...


@dataclass
class FetchResult:
    """Outcome of one token-list retrieval."""

    records: list[TokenRecord] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0
    pages_fetched: int = 0
    truncated: bool = False
    errors: list[str] = field(default_factory=list)


class TokenListFetcher:
    """Paginated, validating token-list fetcher."""

    def __init__(self, source: TokenListSource, *, max_offset: int = DEFAULT_MAX_OFFSET) -> None:
        self._source = source
        self._max_offset = max_offset

    async def fetch(self, params: FilterParameterSet) -> FetchResult:
        """Fetch every page for a parameter set.

        Stops on a short page, once the offset reaches the configured maximum,
        or when a page fails after retries (``truncated`` is then set).
        """
        result = FetchResult()
        seen: set[str] = set()
        query = params.to_query_params()
        limit = params.limit
        offset = 0

        while offset < self._max_offset or offset == 0:
            try:
                page = await self._source.list_tokens(query, offset, limit)
            except (BirdeyeClientError, RetryError) as e:
                msg = f"token list page at offset {offset} failed: {e}"
                logger.error("%s; stopping pagination with %d records", msg, len(result.records))
                result.errors.append(msg)
                result.truncated = True
                break

            result.pages_fetched += 1
            for raw in page:
                try:
                    record = TokenRecord.from_dict(raw)
                except RecordValidationError as e:
                    result.skipped += 1
                    logger.debug("Skipping malformed token record: %s", e)
                    continue
                if record.address in seen:
                    result.duplicates += 1
                    continue
                seen.add(record.address)
                result.records.append(record)

            if len(page) < limit:
                break
            offset += limit

        if result.skipped:
            logger.warning("Skipped %d malformed token records", result.skipped)
        logger.info(
            "Fetched %d token records in %d pages (skipped=%d, duplicates=%d, truncated=%s)",
            len(result.records),
            result.pages_fetched,
            result.skipped,
            result.duplicates,
            result.truncated,
        )
        return result
