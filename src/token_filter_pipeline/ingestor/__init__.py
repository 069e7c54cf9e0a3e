"""Data ingestion layer - BirdEye token lists, metadata and wallet balances."""

from token_filter_pipeline.ingestor.birdeye_client import (
    BirdeyeClient,
    BirdeyeClientError,
    BirdeyeNotFoundError,
    BirdeyeTransientError,
)
from token_filter_pipeline.ingestor.models import (
    RecordValidationError,
    TokenHolding,
    TokenMetadata,
    TokenRecord,
)
from token_filter_pipeline.ingestor.token_list import FetchResult, TokenListFetcher

__all__ = [
    "BirdeyeClient",
    "BirdeyeClientError",
    "BirdeyeNotFoundError",
    "BirdeyeTransientError",
    "FetchResult",
    "RecordValidationError",
    "TokenHolding",
    "TokenListFetcher",
    "TokenMetadata",
    "TokenRecord",
]
