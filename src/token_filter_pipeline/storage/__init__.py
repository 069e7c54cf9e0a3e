"""Storage layer - document store and KOL wallet registry."""

from token_filter_pipeline.storage.database import DatabaseManager
from token_filter_pipeline.storage.document_store import (
    KOL_POSITIONS,
    MARKET_SNAPSHOTS,
    PIPELINE_RESULTS,
    PIPELINE_RUNS,
    DocumentStore,
    DocumentStoreError,
    SQLDocumentStore,
    latest_results,
)
from token_filter_pipeline.storage.models import Base, DocumentModel, TrackedWalletModel
from token_filter_pipeline.storage.repos import (
    DocumentDTO,
    DocumentRepository,
    TrackedWalletDTO,
    TrackedWalletRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "DocumentDTO",
    "DocumentModel",
    "DocumentRepository",
    "DocumentStore",
    "DocumentStoreError",
    "KOL_POSITIONS",
    "MARKET_SNAPSHOTS",
    "PIPELINE_RESULTS",
    "PIPELINE_RUNS",
    "SQLDocumentStore",
    "TrackedWalletDTO",
    "TrackedWalletModel",
    "TrackedWalletRepository",
    "latest_results",
]
