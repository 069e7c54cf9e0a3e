"""Document store used by the pipeline for results, snapshots and run records."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from token_filter_pipeline.storage.database import DatabaseManager
from token_filter_pipeline.storage.repos import (
    DocumentRepository,
    TrackedWalletDTO,
    TrackedWalletRepository,
)

logger = logging.getLogger(__name__)

PIPELINE_RESULTS = "pipeline_results"
MARKET_SNAPSHOTS = "market_snapshots"
PIPELINE_RUNS = "pipeline_runs"
KOL_POSITIONS = "kol_positions"

# Connection failures surface from the driver as OSError rather than SQLAlchemyError
BACKEND_ERRORS = (SQLAlchemyError, OSError)


class DocumentStoreError(Exception):
    """Raised when a document store operation fails."""


class DocumentStore(Protocol):
    """Key/document persistence with idempotent upserts."""

    async def upsert(self, collection: str, key: str, document: dict[str, Any]) -> None: ...

    async def get(self, collection: str, key: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...


def _matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    return all(document.get(k) == v for k, v in filter.items())


class SQLDocumentStore:
    """DocumentStore backed by the ``documents`` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def ensure_schema(self) -> None:
        """Create the store's tables if they do not exist.

        Raises:
            DocumentStoreError: If the database cannot be reached.
        """
        try:
            await self._db.init_schema_async()
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"schema initialization failed: {e}") from e

    async def upsert(self, collection: str, key: str, document: dict[str, Any]) -> None:
        try:
            async with self._db.get_async_session() as session:
                await DocumentRepository(session).upsert(collection, key, document)
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"upsert {collection}/{key} failed: {e}") from e

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        try:
            async with self._db.get_async_session() as session:
                dto = await DocumentRepository(session).get(collection, key)
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"get {collection}/{key} failed: {e}") from e
        return dto.document if dto else None

    async def query(
        self,
        collection: str,
        filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Documents in a collection, newest first, matching top-level equality filters."""
        try:
            async with self._db.get_async_session() as session:
                dtos = await DocumentRepository(session).list_recent(
                    collection, limit=None if filter else limit
                )
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"query {collection} failed: {e}") from e

        documents = [d.document for d in dtos if not filter or _matches(d.document, filter)]
        return documents[:limit] if limit is not None else documents

    async def list_active_wallets(self) -> list[TrackedWalletDTO]:
        try:
            async with self._db.get_async_session() as session:
                return await TrackedWalletRepository(session).list_active()
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"loading tracked wallets failed: {e}") from e

    async def add_wallet(self, dto: TrackedWalletDTO) -> TrackedWalletDTO:
        try:
            async with self._db.get_async_session() as session:
                return await TrackedWalletRepository(session).upsert(dto)
        except BACKEND_ERRORS as e:
            raise DocumentStoreError(f"saving tracked wallet {dto.name} failed: {e}") from e


async def latest_results(store: DocumentStore, limit: int = 10) -> list[dict[str, Any]]:
    """Most recently persisted pipeline results (final survivors)."""
    return await store.query(PIPELINE_RESULTS, None, limit)
