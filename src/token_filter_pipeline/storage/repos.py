"""Repository pattern implementations for data access.

This module provides data access for JSON documents and the tracked KOL
wallet registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from token_filter_pipeline.storage.models import DocumentModel, TrackedWalletModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class DocumentDTO:
    """Data transfer object for stored documents."""

    collection: str
    key: str
    document: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: DocumentModel) -> DocumentDTO:
        return cls(
            collection=model.collection,
            key=model.key,
            document=dict(model.document),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class DocumentRepository:
    """Repository for (collection, key)-addressed JSON documents."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, collection: str, key: str) -> DocumentDTO | None:
        result = await self.session.execute(
            select(DocumentModel).where(
                DocumentModel.collection == collection,
                DocumentModel.key == key,
            )
        )
        model = result.scalar_one_or_none()
        return DocumentDTO.from_model(model) if model else None

    async def upsert(self, collection: str, key: str, document: dict[str, Any]) -> None:
        """Insert or overwrite a document (idempotent per key)."""
        now = datetime.now(UTC)
        values = {"collection": collection, "key": key, "document": document}
        try:
            stmt = pg_insert(DocumentModel).values(**values, created_at=now, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=["collection", "key"],
                set_={"document": stmt.excluded.document, "updated_at": now},
            )
            await self.session.execute(stmt)
        except Exception:
            sqlite_stmt = sqlite_insert(DocumentModel).values(
                **values, created_at=now, updated_at=now
            )
            sqlite_stmt = sqlite_stmt.on_conflict_do_update(
                index_elements=["collection", "key"],
                set_={"document": sqlite_stmt.excluded.document, "updated_at": now},
            )
            await self.session.execute(sqlite_stmt)
        await self.session.flush()

    async def list_recent(self, collection: str, *, limit: int | None = None) -> list[DocumentDTO]:
        """Documents in a collection, most recently updated first."""
        stmt = (
            select(DocumentModel)
            .where(DocumentModel.collection == collection)
            .order_by(DocumentModel.updated_at.desc(), DocumentModel.key)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [DocumentDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, collection: str) -> int:
        result = await self.session.execute(
            select(DocumentModel.key).where(DocumentModel.collection == collection)
        )
        return len(result.scalars().all())


@dataclass
class TrackedWalletDTO:
    """Data transfer object for tracked KOL wallets."""

    name: str
    wallet_addresses: list[str]
    influence_score: Decimal
    category: str = "trader"
    description: str | None = None
    twitter_handle: str | None = None
    active: bool = True
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TrackedWalletModel) -> TrackedWalletDTO:
        return cls(
            id=model.id,
            name=model.name,
            description=model.description,
            wallet_addresses=list(model.wallet_addresses),
            influence_score=Decimal(str(model.influence_score)),
            category=model.category,
            twitter_handle=model.twitter_handle,
            active=model.active,
            created_at=model.created_at,
        )


class TrackedWalletRepository:
    """Repository for the tracked KOL wallet registry."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_name(self, name: str) -> TrackedWalletDTO | None:
        result = await self.session.execute(
            select(TrackedWalletModel).where(TrackedWalletModel.name == name)
        )
        model = result.scalar_one_or_none()
        return TrackedWalletDTO.from_model(model) if model else None

    async def list_active(self) -> list[TrackedWalletDTO]:
        result = await self.session.execute(
            select(TrackedWalletModel)
            .where(TrackedWalletModel.active.is_(True))
            .order_by(TrackedWalletModel.influence_score.desc(), TrackedWalletModel.id)
        )
        return [TrackedWalletDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, dto: TrackedWalletDTO) -> TrackedWalletDTO:
        """Insert a wallet group, or update the existing one with the same name."""
        if not 0 <= dto.influence_score <= 1:
            raise ValueError("influence_score must be within [0, 1]")
        now = datetime.now(UTC)
        result = await self.session.execute(
            select(TrackedWalletModel).where(TrackedWalletModel.name == dto.name)
        )
        model = result.scalar_one_or_none()
        if model is None:
            model = TrackedWalletModel(name=dto.name, created_at=now)
            self.session.add(model)
        model.description = dto.description
        model.wallet_addresses = list(dto.wallet_addresses)
        model.influence_score = dto.influence_score
        model.category = dto.category
        model.twitter_handle = dto.twitter_handle
        model.active = dto.active
        model.updated_at = now
        await self.session.flush()
        return TrackedWalletDTO.from_model(model)
