"""SQLAlchemy models for persistent storage.

This module defines the database schema for the JSON document store
(pipeline results, market snapshots, run records, KOL position sightings)
and the tracked KOL wallet registry.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DocumentModel(Base):
    """A JSON document keyed by (collection, key)."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True, nullable=False)
    key: Mapped[str] = mapped_column(String(255), primary_key=True, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_documents_collection_updated", "collection", "updated_at"),)


class TrackedWalletModel(Base):
    """A tracked KOL (key opinion leader) wallet group."""

    __tablename__ = "tracked_wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    wallet_addresses: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False)
    influence_score: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="trader")
    twitter_handle: Mapped[str | None] = mapped_column(String(64), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_tracked_wallets_active", "active"),)
