"""Holder snapshot and treasury balance cache model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Identity,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    SmallInteger,
    Text,
    UniqueConstraint,
    desc,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import TreasuryBase

logger = logging.getLogger(__name__)


class HolderSnapshot(TreasuryBase):
    """Immutable point-in-time holder list for one asset."""

    __tablename__ = "holder_snapshot"
    __table_args__ = (
        PrimaryKeyConstraint("snapshot_id", name="pk_holder_snapshot"),
        UniqueConstraint("snapshot_seq", name="uq_holder_snapshot_seq"),
        CheckConstraint("length(btrim(asset_id)) > 0", name="ck_holder_snapshot_asset_not_blank"),
        CheckConstraint("holder_count > 0", name="ck_holder_snapshot_holder_count_pos"),
        CheckConstraint("total_held > 0", name="ck_holder_snapshot_total_held_pos"),
        CheckConstraint(
            "jsonb_typeof(holders) = 'array' AND jsonb_array_length(holders) = holder_count",
            name="ck_holder_snapshot_holders_match_count",
        ),
        Index(
            "idx_holder_snapshot_asset_created_desc",
            "asset_id",
            desc("created_at_utc"),
            desc("snapshot_seq"),
        ),
    )

    snapshot_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    snapshot_seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False)
    asset_id: Mapped[str] = mapped_column(Text, nullable=False)
    holders: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)
    holder_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_held: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TreasuryBalanceCache(TreasuryBase):
    """Singleton cache of the last refreshed treasury balances."""

    __tablename__ = "treasury_balance_cache"
    __table_args__ = (
        PrimaryKeyConstraint("cache_id", name="pk_treasury_balance_cache"),
        CheckConstraint("cache_id = 1", name="ck_treasury_balance_cache_singleton"),
        CheckConstraint("native_balance >= 0", name="ck_treasury_balance_cache_native_non_negative"),
        CheckConstraint("managed_balance >= 0", name="ck_treasury_balance_cache_managed_non_negative"),
    )

    cache_id: Mapped[int] = mapped_column(SmallInteger, primary_key=True, server_default=text("1"))
    native_balance: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    managed_balance: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    managed_asset_id: Mapped[Optional[str]] = mapped_column(Text)
    refreshed_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
