"""Operation record model definitions."""

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
    Text,
    UniqueConstraint,
    desc,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import TreasuryBase
from backend.db.enums import distribution_kind_enum, operation_kind_enum, operation_status_enum

logger = logging.getLogger(__name__)


class OperationRecord(TreasuryBase):
    """Lifecycle row for every financial operation; distributions use the extra columns."""

    __tablename__ = "operation_record"
    __table_args__ = (
        PrimaryKeyConstraint("record_id", name="pk_operation_record"),
        UniqueConstraint("record_seq", name="uq_operation_record_seq"),
        CheckConstraint("quantity >= 0", name="ck_operation_record_quantity_non_negative"),
        CheckConstraint(
            "settled_quantity IS NULL OR settled_quantity >= 0",
            name="ck_operation_record_settled_non_negative",
        ),
        CheckConstraint(
            "asset_id IS NOT NULL OR kind = 'deployment' OR COALESCE(distribution_kind = 'native', FALSE)",
            name="ck_operation_record_asset_required",
        ),
        CheckConstraint(
            "(kind = 'distribution' AND status IN ('processing', 'completed', 'partial', 'failed')) "
            "OR (kind <> 'distribution' AND status IN ('pending', 'success', 'failed'))",
            name="ck_operation_record_status_domain",
        ),
        CheckConstraint(
            "(status IN ('pending', 'processing')) = (completed_at_utc IS NULL)",
            name="ck_operation_record_completed_iff_terminal",
        ),
        CheckConstraint(
            "completed_at_utc IS NULL OR completed_at_utc >= created_at_utc",
            name="ck_operation_record_completed_after_created",
        ),
        CheckConstraint(
            "(kind = 'distribution') = (distribution_kind IS NOT NULL AND recipient_count IS NOT NULL "
            "AND total_requested IS NOT NULL AND outcomes IS NOT NULL)",
            name="ck_operation_record_distribution_columns",
        ),
        CheckConstraint(
            "snapshot_id IS NULL OR kind = 'distribution'",
            name="ck_operation_record_snapshot_distribution_only",
        ),
        CheckConstraint(
            "recipient_count IS NULL OR recipient_count > 0",
            name="ck_operation_record_recipient_count_pos",
        ),
        CheckConstraint(
            "total_requested IS NULL OR total_requested = quantity",
            name="ck_operation_record_total_matches_quantity",
        ),
        CheckConstraint(
            "outcomes IS NULL OR jsonb_typeof(outcomes) = 'array'",
            name="ck_operation_record_outcomes_array",
        ),
        Index("idx_operation_record_created_desc", desc("created_at_utc"), desc("record_seq")),
        Index("idx_operation_record_kind_created_desc", "kind", desc("created_at_utc"), desc("record_seq")),
        Index("idx_operation_record_asset_created_desc", "asset_id", desc("created_at_utc"), desc("record_seq")),
        Index(
            "idx_operation_record_open_status",
            "status",
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
    )

    record_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    record_seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False)
    kind: Mapped[str] = mapped_column(operation_kind_enum, nullable=False)
    asset_id: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    settled_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18))
    status: Mapped[str] = mapped_column(operation_status_enum, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    settlement_signature: Mapped[Optional[str]] = mapped_column(Text)
    error: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    distribution_kind: Mapped[Optional[str]] = mapped_column(distribution_kind_enum)
    recipient_count: Mapped[Optional[int]] = mapped_column(Integer)
    total_requested: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18))
    outcomes: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONB)
    snapshot_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
