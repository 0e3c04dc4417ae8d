"""Audit entry model definitions."""

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
from backend.db.enums import audit_kind_enum, operation_status_enum

logger = logging.getLogger(__name__)


class AuditEntry(TreasuryBase):
    """Why an operation happened; paired to its operation by ``operation_id`` without a foreign key."""

    __tablename__ = "audit_entry"
    __table_args__ = (
        PrimaryKeyConstraint("entry_id", name="pk_audit_entry"),
        UniqueConstraint("entry_seq", name="uq_audit_entry_seq"),
        CheckConstraint("length(btrim(action)) > 0", name="ck_audit_entry_action_not_blank"),
        CheckConstraint("amount IS NULL OR amount >= 0", name="ck_audit_entry_amount_non_negative"),
        CheckConstraint(
            "(status IN ('pending', 'processing')) = (completed_at_utc IS NULL)",
            name="ck_audit_entry_completed_iff_terminal",
        ),
        CheckConstraint(
            "kind NOT IN ('thought', 'snapshot') OR operation_id IS NULL",
            name="ck_audit_entry_unpaired_kinds",
        ),
        CheckConstraint("jsonb_typeof(metadata) = 'object'", name="ck_audit_entry_metadata_object"),
        Index("idx_audit_entry_created_desc", desc("created_at_utc"), desc("entry_seq")),
        Index("idx_audit_entry_kind_created_desc", "kind", desc("created_at_utc"), desc("entry_seq")),
        Index(
            "uqix_audit_entry_operation_id",
            "operation_id",
            unique=True,
            postgresql_where=text("operation_id IS NOT NULL"),
        ),
    )

    entry_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    entry_seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False)
    kind: Mapped[str] = mapped_column(audit_kind_enum, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(operation_status_enum, nullable=False)
    rationale: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    asset_id: Mapped[Optional[str]] = mapped_column(Text)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18))
    settlement_signature: Mapped[Optional[str]] = mapped_column(Text)
    operation_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    entry_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
