"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.audit import AuditEntry
from backend.db.models.operation import OperationRecord
from backend.db.models.snapshot import HolderSnapshot, TreasuryBalanceCache

logger = logging.getLogger(__name__)

__all__ = [
    "AuditEntry",
    "HolderSnapshot",
    "OperationRecord",
    "TreasuryBalanceCache",
]
