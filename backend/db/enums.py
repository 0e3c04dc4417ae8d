"""PostgreSQL native enum contracts for the treasury database schema."""

from __future__ import annotations

import enum
import logging

from sqlalchemy.dialects.postgresql import ENUM as PGEnum

from treasury.records import AuditKind, DistributionKind, OperationKind, OperationStatus

logger = logging.getLogger(__name__)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


operation_kind_enum = PGEnum(OperationKind, name="operation_kind_enum", values_callable=_enum_values)
operation_status_enum = PGEnum(OperationStatus, name="operation_status_enum", values_callable=_enum_values)
distribution_kind_enum = PGEnum(DistributionKind, name="distribution_kind_enum", values_callable=_enum_values)
audit_kind_enum = PGEnum(AuditKind, name="audit_kind_enum", values_callable=_enum_values)
