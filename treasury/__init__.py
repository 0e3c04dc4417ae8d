"""Treasury operation ledger and batch distribution runtime."""

from treasury.errors import (
    EmptySnapshotError,
    InsufficientFundsError,
    InternalConsistencyError,
    InvalidRequestError,
    StorageFaultError,
    TreasuryError,
    UpstreamUnavailableError,
)
from treasury.ledger import OperationLedger, OperationOutcome, derive_aggregate_status
from treasury.records import (
    AuditKind,
    DistributionKind,
    OperationKind,
    OperationStatus,
    Recipient,
    RecipientOutcome,
)

__all__ = [
    "AuditKind",
    "DistributionKind",
    "EmptySnapshotError",
    "InsufficientFundsError",
    "InternalConsistencyError",
    "InvalidRequestError",
    "OperationKind",
    "OperationLedger",
    "OperationOutcome",
    "OperationStatus",
    "Recipient",
    "RecipientOutcome",
    "StorageFaultError",
    "TreasuryError",
    "UpstreamUnavailableError",
    "derive_aggregate_status",
]
