"""Treasury record types and the closed operation/status variants."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from treasury.errors import InternalConsistencyError


class OperationKind(str, enum.Enum):
    """Financial operation kind."""

    DEPLOYMENT = "deployment"
    BURN = "burn"
    BUYBACK = "buyback"
    CLAIM = "claim"
    DISTRIBUTION = "distribution"


class OperationStatus(str, enum.Enum):
    """Operation lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    COMPLETED = "completed"
    PARTIAL = "partial"


class DistributionKind(str, enum.Enum):
    """Asset moved by a distribution."""

    NATIVE = "native"
    MANAGED = "managed"


class AuditKind(str, enum.Enum):
    """Audit entry category."""

    DEPLOY = "deploy"
    BURN = "burn"
    BUYBACK = "buyback"
    AIRDROP = "airdrop"
    CLAIM_REWARDS = "claim_rewards"
    SNAPSHOT = "snapshot"
    THOUGHT = "thought"


NON_TERMINAL_STATUSES: frozenset[OperationStatus] = frozenset(
    {OperationStatus.PENDING, OperationStatus.PROCESSING}
)

_SINGLE_CALL_TERMINAL = frozenset({OperationStatus.SUCCESS, OperationStatus.FAILED})
_DISTRIBUTION_TERMINAL = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.PARTIAL, OperationStatus.FAILED}
)

_INITIAL_STATUS: dict[OperationKind, OperationStatus] = {
    OperationKind.DEPLOYMENT: OperationStatus.PENDING,
    OperationKind.BURN: OperationStatus.PENDING,
    OperationKind.BUYBACK: OperationStatus.PENDING,
    OperationKind.CLAIM: OperationStatus.PENDING,
    OperationKind.DISTRIBUTION: OperationStatus.PROCESSING,
}

_TERMINAL_STATUSES: dict[OperationKind, frozenset[OperationStatus]] = {
    OperationKind.DEPLOYMENT: _SINGLE_CALL_TERMINAL,
    OperationKind.BURN: _SINGLE_CALL_TERMINAL,
    OperationKind.BUYBACK: _SINGLE_CALL_TERMINAL,
    OperationKind.CLAIM: _SINGLE_CALL_TERMINAL,
    OperationKind.DISTRIBUTION: _DISTRIBUTION_TERMINAL,
}

_AUDIT_KIND: dict[OperationKind, AuditKind] = {
    OperationKind.DEPLOYMENT: AuditKind.DEPLOY,
    OperationKind.BURN: AuditKind.BURN,
    OperationKind.BUYBACK: AuditKind.BUYBACK,
    OperationKind.CLAIM: AuditKind.CLAIM_REWARDS,
    OperationKind.DISTRIBUTION: AuditKind.AIRDROP,
}


def _lookup(table: Mapping[OperationKind, Any], kind: OperationKind) -> Any:
    try:
        return table[OperationKind(kind)]
    except (KeyError, ValueError) as exc:
        raise InternalConsistencyError(f"Unhandled operation kind: {kind!r}") from exc


def initial_status(kind: OperationKind) -> OperationStatus:
    """Status a freshly opened record of ``kind`` starts in."""
    return _lookup(_INITIAL_STATUS, kind)


def terminal_statuses(kind: OperationKind) -> frozenset[OperationStatus]:
    """Terminal statuses a record of ``kind`` may be closed with."""
    return _lookup(_TERMINAL_STATUSES, kind)


def audit_kind_for(kind: OperationKind) -> AuditKind:
    """Audit category paired with an operation kind."""
    return _lookup(_AUDIT_KIND, kind)


def is_terminal(status: OperationStatus) -> bool:
    return OperationStatus(status) not in NON_TERMINAL_STATUSES


@dataclass(frozen=True)
class Recipient:
    """One requested transfer in a distribution."""

    address: str
    amount: Decimal


@dataclass(frozen=True)
class RecipientOutcome:
    """Result of one transfer attempt within a distribution."""

    recipient_address: str
    requested_amount: Decimal
    success: bool
    settlement_signature: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class OperationRecord:
    """Persisted financial operation; distributions carry the extra fields."""

    record_id: str
    kind: OperationKind
    asset_id: Optional[str]
    quantity: Decimal
    status: OperationStatus
    created_at: datetime
    reason: Optional[str] = None
    settlement_signature: Optional[str] = None
    error: Optional[str] = None
    settled_quantity: Optional[Decimal] = None
    completed_at: Optional[datetime] = None
    details: Mapping[str, Any] = field(default_factory=dict)
    distribution_kind: Optional[DistributionKind] = None
    recipient_count: Optional[int] = None
    total_requested: Optional[Decimal] = None
    outcomes: tuple[RecipientOutcome, ...] = ()
    snapshot_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def fail_count(self) -> int:
        return len(self.outcomes) - self.success_count


@dataclass(frozen=True)
class AuditEntry:
    """Why an operation (or a pure decision) happened."""

    entry_id: str
    kind: AuditKind
    action: str
    status: OperationStatus
    created_at: datetime
    rationale: Optional[str] = None
    description: Optional[str] = None
    asset_id: Optional[str] = None
    amount: Optional[Decimal] = None
    settlement_signature: Optional[str] = None
    operation_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class HolderBalance:
    """Holder row as returned by the snapshot service."""

    address: str
    balance: Decimal


@dataclass(frozen=True)
class HolderEntry:
    """Holder row captured in a snapshot."""

    address: str
    balance: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class HolderSnapshot:
    """Immutable point-in-time capture of asset holders."""

    snapshot_id: str
    asset_id: str
    holders: tuple[HolderEntry, ...]
    holder_count: int
    total_held: Decimal
    created_at: datetime


@dataclass(frozen=True)
class TreasuryBalance:
    """Cached treasury balances; the gateway's live read is authoritative."""

    native_balance: Decimal
    managed_balance: Decimal
    managed_asset_id: Optional[str]
    refreshed_at: datetime
