"""Operation ledger: opens, tracks, and closes operation records with paired audit entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from treasury.common import TreasuryClock, clean_text, new_record_id
from treasury.errors import InternalConsistencyError
from treasury.numeric import ZERO, decimal_to_str
from treasury.records import (
    AuditEntry,
    AuditKind,
    DistributionKind,
    OperationKind,
    OperationRecord,
    OperationStatus,
    Recipient,
    RecipientOutcome,
    audit_kind_for,
    initial_status,
    is_terminal,
    terminal_statuses,
)
from treasury.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

_ACTION_NAMES: dict[OperationKind, str] = {
    OperationKind.DEPLOYMENT: "deploy_token",
    OperationKind.BURN: "burn_tokens",
    OperationKind.BUYBACK: "buyback_tokens",
    OperationKind.CLAIM: "claim_creator_rewards",
    OperationKind.DISTRIBUTION: "airdrop",
}


def derive_aggregate_status(outcomes: Sequence[RecipientOutcome]) -> OperationStatus:
    """Canonical aggregate status for a set of recipient outcomes.

    No successes (including no outcomes at all) is ``failed``; every outcome
    successful is ``completed``; anything else is ``partial``.
    """
    success_count = sum(1 for outcome in outcomes if outcome.success)
    if success_count == 0:
        return OperationStatus.FAILED
    if success_count == len(outcomes):
        return OperationStatus.COMPLETED
    return OperationStatus.PARTIAL


@dataclass(frozen=True)
class OperationOutcome:
    """Terminal result handed to :meth:`OperationLedger.close`."""

    status: OperationStatus
    settlement_signature: Optional[str] = None
    error: Optional[str] = None
    settled_quantity: Optional[Decimal] = None
    asset_id: Optional[str] = None
    recipient_outcomes: Optional[tuple[RecipientOutcome, ...]] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def succeeded(
        cls,
        settlement_signature: Optional[str],
        *,
        settled_quantity: Optional[Decimal] = None,
        asset_id: Optional[str] = None,
    ) -> "OperationOutcome":
        return cls(
            status=OperationStatus.SUCCESS,
            settlement_signature=settlement_signature,
            settled_quantity=settled_quantity,
            asset_id=asset_id,
        )

    @classmethod
    def failed(cls, error: str) -> "OperationOutcome":
        return cls(status=OperationStatus.FAILED, error=error, metadata={"error": error})

    @classmethod
    def for_distribution(cls, outcomes: Sequence[RecipientOutcome]) -> "OperationOutcome":
        collected = tuple(outcomes)
        success_count = sum(1 for outcome in collected if outcome.success)
        return cls(
            status=derive_aggregate_status(collected),
            recipient_outcomes=collected,
            metadata={"successCount": success_count, "failCount": len(collected) - success_count},
        )


class OperationLedger:
    """Single owner of operation status transitions.

    Every operation is opened together with a ``pending`` audit entry and is
    closed exactly once; closing a terminal record is a caller bug and raises
    :class:`InternalConsistencyError`.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        clock: TreasuryClock | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._store = store
        self._clock = clock or TreasuryClock()
        self._default_page_size = default_page_size

    @property
    def store(self) -> RecordStore:
        return self._store

    def open(
        self,
        kind: OperationKind,
        asset_id: Optional[str],
        quantity: Decimal,
        rationale: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Open a single-call operation record and its audit entry; return the record id."""
        kind = OperationKind(kind)
        if kind is OperationKind.DISTRIBUTION:
            raise InternalConsistencyError("Distributions are opened with open_distribution")
        now = self._clock.now_utc()
        record = OperationRecord(
            record_id=new_record_id(),
            kind=kind,
            asset_id=asset_id,
            quantity=quantity,
            status=initial_status(kind),
            created_at=now,
            reason=clean_text(reason),
            details=dict(details or {}),
        )
        self._persist_opened(record, rationale, description)
        return record.record_id

    def open_distribution(
        self,
        distribution_kind: DistributionKind,
        asset_id: Optional[str],
        recipients: Sequence[Recipient],
        rationale: Optional[str] = None,
        *,
        snapshot_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> str:
        """Open a distribution in ``processing`` with its total computed from the recipients."""
        distribution_kind = DistributionKind(distribution_kind)
        total = sum((recipient.amount for recipient in recipients), ZERO)
        now = self._clock.now_utc()
        record = OperationRecord(
            record_id=new_record_id(),
            kind=OperationKind.DISTRIBUTION,
            asset_id=asset_id,
            quantity=total,
            status=initial_status(OperationKind.DISTRIBUTION),
            created_at=now,
            reason=clean_text(reason),
            distribution_kind=distribution_kind,
            recipient_count=len(recipients),
            total_requested=total,
            outcomes=(),
            snapshot_id=snapshot_id,
        )
        noun = "native asset" if distribution_kind is DistributionKind.NATIVE else "tokens"
        description = f"Airdropping {decimal_to_str(total)} {noun} to {len(recipients)} recipients"
        self._persist_opened(record, rationale, description, action=f"airdrop_{distribution_kind.value}")
        return record.record_id

    def _persist_opened(
        self,
        record: OperationRecord,
        rationale: Optional[str],
        description: Optional[str],
        *,
        action: Optional[str] = None,
    ) -> None:
        entry = AuditEntry(
            entry_id=new_record_id(),
            kind=audit_kind_for(record.kind),
            action=action or _ACTION_NAMES[record.kind],
            status=OperationStatus.PENDING,
            created_at=record.created_at,
            rationale=clean_text(rationale),
            description=description,
            asset_id=record.asset_id,
            amount=record.quantity,
            operation_id=record.record_id,
            metadata=dict(record.details),
        )
        self._store.insert_operation_with_audit(record, entry)
        logger.info(
            "Opened %s operation %s (asset=%s quantity=%s status=%s)",
            record.kind.value,
            record.record_id,
            record.asset_id,
            decimal_to_str(record.quantity),
            record.status.value,
        )

    def close(self, record_id: str, outcome: OperationOutcome) -> OperationRecord:
        """Transition an open record to its terminal status and close the paired audit entry."""
        record = self._store.get_operation(record_id)
        if record is None:
            raise self._consistency_fault(f"Cannot close unknown operation {record_id}")
        if record.is_terminal:
            raise self._consistency_fault(
                f"Operation {record_id} is already terminal ({record.status.value}); refusing second close"
            )

        status = OperationStatus(outcome.status)
        if status not in terminal_statuses(record.kind):
            raise self._consistency_fault(
                f"Status {status.value} is not a terminal status for {record.kind.value} operations"
            )

        now = self._clock.now_utc()
        closed = replace(
            record,
            status=status,
            settlement_signature=outcome.settlement_signature,
            error=outcome.error,
            settled_quantity=outcome.settled_quantity,
            asset_id=record.asset_id or outcome.asset_id,
            completed_at=now,
        )
        if record.kind is OperationKind.DISTRIBUTION:
            closed = replace(closed, outcomes=self._checked_outcomes(record, outcome))
        elif outcome.recipient_outcomes:
            raise self._consistency_fault(f"Recipient outcomes supplied for {record.kind.value} operation {record_id}")

        if not self._store.complete_operation(closed):
            raise self._consistency_fault(f"Operation {record_id} was closed concurrently")
        self._close_paired_audit(closed, outcome)

        log = logger.warning if status is OperationStatus.FAILED else logger.info
        log(
            "Closed %s operation %s with status %s%s",
            closed.kind.value,
            closed.record_id,
            closed.status.value,
            f" ({closed.error})" if closed.error else "",
        )
        return closed

    def _checked_outcomes(self, record: OperationRecord, outcome: OperationOutcome) -> tuple[RecipientOutcome, ...]:
        outcomes = tuple(outcome.recipient_outcomes or ())
        if len(outcomes) != record.recipient_count:
            raise self._consistency_fault(
                f"Distribution {record.record_id} expects {record.recipient_count} outcomes, got {len(outcomes)}"
            )
        requested = sum((item.requested_amount for item in outcomes), ZERO)
        if requested != record.total_requested:
            raise self._consistency_fault(
                f"Distribution {record.record_id} outcome total {requested} != requested total {record.total_requested}"
            )
        if outcome.status is not derive_aggregate_status(outcomes):
            raise self._consistency_fault(
                f"Distribution {record.record_id} status {outcome.status.value} disagrees with its outcomes"
            )
        return outcomes

    def _close_paired_audit(self, closed: OperationRecord, outcome: OperationOutcome) -> None:
        entry = self._store.find_audit_entry_for_operation(closed.record_id)
        if entry is None:
            raise self._consistency_fault(f"Operation {closed.record_id} has no paired audit entry")
        metadata = {**entry.metadata, **outcome.metadata}
        closed_entry = replace(
            entry,
            status=closed.status,
            settlement_signature=closed.settlement_signature,
            asset_id=entry.asset_id or closed.asset_id,
            metadata=metadata,
            completed_at=closed.completed_at,
        )
        if not self._store.complete_audit_entry(closed_entry):
            raise self._consistency_fault(f"Audit entry {entry.entry_id} was already closed")

    @staticmethod
    def _consistency_fault(message: str) -> InternalConsistencyError:
        logger.error(message)
        return InternalConsistencyError(message)

    def get(self, record_id: str) -> Optional[OperationRecord]:
        return self._store.get_operation(record_id)

    def list(
        self,
        *,
        kind: Optional[OperationKind] = None,
        asset_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[OperationRecord]:
        """List records newest first, filtered by kind and/or asset."""
        page_size = self._default_page_size if limit is None else limit
        return self._store.list_operations(kind=kind, asset_id=asset_id, limit=page_size, offset=offset)

    def latest_deployed_asset(self) -> Optional[str]:
        """Asset id of the newest successful deployment, if any."""
        for record in self._store.list_operations(kind=OperationKind.DEPLOYMENT):
            if record.status is OperationStatus.SUCCESS and record.asset_id:
                return record.asset_id
        return None

    def record_thought(
        self,
        action: Optional[str],
        rationale: str,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        asset_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AuditEntry:
        """Record decision commentary that has no financial operation behind it."""
        now = self._clock.now_utc()
        entry = AuditEntry(
            entry_id=new_record_id(),
            kind=AuditKind.THOUGHT,
            action=clean_text(action) or "ai_thought",
            status=OperationStatus.SUCCESS,
            created_at=now,
            rationale=clean_text(rationale),
            description=description or clean_text(rationale),
            asset_id=asset_id,
            metadata=dict(metadata or {}),
            completed_at=now,
        )
        self._store.insert_audit_entry(entry)
        return entry

    def open_audit(
        self,
        kind: AuditKind,
        action: str,
        rationale: Optional[str] = None,
        *,
        asset_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AuditEntry:
        """Open a standalone audit entry (e.g. snapshot capture) in ``pending``."""
        entry = AuditEntry(
            entry_id=new_record_id(),
            kind=AuditKind(kind),
            action=action,
            status=OperationStatus.PENDING,
            created_at=self._clock.now_utc(),
            rationale=clean_text(rationale),
            description=description,
            asset_id=asset_id,
        )
        self._store.insert_audit_entry(entry)
        return entry

    def close_audit(
        self,
        entry_id: str,
        status: OperationStatus,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> AuditEntry:
        """Close a standalone audit entry with ``success`` or ``failed``."""
        entry = self._store.get_audit_entry(entry_id)
        if entry is None:
            raise self._consistency_fault(f"Cannot close unknown audit entry {entry_id}")
        status = OperationStatus(status)
        if is_terminal(entry.status) or status not in (OperationStatus.SUCCESS, OperationStatus.FAILED):
            raise self._consistency_fault(
                f"Audit entry {entry_id} cannot move from {entry.status.value} to {status.value}"
            )
        closed = replace(
            entry,
            status=status,
            metadata={**entry.metadata, **dict(metadata or {})},
            completed_at=self._clock.now_utc(),
        )
        if not self._store.complete_audit_entry(closed):
            raise self._consistency_fault(f"Audit entry {entry_id} was already closed")
        return closed

    def get_audit(self, entry_id: str) -> Optional[AuditEntry]:
        return self._store.get_audit_entry(entry_id)

    def list_audit(
        self,
        *,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[AuditEntry]:
        page_size = self._default_page_size if limit is None else limit
        return self._store.list_audit_entries(kind=kind, limit=page_size, offset=offset)
