"""Record Store contract and the in-process implementation."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol, Sequence, TypeVar

from treasury.errors import InternalConsistencyError
from treasury.records import (
    AuditEntry,
    AuditKind,
    HolderSnapshot,
    OperationKind,
    OperationRecord,
    TreasuryBalance,
    is_terminal,
)


_T = TypeVar("_T")


class RecordStore(Protocol):
    """Durable keyed storage for operations, audit entries, snapshots, and the balance cache.

    ``complete_*`` methods are conditional writes: they replace the stored row
    only while it is still non-terminal and report whether they did.
    """

    def insert_operation(self, record: OperationRecord) -> None:
        """Persist a newly opened operation."""

    def get_operation(self, record_id: str) -> Optional[OperationRecord]:
        """Fetch one operation by id."""

    def list_operations(
        self,
        *,
        kind: Optional[OperationKind] = None,
        asset_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[OperationRecord]:
        """List operations newest first."""

    def complete_operation(self, record: OperationRecord) -> bool:
        """Store the terminal form of an operation if it is still open."""

    def insert_operation_with_audit(self, record: OperationRecord, entry: AuditEntry) -> None:
        """Persist a newly opened operation and its paired audit entry atomically."""

    def insert_audit_entry(self, entry: AuditEntry) -> None:
        """Persist a new audit entry."""

    def get_audit_entry(self, entry_id: str) -> Optional[AuditEntry]:
        """Fetch one audit entry by id."""

    def find_audit_entry_for_operation(self, operation_id: str) -> Optional[AuditEntry]:
        """Fetch the audit entry paired with an operation."""

    def complete_audit_entry(self, entry: AuditEntry) -> bool:
        """Store the terminal form of an audit entry if it is still open."""

    def list_audit_entries(
        self,
        *,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[AuditEntry]:
        """List audit entries newest first."""

    def insert_snapshot(self, snapshot: HolderSnapshot) -> None:
        """Persist an immutable holder snapshot."""

    def get_snapshot(self, snapshot_id: str) -> Optional[HolderSnapshot]:
        """Fetch one snapshot by id."""

    def list_snapshots(self, asset_id: str, *, limit: Optional[int] = None) -> Sequence[HolderSnapshot]:
        """List snapshots for an asset newest first."""

    def get_treasury_balance(self) -> Optional[TreasuryBalance]:
        """Read the balance cache singleton."""

    def put_treasury_balance(self, balance: TreasuryBalance) -> None:
        """Replace the balance cache singleton."""


def _page(items: Sequence[_T], limit: Optional[int], offset: int) -> list[_T]:
    if offset < 0:
        raise ValueError("offset must be non-negative")
    if limit is None:
        return list(items[offset:])
    if limit < 0:
        raise ValueError("limit must be non-negative")
    return list(items[offset : offset + limit])


def _newest_first(rows: Iterable[tuple[int, _T]], created_at: Callable[[_T], datetime]) -> list[_T]:
    ordered = sorted(rows, key=lambda row: (created_at(row[1]), row[0]), reverse=True)
    return [value for _, value in ordered]


class InMemoryRecordStore:
    """Thread-safe in-process store.

    Rows are frozen dataclasses keyed by id alongside their insertion
    sequence, which breaks created-time ties when listing. Every write swaps a
    whole row under the lock, so readers never observe a half-written record.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._seq = 0
        self._operations: dict[str, tuple[int, OperationRecord]] = {}
        self._audit: dict[str, tuple[int, AuditEntry]] = {}
        self._snapshots: dict[str, tuple[int, HolderSnapshot]] = {}
        self._balance: Optional[TreasuryBalance] = None

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def insert_operation(self, record: OperationRecord) -> None:
        with self._lock:
            if record.record_id in self._operations:
                raise InternalConsistencyError(f"Duplicate operation id: {record.record_id}")
            self._operations[record.record_id] = (self._next_seq(), record)

    def get_operation(self, record_id: str) -> Optional[OperationRecord]:
        with self._lock:
            row = self._operations.get(record_id)
        return None if row is None else row[1]

    def list_operations(
        self,
        *,
        kind: Optional[OperationKind] = None,
        asset_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[OperationRecord]:
        with self._lock:
            rows = [
                row
                for row in self._operations.values()
                if (kind is None or row[1].kind == kind) and (asset_id is None or row[1].asset_id == asset_id)
            ]
        return _page(_newest_first(rows, lambda record: record.created_at), limit, offset)

    def complete_operation(self, record: OperationRecord) -> bool:
        with self._lock:
            row = self._operations.get(record.record_id)
            if row is None or is_terminal(row[1].status):
                return False
            self._operations[record.record_id] = (row[0], record)
            return True

    def insert_operation_with_audit(self, record: OperationRecord, entry: AuditEntry) -> None:
        with self._lock:
            self.insert_operation(record)
            try:
                self.insert_audit_entry(entry)
            except Exception:
                del self._operations[record.record_id]
                raise

    def insert_audit_entry(self, entry: AuditEntry) -> None:
        with self._lock:
            if entry.entry_id in self._audit:
                raise InternalConsistencyError(f"Duplicate audit entry id: {entry.entry_id}")
            self._audit[entry.entry_id] = (self._next_seq(), entry)

    def get_audit_entry(self, entry_id: str) -> Optional[AuditEntry]:
        with self._lock:
            row = self._audit.get(entry_id)
        return None if row is None else row[1]

    def find_audit_entry_for_operation(self, operation_id: str) -> Optional[AuditEntry]:
        with self._lock:
            for _, entry in self._audit.values():
                if entry.operation_id == operation_id:
                    return entry
        return None

    def complete_audit_entry(self, entry: AuditEntry) -> bool:
        with self._lock:
            row = self._audit.get(entry.entry_id)
            if row is None or is_terminal(row[1].status):
                return False
            self._audit[entry.entry_id] = (row[0], entry)
            return True

    def list_audit_entries(
        self,
        *,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[AuditEntry]:
        with self._lock:
            rows = [row for row in self._audit.values() if kind is None or row[1].kind == kind]
        return _page(_newest_first(rows, lambda entry: entry.created_at), limit, offset)

    def insert_snapshot(self, snapshot: HolderSnapshot) -> None:
        with self._lock:
            if snapshot.snapshot_id in self._snapshots:
                raise InternalConsistencyError(f"Duplicate snapshot id: {snapshot.snapshot_id}")
            self._snapshots[snapshot.snapshot_id] = (self._next_seq(), snapshot)

    def get_snapshot(self, snapshot_id: str) -> Optional[HolderSnapshot]:
        with self._lock:
            row = self._snapshots.get(snapshot_id)
        return None if row is None else row[1]

    def list_snapshots(self, asset_id: str, *, limit: Optional[int] = None) -> Sequence[HolderSnapshot]:
        with self._lock:
            rows = [row for row in self._snapshots.values() if row[1].asset_id == asset_id]
        return _page(_newest_first(rows, lambda snapshot: snapshot.created_at), limit, 0)

    def get_treasury_balance(self) -> Optional[TreasuryBalance]:
        with self._lock:
            return self._balance

    def put_treasury_balance(self, balance: TreasuryBalance) -> None:
        with self._lock:
            self._balance = balance
