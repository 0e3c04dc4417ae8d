"""PostgreSQL-backed Record Store and its psycopg adapter."""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, ContextManager, Iterator, Mapping, Optional, Protocol, Sequence

import psycopg
from psycopg.rows import dict_row

from treasury.errors import StorageFaultError
from treasury.records import (
    AuditEntry,
    AuditKind,
    DistributionKind,
    HolderEntry,
    HolderSnapshot,
    OperationKind,
    OperationRecord,
    OperationStatus,
    RecipientOutcome,
    TreasuryBalance,
)

logger = logging.getLogger(__name__)

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


class TreasuryDatabase(Protocol):
    """Minimal DB protocol used by :class:`SqlRecordStore`."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch all rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute a statement without returning rows."""

    def transaction(self) -> ContextManager[None]:
        """Group the statements issued inside the block into one commit."""


class PsycopgTreasuryDB:
    """Autocommit psycopg adapter; one statement at a time per connection.

    :meth:`transaction` holds the connection for the whole block, so statements
    from other threads cannot interleave with it.
    """

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn
        self._lock = threading.RLock()

    @classmethod
    def connect(cls, dsn: str) -> "PsycopgTreasuryDB":
        try:
            conn = psycopg.connect(dsn, autocommit=True)
        except psycopg.Error as exc:
            raise StorageFaultError(f"Unable to connect to treasury database: {exc}") from exc
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        try:
            with self._lock, self.conn.cursor(row_factory=dict_row) as cur:
                cur.execute(converted, dict(params))
                return [dict(row) for row in cur.fetchall()]
        except psycopg.Error as exc:
            logger.exception("Treasury database read failed.")
            raise StorageFaultError(f"Treasury database read failed: {exc}") from exc

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        try:
            with self._lock, self.conn.cursor() as cur:
                cur.execute(converted, dict(params))
        except psycopg.Error as exc:
            logger.exception("Treasury database write failed.")
            raise StorageFaultError(f"Treasury database write failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            try:
                with self.conn.transaction():
                    yield
            except psycopg.Error as exc:
                logger.exception("Treasury database transaction failed.")
                raise StorageFaultError(f"Treasury database transaction failed: {exc}") from exc


def _dump_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _outcomes_payload(outcomes: Sequence[RecipientOutcome]) -> list[dict[str, Any]]:
    return [
        {
            "recipient_address": outcome.recipient_address,
            "requested_amount": str(outcome.requested_amount),
            "success": outcome.success,
            "settlement_signature": outcome.settlement_signature,
            "error": outcome.error,
        }
        for outcome in outcomes
    ]


def _holders_payload(holders: Sequence[HolderEntry]) -> list[dict[str, str]]:
    return [
        {"address": holder.address, "balance": str(holder.balance), "percentage": str(holder.percentage)}
        for holder in holders
    ]


_OPERATION_COLUMNS = """
    record_id, kind, asset_id, quantity, settled_quantity, status, reason,
    settlement_signature, error, details, distribution_kind, recipient_count,
    total_requested, outcomes, snapshot_id, created_at_utc, completed_at_utc
"""

_AUDIT_COLUMNS = """
    entry_id, kind, action, status, rationale, description, asset_id, amount,
    settlement_signature, operation_id, metadata, created_at_utc, completed_at_utc
"""

_SNAPSHOT_COLUMNS = "snapshot_id, asset_id, holders, holder_count, total_held, created_at_utc"


def _operation_from_row(row: Mapping[str, Any]) -> OperationRecord:
    distribution_kind = row.get("distribution_kind")
    outcomes = tuple(
        RecipientOutcome(
            recipient_address=item["recipient_address"],
            requested_amount=Decimal(item["requested_amount"]),
            success=bool(item["success"]),
            settlement_signature=item.get("settlement_signature"),
            error=item.get("error"),
        )
        for item in _load_json(row.get("outcomes"), [])
    )
    return OperationRecord(
        record_id=str(row["record_id"]),
        kind=OperationKind(row["kind"]),
        asset_id=row.get("asset_id"),
        quantity=Decimal(str(row["quantity"])),
        status=OperationStatus(row["status"]),
        created_at=row["created_at_utc"],
        reason=row.get("reason"),
        settlement_signature=row.get("settlement_signature"),
        error=row.get("error"),
        settled_quantity=_optional_decimal(row.get("settled_quantity")),
        completed_at=row.get("completed_at_utc"),
        details=_load_json(row.get("details"), {}),
        distribution_kind=None if distribution_kind is None else DistributionKind(distribution_kind),
        recipient_count=row.get("recipient_count"),
        total_requested=_optional_decimal(row.get("total_requested")),
        outcomes=outcomes,
        snapshot_id=_optional_str(row.get("snapshot_id")),
    )


def _audit_from_row(row: Mapping[str, Any]) -> AuditEntry:
    return AuditEntry(
        entry_id=str(row["entry_id"]),
        kind=AuditKind(row["kind"]),
        action=row["action"],
        status=OperationStatus(row["status"]),
        created_at=row["created_at_utc"],
        rationale=row.get("rationale"),
        description=row.get("description"),
        asset_id=row.get("asset_id"),
        amount=_optional_decimal(row.get("amount")),
        settlement_signature=row.get("settlement_signature"),
        operation_id=_optional_str(row.get("operation_id")),
        metadata=_load_json(row.get("metadata"), {}),
        completed_at=row.get("completed_at_utc"),
    )


def _snapshot_from_row(row: Mapping[str, Any]) -> HolderSnapshot:
    holders = tuple(
        HolderEntry(
            address=item["address"],
            balance=Decimal(item["balance"]),
            percentage=Decimal(item["percentage"]),
        )
        for item in _load_json(row["holders"], [])
    )
    return HolderSnapshot(
        snapshot_id=str(row["snapshot_id"]),
        asset_id=row["asset_id"],
        holders=holders,
        holder_count=int(row["holder_count"]),
        total_held=Decimal(str(row["total_held"])),
        created_at=row["created_at_utc"],
    )


class SqlRecordStore:
    """Record Store over the ``operation_record``/``audit_entry``/``holder_snapshot`` tables.

    Completion is a single conditional ``UPDATE ... RETURNING`` so that only
    one closer can move a row out of ``pending``/``processing``.
    """

    def __init__(self, db: TreasuryDatabase) -> None:
        self._db = db

    def insert_operation(self, record: OperationRecord) -> None:
        self._db.execute(
            f"""
            INSERT INTO operation_record ({_OPERATION_COLUMNS})
            VALUES (
                :record_id, CAST(:kind AS operation_kind_enum), :asset_id, :quantity, :settled_quantity,
                CAST(:status AS operation_status_enum), :reason, :settlement_signature, :error,
                CAST(:details AS jsonb), CAST(:distribution_kind AS distribution_kind_enum), :recipient_count,
                :total_requested, CAST(:outcomes AS jsonb), :snapshot_id, :created_at_utc, :completed_at_utc
            )
            """,
            self._operation_params(record),
        )

    @staticmethod
    def _operation_params(record: OperationRecord) -> dict[str, Any]:
        is_distribution = record.kind is OperationKind.DISTRIBUTION
        return {
            "record_id": record.record_id,
            "kind": record.kind.value,
            "asset_id": record.asset_id,
            "quantity": record.quantity,
            "settled_quantity": record.settled_quantity,
            "status": record.status.value,
            "reason": record.reason,
            "settlement_signature": record.settlement_signature,
            "error": record.error,
            "details": _dump_json(dict(record.details)),
            "distribution_kind": None if record.distribution_kind is None else record.distribution_kind.value,
            "recipient_count": record.recipient_count,
            "total_requested": record.total_requested,
            "outcomes": _dump_json(_outcomes_payload(record.outcomes)) if is_distribution else None,
            "snapshot_id": record.snapshot_id,
            "created_at_utc": record.created_at,
            "completed_at_utc": record.completed_at,
        }

    def get_operation(self, record_id: str) -> Optional[OperationRecord]:
        if not _is_uuid(record_id):
            return None
        row = self._db.fetch_one(
            f"SELECT {_OPERATION_COLUMNS} FROM operation_record WHERE record_id = :record_id",
            {"record_id": record_id},
        )
        return None if row is None else _operation_from_row(row)

    def list_operations(
        self,
        *,
        kind: Optional[OperationKind] = None,
        asset_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[OperationRecord]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_OPERATION_COLUMNS}
            FROM operation_record
            WHERE (CAST(:kind AS operation_kind_enum) IS NULL OR kind = CAST(:kind AS operation_kind_enum))
              AND (CAST(:asset_id AS TEXT) IS NULL OR asset_id = CAST(:asset_id AS TEXT))
            ORDER BY created_at_utc DESC, record_seq DESC
            LIMIT :limit OFFSET :offset
            """,
            {
                "kind": None if kind is None else OperationKind(kind).value,
                "asset_id": asset_id,
                "limit": limit,
                "offset": offset,
            },
        )
        return [_operation_from_row(row) for row in rows]

    def complete_operation(self, record: OperationRecord) -> bool:
        params = self._operation_params(record)
        row = self._db.fetch_one(
            """
            UPDATE operation_record
            SET status = CAST(:status AS operation_status_enum),
                asset_id = :asset_id,
                settled_quantity = :settled_quantity,
                settlement_signature = :settlement_signature,
                error = :error,
                recipient_count = :recipient_count,
                outcomes = CAST(:outcomes AS jsonb),
                completed_at_utc = :completed_at_utc
            WHERE record_id = :record_id
              AND status IN ('pending', 'processing')
            RETURNING record_id
            """,
            params,
        )
        return row is not None

    def insert_operation_with_audit(self, record: OperationRecord, entry: AuditEntry) -> None:
        with self._db.transaction():
            self.insert_operation(record)
            self.insert_audit_entry(entry)

    def insert_audit_entry(self, entry: AuditEntry) -> None:
        self._db.execute(
            f"""
            INSERT INTO audit_entry ({_AUDIT_COLUMNS})
            VALUES (
                :entry_id, CAST(:kind AS audit_kind_enum), :action, CAST(:status AS operation_status_enum),
                :rationale, :description, :asset_id, :amount, :settlement_signature, :operation_id,
                CAST(:metadata AS jsonb), :created_at_utc, :completed_at_utc
            )
            """,
            self._audit_params(entry),
        )

    @staticmethod
    def _audit_params(entry: AuditEntry) -> dict[str, Any]:
        return {
            "entry_id": entry.entry_id,
            "kind": entry.kind.value,
            "action": entry.action,
            "status": entry.status.value,
            "rationale": entry.rationale,
            "description": entry.description,
            "asset_id": entry.asset_id,
            "amount": entry.amount,
            "settlement_signature": entry.settlement_signature,
            "operation_id": entry.operation_id,
            "metadata": _dump_json(dict(entry.metadata)),
            "created_at_utc": entry.created_at,
            "completed_at_utc": entry.completed_at,
        }

    def get_audit_entry(self, entry_id: str) -> Optional[AuditEntry]:
        if not _is_uuid(entry_id):
            return None
        row = self._db.fetch_one(
            f"SELECT {_AUDIT_COLUMNS} FROM audit_entry WHERE entry_id = :entry_id",
            {"entry_id": entry_id},
        )
        return None if row is None else _audit_from_row(row)

    def find_audit_entry_for_operation(self, operation_id: str) -> Optional[AuditEntry]:
        if not _is_uuid(operation_id):
            return None
        row = self._db.fetch_one(
            f"""
            SELECT {_AUDIT_COLUMNS}
            FROM audit_entry
            WHERE operation_id = :operation_id
            ORDER BY entry_seq ASC
            LIMIT 1
            """,
            {"operation_id": operation_id},
        )
        return None if row is None else _audit_from_row(row)

    def complete_audit_entry(self, entry: AuditEntry) -> bool:
        row = self._db.fetch_one(
            """
            UPDATE audit_entry
            SET status = CAST(:status AS operation_status_enum),
                asset_id = :asset_id,
                settlement_signature = :settlement_signature,
                metadata = CAST(:metadata AS jsonb),
                completed_at_utc = :completed_at_utc
            WHERE entry_id = :entry_id
              AND status IN ('pending', 'processing')
            RETURNING entry_id
            """,
            self._audit_params(entry),
        )
        return row is not None

    def list_audit_entries(
        self,
        *,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[AuditEntry]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_AUDIT_COLUMNS}
            FROM audit_entry
            WHERE (CAST(:kind AS audit_kind_enum) IS NULL OR kind = CAST(:kind AS audit_kind_enum))
            ORDER BY created_at_utc DESC, entry_seq DESC
            LIMIT :limit OFFSET :offset
            """,
            {"kind": None if kind is None else AuditKind(kind).value, "limit": limit, "offset": offset},
        )
        return [_audit_from_row(row) for row in rows]

    def insert_snapshot(self, snapshot: HolderSnapshot) -> None:
        self._db.execute(
            f"""
            INSERT INTO holder_snapshot ({_SNAPSHOT_COLUMNS})
            VALUES (:snapshot_id, :asset_id, CAST(:holders AS jsonb), :holder_count, :total_held, :created_at_utc)
            """,
            {
                "snapshot_id": snapshot.snapshot_id,
                "asset_id": snapshot.asset_id,
                "holders": _dump_json(_holders_payload(snapshot.holders)),
                "holder_count": snapshot.holder_count,
                "total_held": snapshot.total_held,
                "created_at_utc": snapshot.created_at,
            },
        )

    def get_snapshot(self, snapshot_id: str) -> Optional[HolderSnapshot]:
        if not _is_uuid(snapshot_id):
            return None
        row = self._db.fetch_one(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM holder_snapshot WHERE snapshot_id = :snapshot_id",
            {"snapshot_id": snapshot_id},
        )
        return None if row is None else _snapshot_from_row(row)

    def list_snapshots(self, asset_id: str, *, limit: Optional[int] = None) -> Sequence[HolderSnapshot]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_SNAPSHOT_COLUMNS}
            FROM holder_snapshot
            WHERE asset_id = :asset_id
            ORDER BY created_at_utc DESC, snapshot_seq DESC
            LIMIT :limit
            """,
            {"asset_id": asset_id, "limit": limit},
        )
        return [_snapshot_from_row(row) for row in rows]

    def get_treasury_balance(self) -> Optional[TreasuryBalance]:
        row = self._db.fetch_one(
            """
            SELECT native_balance, managed_balance, managed_asset_id, refreshed_at_utc
            FROM treasury_balance_cache
            WHERE cache_id = 1
            """,
            {},
        )
        if row is None:
            return None
        return TreasuryBalance(
            native_balance=Decimal(str(row["native_balance"])),
            managed_balance=Decimal(str(row["managed_balance"])),
            managed_asset_id=row.get("managed_asset_id"),
            refreshed_at=row["refreshed_at_utc"],
        )

    def put_treasury_balance(self, balance: TreasuryBalance) -> None:
        self._db.execute(
            """
            INSERT INTO treasury_balance_cache (
                cache_id, native_balance, managed_balance, managed_asset_id, refreshed_at_utc
            ) VALUES (1, :native_balance, :managed_balance, :managed_asset_id, :refreshed_at_utc)
            ON CONFLICT (cache_id) DO UPDATE
            SET native_balance = EXCLUDED.native_balance,
                managed_balance = EXCLUDED.managed_balance,
                managed_asset_id = EXCLUDED.managed_asset_id,
                refreshed_at_utc = EXCLUDED.refreshed_at_utc
            """,
            {
                "native_balance": balance.native_balance,
                "managed_balance": balance.managed_balance,
                "managed_asset_id": balance.managed_asset_id,
                "refreshed_at_utc": balance.refreshed_at,
            },
        )
