"""JSON shapes for treasury records; quantities are rendered as strings."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from treasury.advisory import AdvisoryDecision, CycleResult
from treasury.distribution import DistributionResult
from treasury.numeric import decimal_to_str, normalize_timestamp
from treasury.operations import OperationResult
from treasury.records import (
    AuditEntry,
    HolderSnapshot,
    OperationKind,
    OperationRecord,
    RecipientOutcome,
    TreasuryBalance,
)


def _quantity(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else decimal_to_str(value)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else normalize_timestamp(value)


def outcome_json(outcome: RecipientOutcome) -> dict[str, Any]:
    return {
        "recipientAddress": outcome.recipient_address,
        "requestedAmount": decimal_to_str(outcome.requested_amount),
        "success": outcome.success,
        "settlementSignature": outcome.settlement_signature,
        "error": outcome.error,
    }


def operation_result_json(result: OperationResult) -> dict[str, Any]:
    return {
        "id": result.record_id,
        "success": result.success,
        "status": result.status.value,
        "settlementSignature": result.settlement_signature,
        "error": result.error,
        "settledQuantity": _quantity(result.settled_quantity),
        "assetId": result.asset_id,
    }


def distribution_result_json(result: DistributionResult) -> dict[str, Any]:
    return {
        "id": result.record_id,
        "status": result.status.value,
        "successCount": result.success_count,
        "failCount": result.fail_count,
        "totalRequested": decimal_to_str(result.total_requested),
        "outcomes": [outcome_json(outcome) for outcome in result.outcomes],
    }


def operation_record_json(record: OperationRecord) -> dict[str, Any]:
    body: dict[str, Any] = {
        "id": record.record_id,
        "kind": record.kind.value,
        "assetId": record.asset_id,
        "quantity": decimal_to_str(record.quantity),
        "settledQuantity": _quantity(record.settled_quantity),
        "status": record.status.value,
        "reason": record.reason,
        "settlementSignature": record.settlement_signature,
        "error": record.error,
        "details": dict(record.details),
        "createdAt": _timestamp(record.created_at),
        "completedAt": _timestamp(record.completed_at),
    }
    if record.kind is OperationKind.DISTRIBUTION:
        body.update(
            {
                "distributionKind": None if record.distribution_kind is None else record.distribution_kind.value,
                "recipientCount": record.recipient_count,
                "totalRequested": _quantity(record.total_requested),
                "successCount": record.success_count,
                "failCount": record.fail_count,
                "outcomes": [outcome_json(outcome) for outcome in record.outcomes],
                "snapshotId": record.snapshot_id,
            }
        )
    return body


def audit_entry_json(entry: AuditEntry) -> dict[str, Any]:
    return {
        "id": entry.entry_id,
        "kind": entry.kind.value,
        "action": entry.action,
        "status": entry.status.value,
        "rationale": entry.rationale,
        "description": entry.description,
        "assetId": entry.asset_id,
        "amount": _quantity(entry.amount),
        "settlementSignature": entry.settlement_signature,
        "operationId": entry.operation_id,
        "metadata": dict(entry.metadata),
        "createdAt": _timestamp(entry.created_at),
        "completedAt": _timestamp(entry.completed_at),
    }


def snapshot_json(snapshot: HolderSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.snapshot_id,
        "assetId": snapshot.asset_id,
        "holderCount": snapshot.holder_count,
        "totalHeld": decimal_to_str(snapshot.total_held),
        "holders": [
            {
                "address": holder.address,
                "balance": decimal_to_str(holder.balance),
                "percentage": format(holder.percentage, "f"),
            }
            for holder in snapshot.holders
        ],
        "createdAt": _timestamp(snapshot.created_at),
    }


def balance_json(balance: Optional[TreasuryBalance], treasury_address: Optional[str]) -> dict[str, Any]:
    return {
        "treasuryAddress": treasury_address,
        "nativeBalance": None if balance is None else decimal_to_str(balance.native_balance),
        "managedBalance": None if balance is None else decimal_to_str(balance.managed_balance),
        "managedAssetId": None if balance is None else balance.managed_asset_id,
        "refreshedAt": None if balance is None else _timestamp(balance.refreshed_at),
    }


def decision_json(decision: AdvisoryDecision) -> dict[str, Any]:
    return {
        "action": decision.action.value,
        "amount": _quantity(decision.amount),
        "rationale": decision.rationale,
        "confidence": decision.confidence,
    }


def cycle_result_json(result: CycleResult) -> dict[str, Any]:
    return {
        "thoughtId": result.thought_entry_id,
        "decision": decision_json(result.decision),
        "operation": None if result.operation is None else operation_result_json(result.operation),
        "distribution": None if result.distribution is None else distribution_result_json(result.distribution),
        "snapshotId": result.snapshot_id,
    }
