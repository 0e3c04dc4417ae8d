"""Unit tests for record variants and per-kind status rules."""

from __future__ import annotations

from decimal import Decimal

import pytest

from treasury.errors import InternalConsistencyError
from treasury.records import (
    AuditKind,
    OperationKind,
    OperationRecord,
    OperationStatus,
    RecipientOutcome,
    audit_kind_for,
    initial_status,
    is_terminal,
    terminal_statuses,
)
from tests.utils.treasury_fixtures import BASE_TS


def test_initial_status_per_kind() -> None:
    assert initial_status(OperationKind.DISTRIBUTION) is OperationStatus.PROCESSING
    for kind in (OperationKind.DEPLOYMENT, OperationKind.BURN, OperationKind.BUYBACK, OperationKind.CLAIM):
        assert initial_status(kind) is OperationStatus.PENDING


def test_terminal_statuses_per_kind() -> None:
    assert terminal_statuses(OperationKind.DISTRIBUTION) == {
        OperationStatus.COMPLETED,
        OperationStatus.PARTIAL,
        OperationStatus.FAILED,
    }
    assert terminal_statuses(OperationKind.BURN) == {OperationStatus.SUCCESS, OperationStatus.FAILED}


def test_every_operation_kind_maps_to_one_audit_kind() -> None:
    mapped = {kind: audit_kind_for(kind) for kind in OperationKind}
    assert mapped == {
        OperationKind.DEPLOYMENT: AuditKind.DEPLOY,
        OperationKind.BURN: AuditKind.BURN,
        OperationKind.BUYBACK: AuditKind.BUYBACK,
        OperationKind.CLAIM: AuditKind.CLAIM_REWARDS,
        OperationKind.DISTRIBUTION: AuditKind.AIRDROP,
    }


def test_unknown_kind_is_an_internal_consistency_error() -> None:
    with pytest.raises(InternalConsistencyError, match="Unhandled operation kind"):
        initial_status("airdrop")  # type: ignore[arg-type]


def test_is_terminal() -> None:
    assert not is_terminal(OperationStatus.PENDING)
    assert not is_terminal(OperationStatus.PROCESSING)
    for status in (OperationStatus.SUCCESS, OperationStatus.FAILED, OperationStatus.COMPLETED, OperationStatus.PARTIAL):
        assert is_terminal(status)


def test_operation_record_outcome_counts() -> None:
    record = OperationRecord(
        record_id="r1",
        kind=OperationKind.DISTRIBUTION,
        asset_id="asset-1",
        quantity=Decimal("3"),
        status=OperationStatus.PARTIAL,
        created_at=BASE_TS,
        outcomes=(
            RecipientOutcome("A", Decimal("1"), True, settlement_signature="sig-a"),
            RecipientOutcome("B", Decimal("2"), False, error="boom"),
        ),
    )
    assert record.is_terminal
    assert record.success_count == 1
    assert record.fail_count == 1
