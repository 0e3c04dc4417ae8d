"""Unit tests for the batch distribution engine."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
import threading
from typing import Optional

import pytest

from treasury.distribution import BatchDistributionEngine, DistributionRequest
from treasury.errors import InvalidRequestError, UpstreamUnavailableError
from treasury.gateway import GatewayResult
from treasury.ledger import OperationLedger
from treasury.pacing import NoDelayPacer
from treasury.numeric import normalize_decimal
from treasury.records import DistributionKind, OperationKind, OperationRecord, OperationStatus, Recipient
from treasury.store import InMemoryRecordStore
from tests.utils.treasury_fixtures import ASSET_ID, SteppingClock, build_context, build_simulator


class _FakeGateway:
    """Transfer-only gateway scripted per destination."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.raising: dict[str, Exception] = {}
        self.blocking: set[str] = set()
        self.release = threading.Event()
        self.calls: list[tuple[str, str, Optional[str], Decimal]] = []

    def transfer(self, source_key: str, destination: str, asset_id: Optional[str], amount: Decimal) -> GatewayResult:
        self.calls.append((source_key, destination, asset_id, amount))
        if destination in self.blocking:
            self.release.wait(5)
        if destination in self.raising:
            raise self.raising[destination]
        if destination in self.failing:
            return GatewayResult.failure(f"rejected transfer to {destination}")
        return GatewayResult(success=True, signature=f"sig-{destination}", amount=amount)


class _Numeric18Store(InMemoryRecordStore):
    """Rounds stored quantities the way NUMERIC(38,18) columns do."""

    def insert_operation(self, record: OperationRecord) -> None:
        total = None if record.total_requested is None else normalize_decimal(record.total_requested)
        super().insert_operation(replace(record, quantity=normalize_decimal(record.quantity), total_requested=total))

def _engine(gateway: object, *, timeout: Optional[float] = 5.0) -> tuple[BatchDistributionEngine, InMemoryRecordStore, NoDelayPacer]:
    store = InMemoryRecordStore()
    ledger = OperationLedger(store, clock=SteppingClock())
    pacer = NoDelayPacer()
    engine = BatchDistributionEngine(ledger=ledger, gateway=gateway, pacer=pacer, call_timeout_seconds=timeout)
    return engine, store, pacer


def _request(*pairs: tuple[str, str], kind: DistributionKind = DistributionKind.MANAGED,
             asset_id: Optional[str] = ASSET_ID) -> DistributionRequest:
    return DistributionRequest(
        kind=kind,
        recipients=tuple(Recipient(address, Decimal(amount)) for address, amount in pairs),
        asset_id=asset_id,
        rationale="reward holders",
    )


def test_partial_distribution_records_per_recipient_failure() -> None:
    simulator = build_simulator()
    simulator.fail_transfers_to("B")
    engine, store, _ = _engine(simulator)

    result = engine.distribute(build_context(), _request(("A", "100"), ("B", "200")))

    assert result.status is OperationStatus.PARTIAL
    assert result.success_count == 1
    assert result.fail_count == 1
    assert result.total_requested == Decimal("300")
    a, b = result.outcomes
    assert a.success and a.settlement_signature
    assert not b.success
    assert b.error == "simulated transfer failure for B"
    assert simulator.get_balance("A", ASSET_ID) == Decimal("100")
    assert simulator.get_balance("B", ASSET_ID) == Decimal("0")

    record = store.get_operation(result.record_id)
    assert record.status is OperationStatus.PARTIAL
    assert record.recipient_count == len(record.outcomes) == 2
    assert sum(item.requested_amount for item in record.outcomes) == record.total_requested
    assert store.find_audit_entry_for_operation(result.record_id).status is OperationStatus.PARTIAL


def test_all_successful_distribution_is_completed_in_request_order() -> None:
    gateway = _FakeGateway()
    engine, _, pacer = _engine(gateway)

    result = engine.distribute(build_context(), _request(("C", "1"), ("A", "2"), ("B", "3")))

    assert result.status is OperationStatus.COMPLETED
    assert [outcome.recipient_address for outcome in result.outcomes] == ["C", "A", "B"]
    assert [call[1] for call in gateway.calls] == ["C", "A", "B"]
    assert pacer.calls == 2


def test_all_failed_distribution_is_failed() -> None:
    gateway = _FakeGateway()
    gateway.failing.update({"A", "B"})
    engine, _, _ = _engine(gateway)

    result = engine.distribute(build_context(), _request(("A", "1"), ("B", "1")))

    assert result.status is OperationStatus.FAILED
    assert result.success_count == 0
    assert [outcome.error for outcome in result.outcomes] == ["rejected transfer to A", "rejected transfer to B"]


def test_raised_errors_become_failed_outcomes() -> None:
    gateway = _FakeGateway()
    gateway.raising["A"] = UpstreamUnavailableError("gateway down")
    gateway.raising["B"] = RuntimeError("boom")
    engine, _, _ = _engine(gateway)

    result = engine.distribute(build_context(), _request(("A", "1"), ("B", "1"), ("C", "1")))

    assert result.status is OperationStatus.PARTIAL
    assert [outcome.error for outcome in result.outcomes] == [
        "gateway down",
        "unexpected gateway error: boom",
        None,
    ]


def test_stuck_transfer_times_out_without_stopping_the_batch() -> None:
    gateway = _FakeGateway()
    gateway.blocking.add("slow")
    engine, _, _ = _engine(gateway, timeout=0.05)

    try:
        result = engine.distribute(build_context(), _request(("slow", "1"), ("fast", "2")))
    finally:
        gateway.release.set()

    assert result.status is OperationStatus.PARTIAL
    assert result.outcomes[0].error == "gateway call timed out after 0.05s"
    assert result.outcomes[1].success


def test_insufficient_funds_is_recorded_as_outcome_error() -> None:
    engine, _, _ = _engine(build_simulator(managed=Decimal("150")))

    result = engine.distribute(build_context(), _request(("A", "100"), ("B", "100")))

    assert result.status is OperationStatus.PARTIAL
    assert result.outcomes[1].error.startswith("Insufficient funds:")


@pytest.mark.parametrize(
    "request_",
    [
        _request(),
        _request(("A", "0")),
        _request(("A", "-1")),
        _request(("  ", "1")),
        _request(("A", "1"), asset_id=None),
    ],
)
def test_invalid_requests_are_rejected_before_any_record(request_: DistributionRequest) -> None:
    gateway = _FakeGateway()
    engine, store, _ = _engine(gateway)

    with pytest.raises(InvalidRequestError):
        engine.distribute(build_context(), request_)

    assert store.list_operations() == []
    assert store.list_audit_entries() == []
    assert gateway.calls == []


def test_missing_treasury_key_is_rejected() -> None:
    engine, store, _ = _engine(_FakeGateway())

    with pytest.raises(InvalidRequestError, match="Treasury wallet not configured"):
        engine.distribute(build_context(key=""), _request(("A", "1")))
    assert store.list_operations() == []


def test_native_distribution_transfers_native_asset_and_defaults_asset_id() -> None:
    gateway = _FakeGateway()
    engine, store, _ = _engine(gateway)

    result = engine.distribute(
        build_context(),
        _request(("A", "0.5"), kind=DistributionKind.NATIVE, asset_id=None),
    )

    assert result.status is OperationStatus.COMPLETED
    assert gateway.calls[0][2] is None
    record = store.get_operation(result.record_id)
    assert record.distribution_kind is DistributionKind.NATIVE
    assert record.asset_id == ASSET_ID


def test_retry_failed_creates_a_new_record_for_failed_recipients() -> None:
    gateway = _FakeGateway()
    gateway.failing.add("B")
    engine, store, _ = _engine(gateway)
    original = engine.distribute(build_context(), _request(("A", "100"), ("B", "200")))

    gateway.failing.clear()
    retried = engine.retry_failed(build_context(), original.record_id)

    assert retried.record_id != original.record_id
    assert retried.status is OperationStatus.COMPLETED
    assert [outcome.recipient_address for outcome in retried.outcomes] == ["B"]
    assert retried.total_requested == Decimal("200")
    assert store.get_operation(original.record_id).status is OperationStatus.PARTIAL
    assert store.get_operation(retried.record_id).reason == f"retry of {original.record_id}"
    assert len(store.list_operations(kind=OperationKind.DISTRIBUTION)) == 2


def test_retry_failed_rejects_unknown_or_fully_successful_distributions() -> None:
    engine, _, _ = _engine(_FakeGateway())
    completed = engine.distribute(build_context(), _request(("A", "1")))

    with pytest.raises(InvalidRequestError, match="no failed recipients"):
        engine.retry_failed(build_context(), completed.record_id)
    with pytest.raises(InvalidRequestError, match="Unknown distribution"):
        engine.retry_failed(build_context(), "missing")


@pytest.mark.parametrize("amount", ["0.1234567890123456789", "1E-19", "100000000000000000000"])
def test_amounts_outside_storage_precision_are_rejected_before_any_transfer(amount: str) -> None:
    gateway = _FakeGateway()
    store = _Numeric18Store()
    engine = BatchDistributionEngine(
        ledger=OperationLedger(store, clock=SteppingClock()), gateway=gateway, pacer=NoDelayPacer()
    )

    with pytest.raises(InvalidRequestError, match="Recipient 1 amount exceeds 18 decimal places"):
        engine.distribute(build_context(), _request(("A", "1"), ("B", amount)))

    assert gateway.calls == []
    assert store.list_operations() == []


def test_trailing_zeros_beyond_storage_scale_still_close_cleanly() -> None:
    gateway = _FakeGateway()
    store = _Numeric18Store()
    engine = BatchDistributionEngine(
        ledger=OperationLedger(store, clock=SteppingClock()), gateway=gateway, pacer=NoDelayPacer()
    )

    result = engine.distribute(build_context(), _request(("A", "1"), ("B", "0.123456789012345678000")))

    assert result.status is OperationStatus.COMPLETED
    assert store.get_operation(result.record_id).total_requested == Decimal("1.123456789012345678")
