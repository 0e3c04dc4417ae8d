"""HTTP surface tests against an in-memory runtime and the simulated gateway."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi.testclient import TestClient

from backend.api import create_app
from treasury.pacing import NoDelayPacer
from treasury.runtime import TreasuryRuntime, build_runtime
from treasury.simulator import SimulatedLedgerGateway
from treasury.store import InMemoryRecordStore
from tests.utils.treasury_fixtures import ASSET_ID, TREASURY_ADDRESS, SteppingClock, build_config, build_simulator


def _client(
    simulator: SimulatedLedgerGateway | None = None,
    **config_overrides: Any,
) -> tuple[TestClient, TreasuryRuntime]:
    simulator = simulator or build_simulator(holders={"A": Decimal("70"), "B": Decimal("20"), "C": Decimal("10")})
    runtime = build_runtime(
        build_config(**config_overrides),
        store=InMemoryRecordStore(),
        gateway=simulator,
        snapshot_service=simulator,
        pacer=NoDelayPacer(),
        clock=SteppingClock(),
    )
    return TestClient(create_app(runtime)), runtime


def test_health_reports_wiring() -> None:
    client, _ = _client()

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "service": "treasury-ledger",
        "gatewayMode": "SIMULATED",
        "persistence": "memory",
        "walletConfigured": True,
    }


def test_burn_success_and_failure_status_codes() -> None:
    client, runtime = _client(build_simulator(managed=Decimal("10")))

    ok = client.post("/operation/burn", json={"amount": "4", "reason": "trim supply"})
    short = client.post("/operation/burn", json={"assetId": ASSET_ID, "amount": 100})

    assert ok.status_code == 200
    assert ok.json()["success"] is True
    assert ok.json()["status"] == "success"
    assert ok.json()["assetId"] == ASSET_ID
    assert short.status_code == 502
    assert short.json()["status"] == "failed"
    assert short.json()["error"].startswith("Insufficient funds:")
    assert len(runtime.ledger.list()) == 2


def test_request_validation_errors_use_error_body() -> None:
    client, runtime = _client()

    malformed = client.post("/operation/burn", json={"amount": "lots"})
    non_positive = client.post("/operation/burn", json={"amount": "0"})

    assert malformed.status_code == 400
    assert malformed.json()["error"]["code"] == "invalid_request"
    assert malformed.json()["error"]["details"][0]["field"] == "amount"
    assert non_positive.status_code == 400
    assert non_positive.json()["error"]["message"] == "amount must be a positive decimal"
    assert runtime.ledger.list() == []


def test_missing_wallet_is_an_invalid_request() -> None:
    client, _ = _client(wallet_key=None)

    response = client.post("/operation/claim", json={})

    assert response.status_code == 400
    assert response.json() == {"error": {"code": "invalid_request", "message": "Treasury wallet not configured"}}


def test_buyback_and_deploy() -> None:
    client, runtime = _client(asset_id=None)

    deployed = client.post("/operation/deploy", json={"name": "Treasury", "symbol": "TRY", "initialBuy": "1"})
    asset_id = deployed.json()["assetId"]
    bought = client.post("/operation/buyback", json={"nativeAmount": "0.5"})

    assert deployed.status_code == 200
    assert asset_id.startswith("asset-")
    assert bought.status_code == 200
    assert bought.json()["assetId"] == asset_id
    assert bought.json()["settledQuantity"] == "500"
    assert runtime.context().active_asset_id == asset_id


def test_explicit_distribution_reports_partial_outcomes() -> None:
    simulator = build_simulator()
    simulator.fail_transfers_to("B")
    client, _ = _client(simulator)

    response = client.post(
        "/operation/distribute",
        json={
            "kind": "token",
            "recipients": [{"address": "A", "amount": "100"}, {"address": "B", "amount": 200}],
            "reason": "community reward",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial"
    assert body["successCount"] == 1
    assert body["failCount"] == 1
    assert body["totalRequested"] == "300"
    assert body["outcomes"][1] == {
        "recipientAddress": "B",
        "requestedAmount": "200",
        "success": False,
        "settlementSignature": None,
        "error": "simulated transfer failure for B",
    }

    record = client.get(f"/operations/{body['id']}").json()
    assert record["kind"] == "distribution"
    assert record["distributionKind"] == "managed"
    assert record["recipientCount"] == 2
    assert record["reason"] == "community reward"


def test_native_distribution_accepts_legacy_kind_name() -> None:
    client, runtime = _client()

    response = client.post("/operation/distribute", json={"kind": "sol", "recipients": [{"address": "A", "amount": "1"}]})

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert runtime.gateway.get_balance("A") == Decimal("1")


def test_distribution_rejects_bad_kind_and_empty_recipients() -> None:
    client, runtime = _client()

    bad_kind = client.post("/operation/distribute", json={"kind": "gold", "recipients": []})
    empty = client.post("/operation/distribute", json={"kind": "managed", "recipients": []})

    assert bad_kind.status_code == 400
    assert empty.status_code == 400
    assert runtime.ledger.list() == []


def test_snapshot_distribution_plans_proportional_amounts() -> None:
    client, runtime = _client()

    response = client.post("/operation/distribute", json={"kind": "managed", "useSnapshot": True, "totalAmount": "100"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert [(item["recipientAddress"], item["requestedAmount"]) for item in body["outcomes"]] == [
        ("A", "70"),
        ("B", "20"),
        ("C", "10"),
    ]
    record = runtime.ledger.get(body["id"])
    assert record.snapshot_id is not None
    assert runtime.snapshots.get(record.snapshot_id).holder_count == 3


def test_snapshot_distribution_validation() -> None:
    client, _ = _client()

    mixed = client.post(
        "/operation/distribute",
        json={"kind": "managed", "useSnapshot": True, "totalAmount": "1", "recipients": [{"address": "A", "amount": "1"}]},
    )
    no_total = client.post("/operation/distribute", json={"kind": "managed", "useSnapshot": True})
    unknown = client.post("/operation/distribute", json={"kind": "managed", "snapshotId": "missing", "totalAmount": "1"})

    assert mixed.status_code == 400
    assert no_total.status_code == 400
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "snapshot_not_found"

    too_fine = client.post(
        "/operation/distribute",
        json={"kind": "managed", "useSnapshot": True, "totalAmount": "1.0000000000000000001"},
    )
    assert too_fine.status_code == 400
    assert too_fine.json()["error"]["message"] == "totalAmount exceeds 18 decimal places or 20 integer digits"


def test_retry_endpoint_runs_failed_recipients_again() -> None:
    simulator = build_simulator()
    simulator.fail_transfers_to("B")
    client, _ = _client(simulator)
    first = client.post(
        "/operation/distribute",
        json={"kind": "managed", "recipients": [{"address": "A", "amount": "1"}, {"address": "B", "amount": "2"}]},
    ).json()

    retried = client.post(f"/operation/distribute/{first['id']}/retry")

    assert retried.status_code == 200
    assert retried.json()["id"] != first["id"]
    assert retried.json()["status"] == "failed"
    assert [item["recipientAddress"] for item in retried.json()["outcomes"]] == ["B"]


def test_operation_listing_filters_and_errors() -> None:
    client, _ = _client()
    client.post("/operation/burn", json={"amount": "1"})
    client.post("/operation/claim", json={})

    everything = client.get("/operations").json()
    burns = client.get("/operations", params={"kind": "burn", "assetId": ASSET_ID}).json()
    paged = client.get("/operations", params={"limit": 1, "offset": 1}).json()

    assert [item["kind"] for item in everything["operations"]] == ["claim", "burn"]
    assert burns["count"] == 1
    assert paged == {"operations": [everything["operations"][1]], "offset": 1, "count": 1}
    assert client.get("/operations", params={"kind": "mint"}).status_code == 400
    assert client.get("/operations", params={"limit": 0}).status_code == 400
    missing = client.get("/operations/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "operation_not_found"


def test_snapshot_endpoints() -> None:
    client, _ = _client()

    created = client.post("/snapshot", json={"rationale": "weekly"})
    snapshot_id = created.json()["id"]

    assert created.status_code == 200
    assert created.json()["holderCount"] == 3
    assert created.json()["holders"][0] == {"address": "A", "balance": "70", "percentage": "70.0000"}
    assert client.get(f"/snapshot/{snapshot_id}").json() == created.json()
    assert [item["id"] for item in client.get(f"/snapshots/{ASSET_ID}").json()["snapshots"]] == [snapshot_id]
    assert client.get("/snapshot/missing").status_code == 404


def test_empty_snapshot_is_not_found() -> None:
    client, _ = _client(build_simulator())

    response = client.post("/snapshot", json={})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "empty_snapshot"


def test_treasury_balance_is_cached_until_refreshed() -> None:
    client, _ = _client(build_simulator(native=Decimal("3"), managed=Decimal("9")))

    before = client.get("/treasury").json()
    refreshed = client.post("/treasury/refresh").json()
    after = client.get("/treasury").json()

    assert before == {
        "treasuryAddress": TREASURY_ADDRESS,
        "nativeBalance": None,
        "managedBalance": None,
        "managedAssetId": None,
        "refreshedAt": None,
    }
    assert refreshed["nativeBalance"] == "3"
    assert refreshed["managedBalance"] == "9"
    assert refreshed["managedAssetId"] == ASSET_ID
    assert after == refreshed


def test_thoughts_and_activity_listing() -> None:
    client, _ = _client()

    thought = client.post("/activity/thought", json={"rationale": "watching volume", "metadata": {"volume": 3}})
    blank = client.post("/activity/thought", json={"rationale": "  "})
    client.post("/operation/burn", json={"amount": "1"})

    assert thought.status_code == 200
    assert thought.json()["kind"] == "thought"
    assert thought.json()["action"] == "ai_thought"
    assert thought.json()["assetId"] == ASSET_ID
    assert thought.json()["metadata"] == {"volume": 3}
    assert blank.status_code == 400
    activity = client.get("/activity").json()
    assert [item["kind"] for item in activity["activity"]] == ["burn", "thought"]
    assert client.get("/activity", params={"kind": "thought"}).json()["count"] == 1
    assert client.get("/activity", params={"kind": "gossip"}).status_code == 400


def test_run_cycle_defaults_to_hold_and_accepts_explicit_decision() -> None:
    client, runtime = _client()

    held = client.post("/agent/run-cycle")
    burned = client.post("/agent/run-cycle", json={"action": "BURN", "amount": "5", "rationale": "supply", "confidence": 0.7})
    rejected = client.post("/agent/run-cycle", json={"action": "burn", "rationale": "no amount"})

    assert held.status_code == 200
    assert held.json()["decision"]["action"] == "hold"
    assert held.json()["operation"] is None
    assert burned.status_code == 200
    assert burned.json()["decision"] == {"action": "burn", "amount": "5", "rationale": "supply", "confidence": 0.7}
    assert burned.json()["operation"]["status"] == "success"
    assert rejected.status_code == 400
    assert len(runtime.ledger.list()) == 1


def test_amounts_beyond_storage_precision_are_rejected_with_400() -> None:
    client, runtime = _client()

    distribution = client.post(
        "/operation/distribute",
        json={
            "kind": "managed",
            "recipients": [{"address": "A", "amount": "1"}, {"address": "B", "amount": "0.1234567890123456789"}],
        },
    )
    burn = client.post("/operation/burn", json={"amount": "1E-19"})

    assert distribution.status_code == 400
    assert distribution.json()["error"]["message"] == "Recipient 1 amount exceeds 18 decimal places or 20 integer digits"
    assert burn.status_code == 400
    assert burn.json()["error"]["code"] == "invalid_request"
    assert runtime.ledger.list() == []
    assert runtime.gateway.get_balance("B", ASSET_ID) == Decimal("20")


def test_active_asset_prefers_configuration_then_latest_deployment() -> None:
    configured, _ = _client()
    assert configured.get("/asset/active").json() == {"assetId": ASSET_ID, "source": "configured"}

    client, _ = _client(asset_id=None)
    missing = client.get("/asset/active")
    deployed = client.post("/operation/deploy", json={"name": "Treasury", "symbol": "TRY"}).json()

    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "no_active_asset"
    assert client.get("/asset/active").json() == {"assetId": deployed["assetId"], "source": "deployment"}


def test_pending_rewards_reads_gateway_without_recording() -> None:
    simulator = build_simulator()
    simulator.set_claimable(ASSET_ID, Decimal("1.25"))
    client, runtime = _client(simulator)

    response = client.get(f"/rewards/pending/{ASSET_ID}")

    assert response.status_code == 200
    assert response.json() == {"assetId": ASSET_ID, "pendingAmount": "1.25"}
    assert runtime.ledger.list() == []
