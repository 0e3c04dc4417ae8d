from __future__ import annotations

from decimal import Decimal
import threading
from typing import Any

import pytest

from treasury.errors import UpstreamUnavailableError
from treasury.gateway import (
    GatewayTimeoutError,
    HttpOperationGateway,
    call_with_deadline,
    failure_message,
)


class _Recorder:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def __call__(self, method: str, path: str, payload: dict[str, Any]) -> Any:
        self.calls.append((method, path, payload))
        return self.responses.pop(0)


def _gateway(recorder: _Recorder) -> HttpOperationGateway:
    return HttpOperationGateway(base_url="https://gateway.example/", api_key="secret", requester=recorder)


def test_transfer_sends_canonical_payload() -> None:
    recorder = _Recorder({"success": True, "signature": "sig-1"})
    gateway = _gateway(recorder)

    result = gateway.transfer("key", "Dest", None, Decimal("1.50"))

    assert result.success and result.signature == "sig-1"
    assert recorder.calls == [
        ("POST", "/transfer", {"sourceKey": "key", "destination": "Dest", "assetId": None, "amount": "1.5"})
    ]


def test_buy_and_deploy_parse_amount_and_asset() -> None:
    recorder = _Recorder(
        {"success": True, "signature": "buy", "amount": "2000"},
        {"success": True, "signature": "dep", "assetId": "asset-9"},
    )
    gateway = _gateway(recorder)

    bought = gateway.buy("key", "asset-1", Decimal("2"))
    deployed = gateway.deploy("key", "Token", "TOK", None, "ipfs://meta", Decimal("0"))

    assert bought.amount == Decimal("2000")
    assert deployed.asset_id == "asset-9"
    assert recorder.calls[0][2] == {"buyerKey": "key", "assetId": "asset-1", "nativeAmount": "2"}
    assert recorder.calls[1][2]["metadataUri"] == "ipfs://meta"
    assert recorder.calls[1][2]["initialBuy"] == "0"


def test_failure_body_becomes_failed_result() -> None:
    gateway = _gateway(_Recorder({"success": False, "error": "insufficient lamports"}, {"success": False}))

    first = gateway.burn("key", "asset-1", Decimal("1"))
    second = gateway.claim("key", "asset-1")

    assert not first.success
    assert first.error == "Insufficient funds: insufficient lamports"
    assert second.error == "gateway reported failure without detail"


def test_malformed_mutation_body_raises_upstream_error() -> None:
    gateway = _gateway(_Recorder(["not", "a", "dict"]))

    with pytest.raises(UpstreamUnavailableError, match="malformed"):
        gateway.claim("key", "asset-1")


def test_get_balance_reads_and_validates() -> None:
    recorder = _Recorder({"balance": "12.25"}, {"nope": 1}, {"balance": "many"})
    gateway = _gateway(recorder)

    assert gateway.get_balance("Addr/1", "asset-1") == Decimal("12.25")
    assert recorder.calls[0] == ("GET", "/balance/Addr%2F1", {"assetId": "asset-1"})
    with pytest.raises(UpstreamUnavailableError, match="missing"):
        gateway.get_balance("Addr")
    with pytest.raises(UpstreamUnavailableError, match="invalid balance"):
        gateway.get_balance("Addr")


def test_failure_message_normalizes_text() -> None:
    assert failure_message(None) == "gateway reported failure without detail"
    assert failure_message("  ") == "gateway reported failure without detail"
    assert failure_message("Insufficient funds: x") == "Insufficient funds: x"
    assert failure_message("slippage exceeded") == "slippage exceeded"


def test_call_with_deadline_returns_value_and_reraises() -> None:
    assert call_with_deadline(lambda: 42, 1.0) == 42
    assert call_with_deadline(lambda: 7, None) == 7

    def _boom() -> None:
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        call_with_deadline(_boom, 1.0)


def test_call_with_deadline_times_out() -> None:
    release = threading.Event()

    try:
        with pytest.raises(GatewayTimeoutError, match=r"timed out after 0\.01s"):
            call_with_deadline(lambda: release.wait(5), 0.01)
    finally:
        release.set()


def test_pending_rewards_reads_and_validates() -> None:
    recorder = _Recorder({"tokenMint": "asset/1", "pendingAmount": "0.75"}, {"pending": 1}, {"pendingAmount": None})
    gateway = _gateway(recorder)

    assert gateway.pending_rewards("asset/1") == Decimal("0.75")
    assert recorder.calls == [("GET", "/rewards/pending/asset%2F1", {})]
    with pytest.raises(UpstreamUnavailableError, match="missing 'pendingAmount'"):
        gateway.pending_rewards("asset-1")
    with pytest.raises(UpstreamUnavailableError, match="invalid reward amount"):
        gateway.pending_rewards("asset-1")
