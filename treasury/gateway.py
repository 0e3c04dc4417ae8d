"""Remote Operation Gateway contract, HTTP client, and bounded-wait helper."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from treasury.errors import InsufficientFundsError, UpstreamUnavailableError
from treasury.numeric import decimal_to_str, parse_quantity

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of a single mutating gateway call."""

    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    amount: Optional[Decimal] = None
    asset_id: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "GatewayResult":
        return cls(success=False, error=error)


class RemoteOperationGateway(Protocol):
    """Ledger network operations signed with the treasury key."""

    def transfer(
        self,
        source_key: str,
        destination: str,
        asset_id: Optional[str],
        amount: Decimal,
    ) -> GatewayResult:
        """Transfer the native asset (``asset_id`` None) or a managed asset."""

    def burn(self, owner_key: str, asset_id: str, amount: Decimal) -> GatewayResult:
        """Destroy ``amount`` of the managed asset held by the owner."""

    def buy(self, buyer_key: str, asset_id: str, native_amount: Decimal) -> GatewayResult:
        """Spend ``native_amount`` to acquire the managed asset; ``amount`` is tokens received."""

    def claim(self, owner_key: str, asset_id: str) -> GatewayResult:
        """Claim accrued issuer rewards; ``amount`` is the claimed quantity."""

    def deploy(
        self,
        owner_key: str,
        name: str,
        symbol: str,
        description: Optional[str],
        metadata_uri: Optional[str],
        initial_buy: Decimal,
    ) -> GatewayResult:
        """Create a new managed asset; ``asset_id`` is the new asset's id."""

    def get_balance(self, address: str, asset_id: Optional[str] = None) -> Decimal:
        """Read a live balance; raises :class:`UpstreamUnavailableError` when unreachable."""

    def pending_rewards(self, asset_id: str) -> Decimal:
        """Unclaimed issuer rewards for ``asset_id``; read-only."""


class GatewayTimeoutError(UpstreamUnavailableError):
    """Raised when a gateway call exceeds its bounded wait."""


def insufficient_funds_message(detail: str) -> str:
    """Canonical error string recorded for an insufficient-funds failure."""
    return str(InsufficientFundsError(f"Insufficient funds: {detail}"))


def failure_message(error: Optional[str]) -> str:
    text = (error or "").strip() or "gateway reported failure without detail"
    if "insufficient" in text.lower() and not text.startswith("Insufficient funds:"):
        return insufficient_funds_message(text)
    return text


def call_with_deadline(fn: Callable[[], _T], timeout_seconds: Optional[float]) -> _T:
    """Run ``fn`` on a daemon thread and wait at most ``timeout_seconds`` for it.

    A call that overruns keeps running in the background; its eventual result
    is discarded. Exceptions raised by ``fn`` are re-raised to the caller.
    """
    if timeout_seconds is None:
        return fn()

    box: dict[str, Any] = {}

    def _target() -> None:
        try:
            box["value"] = fn()
        except BaseException as exc:  # re-raised on the caller's thread
            box["error"] = exc

    worker = threading.Thread(target=_target, name="gateway-call", daemon=True)
    worker.start()
    worker.join(timeout_seconds)
    if worker.is_alive():
        raise GatewayTimeoutError(f"gateway call timed out after {timeout_seconds:g}s")
    if "error" in box:
        raise box["error"]
    return box["value"]


class HttpOperationGateway:
    """JSON-over-HTTP gateway client.

    Mutating calls are sent once; a transport failure raises
    :class:`UpstreamUnavailableError` and an explicit failure body becomes a
    failed :class:`GatewayResult`.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        requester: Optional[Callable[[str, str, dict[str, Any]], Any]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._requester = requester

    def _request_json(self, method: str, path: str, payload: dict[str, Any]) -> Any:
        if self._requester is not None:
            return self._requester(method, path, payload)

        headers = {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}
        if method == "GET":
            query = urlencode({key: value for key, value in payload.items() if value is not None})
            url = f"{self._base_url}{path}?{query}" if query else f"{self._base_url}{path}"
            request = Request(url=url, headers=headers, method="GET")
        else:
            headers["Content-Type"] = "application/json"
            request = Request(
                url=f"{self._base_url}{path}",
                data=json.dumps(payload).encode("utf-8"),
                headers=headers,
                method=method,
            )

        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                return json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            try:
                parsed = json.loads(body)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict) and "success" in parsed:
                return parsed
            raise UpstreamUnavailableError(f"Gateway {path} returned HTTP {exc.code}") from exc
        except (URLError, TimeoutError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Gateway {path} request failed: {exc}") from exc

    def _mutate(self, path: str, payload: dict[str, Any]) -> GatewayResult:
        body = self._request_json("POST", path, payload)
        if not isinstance(body, dict):
            raise UpstreamUnavailableError(f"Gateway {path} returned a malformed body")
        if not body.get("success"):
            error = failure_message(body.get("error"))
            logger.warning("Gateway %s reported failure: %s", path, error)
            return GatewayResult.failure(error)
        amount = body.get("amount")
        return GatewayResult(
            success=True,
            signature=body.get("signature"),
            amount=None if amount is None else parse_quantity(amount),
            asset_id=body.get("assetId"),
        )

    def transfer(
        self,
        source_key: str,
        destination: str,
        asset_id: Optional[str],
        amount: Decimal,
    ) -> GatewayResult:
        return self._mutate(
            "/transfer",
            {
                "sourceKey": source_key,
                "destination": destination,
                "assetId": asset_id,
                "amount": decimal_to_str(amount),
            },
        )

    def burn(self, owner_key: str, asset_id: str, amount: Decimal) -> GatewayResult:
        return self._mutate(
            "/burn",
            {"ownerKey": owner_key, "assetId": asset_id, "amount": decimal_to_str(amount)},
        )

    def buy(self, buyer_key: str, asset_id: str, native_amount: Decimal) -> GatewayResult:
        return self._mutate(
            "/buy",
            {"buyerKey": buyer_key, "assetId": asset_id, "nativeAmount": decimal_to_str(native_amount)},
        )

    def claim(self, owner_key: str, asset_id: str) -> GatewayResult:
        return self._mutate("/claim", {"ownerKey": owner_key, "assetId": asset_id})

    def deploy(
        self,
        owner_key: str,
        name: str,
        symbol: str,
        description: Optional[str],
        metadata_uri: Optional[str],
        initial_buy: Decimal,
    ) -> GatewayResult:
        return self._mutate(
            "/deploy",
            {
                "ownerKey": owner_key,
                "name": name,
                "symbol": symbol,
                "description": description,
                "metadataUri": metadata_uri,
                "initialBuy": decimal_to_str(initial_buy),
            },
        )

    def get_balance(self, address: str, asset_id: Optional[str] = None) -> Decimal:
        body = self._request_json("GET", f"/balance/{quote(address, safe='')}", {"assetId": asset_id})
        if not isinstance(body, dict) or "balance" not in body:
            raise UpstreamUnavailableError("Gateway balance response is missing 'balance'")
        try:
            return parse_quantity(body["balance"], field="balance")
        except ValueError as exc:
            raise UpstreamUnavailableError(f"Gateway returned an invalid balance: {exc}") from exc

    def pending_rewards(self, asset_id: str) -> Decimal:
        body = self._request_json("GET", f"/rewards/pending/{quote(asset_id, safe='')}", {})
        if not isinstance(body, dict) or "pendingAmount" not in body:
            raise UpstreamUnavailableError("Gateway rewards response is missing 'pendingAmount'")
        try:
            return parse_quantity(body["pendingAmount"], field="pendingAmount")
        except ValueError as exc:
            raise UpstreamUnavailableError(f"Gateway returned an invalid reward amount: {exc}") from exc
