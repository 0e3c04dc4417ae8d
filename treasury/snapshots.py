"""Holder snapshot capture and proportional distribution planning."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from treasury.common import TreasuryClock, new_record_id
from treasury.errors import EmptySnapshotError, InvalidRequestError, UpstreamUnavailableError
from treasury.ledger import OperationLedger
from treasury.numeric import NUMERIC_9, ZERO, decimal_to_str, floor_decimal, parse_quantity, percent_of
from treasury.records import (
    AuditKind,
    HolderBalance,
    HolderEntry,
    HolderSnapshot,
    OperationStatus,
    Recipient,
)
from treasury.store import RecordStore

logger = logging.getLogger(__name__)


class HolderSnapshotService(Protocol):
    """Lists current holders of an asset."""

    def list_holders(self, asset_id: str) -> Sequence[HolderBalance]:
        """Return holder balances; raises :class:`UpstreamUnavailableError` when unreachable."""


class UnconfiguredHolderSnapshotService:
    """Placeholder used when no holder service is configured."""

    def list_holders(self, asset_id: str) -> Sequence[HolderBalance]:
        raise UpstreamUnavailableError("Holder snapshot service is not configured")


class HttpHolderSnapshotService:
    """Holder listing over ``GET {base_url}/holders/{asset_id}``."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        requester: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._requester = requester

    def _request_json(self, path: str) -> Any:
        if self._requester is not None:
            return self._requester(path)
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        request = Request(url=f"{self._base_url}{path}", headers=headers, method="GET")
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                return json.loads(response.read().decode("utf-8"))
        except (HTTPError, URLError, TimeoutError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Holder snapshot service request failed: {exc}") from exc

    def list_holders(self, asset_id: str) -> Sequence[HolderBalance]:
        payload = self._request_json(f"/holders/{quote(asset_id, safe='')}")
        rows = payload.get("holders", ()) if isinstance(payload, dict) else payload
        if not isinstance(rows, (list, tuple)):
            raise UpstreamUnavailableError("Holder snapshot service returned a malformed body")
        holders: list[HolderBalance] = []
        for row in rows:
            address = str(row.get("address") or row.get("owner") or "").strip()
            try:
                balance = parse_quantity(row.get("balance", row.get("amount")), field="balance")
            except ValueError as exc:
                raise UpstreamUnavailableError(f"Holder snapshot service returned an invalid balance: {exc}") from exc
            if address:
                holders.append(HolderBalance(address=address, balance=balance))
        return holders


def build_snapshot(
    snapshot_id: str,
    asset_id: str,
    balances: Iterable[HolderBalance],
    created_at: datetime,
) -> HolderSnapshot:
    """Aggregate holder balances into a snapshot sorted by balance descending.

    Non-positive balances are dropped and repeated addresses are summed.
    """
    merged: dict[str, Decimal] = {}
    for holder in balances:
        if holder.balance > 0:
            merged[holder.address] = merged.get(holder.address, ZERO) + holder.balance
    total_held = sum(merged.values(), ZERO)
    ordered = sorted(merged.items(), key=lambda item: (-item[1], item[0]))
    holders = tuple(
        HolderEntry(address=address, balance=balance, percentage=percent_of(balance, total_held))
        for address, balance in ordered
    )
    return HolderSnapshot(
        snapshot_id=snapshot_id,
        asset_id=asset_id,
        holders=holders,
        holder_count=len(holders),
        total_held=total_held,
        created_at=created_at,
    )


def plan_proportional_distribution(
    snapshot: HolderSnapshot,
    total: Decimal,
    scale: Decimal = NUMERIC_9,
) -> list[Recipient]:
    """Split ``total`` across snapshot holders in proportion to their balances.

    Every holder but the last gets its share rounded down to ``scale``; the
    last gets the exact remainder. Shares that round to zero are omitted, so
    the returned amounts always sum to ``total``.
    """
    if total <= 0:
        raise InvalidRequestError("Distribution total must be positive")
    if not snapshot.holders or snapshot.total_held <= 0:
        raise EmptySnapshotError(f"Snapshot {snapshot.snapshot_id} has no holders to distribute to")

    recipients: list[Recipient] = []
    allocated = ZERO
    *leading, last = snapshot.holders
    for holder in leading:
        share = floor_decimal(total * holder.balance / snapshot.total_held, scale)
        if share > 0:
            recipients.append(Recipient(address=holder.address, amount=share))
            allocated += share
    remainder = total - allocated
    if remainder > 0:
        recipients.append(Recipient(address=last.address, amount=remainder))
    return recipients


class SnapshotRecorder:
    """Captures holder snapshots with a paired ``snapshot`` audit entry."""

    def __init__(
        self,
        *,
        ledger: OperationLedger,
        store: RecordStore,
        service: HolderSnapshotService,
        clock: TreasuryClock | None = None,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._service = service
        self._clock = clock or TreasuryClock()

    def capture_snapshot(self, asset_id: str, rationale: Optional[str] = None) -> HolderSnapshot:
        asset_id = (asset_id or "").strip()
        if not asset_id:
            raise InvalidRequestError("assetId is required for a holder snapshot")

        entry = self._ledger.open_audit(
            AuditKind.SNAPSHOT,
            "take_snapshot",
            rationale or "Taking holder snapshot for distribution eligibility",
            asset_id=asset_id,
            description=f"Creating holder snapshot for asset {asset_id}",
        )
        try:
            balances = self._service.list_holders(asset_id)
        except UpstreamUnavailableError as exc:
            self._ledger.close_audit(entry.entry_id, OperationStatus.FAILED, {"error": str(exc)})
            logger.warning("Holder snapshot for %s failed: %s", asset_id, exc)
            raise

        snapshot = build_snapshot(new_record_id(), asset_id, balances, self._clock.now_utc())
        if snapshot.holder_count == 0:
            self._ledger.close_audit(entry.entry_id, OperationStatus.FAILED, {"error": "No holders found"})
            raise EmptySnapshotError(f"No holders found for asset {asset_id}")

        self._store.insert_snapshot(snapshot)
        self._ledger.close_audit(
            entry.entry_id,
            OperationStatus.SUCCESS,
            {"snapshotId": snapshot.snapshot_id, "holderCount": snapshot.holder_count},
        )
        logger.info(
            "Captured snapshot %s for %s: %s holders, %s held",
            snapshot.snapshot_id,
            asset_id,
            snapshot.holder_count,
            decimal_to_str(snapshot.total_held),
        )
        return snapshot

    def get(self, snapshot_id: str) -> Optional[HolderSnapshot]:
        return self._store.get_snapshot(snapshot_id)

    def history(self, asset_id: str, limit: Optional[int] = None) -> Sequence[HolderSnapshot]:
        return self._store.list_snapshots(asset_id, limit=limit)
