"""Single-call treasury operations: burn, buyback, claim, deploy, and balance refresh."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from treasury.common import TreasuryClock, clean_text
from treasury.context import TreasuryContext
from treasury.errors import InvalidRequestError, TreasuryError
from treasury.gateway import GatewayResult, RemoteOperationGateway, call_with_deadline, failure_message
from treasury.ledger import OperationLedger, OperationOutcome
from treasury.numeric import ZERO, decimal_to_str, fits_storage_precision
from treasury.records import OperationKind, OperationRecord, OperationStatus, TreasuryBalance
from treasury.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    record_id: str
    status: OperationStatus
    settlement_signature: Optional[str] = None
    error: Optional[str] = None
    settled_quantity: Optional[Decimal] = None
    asset_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @classmethod
    def from_record(cls, record: OperationRecord) -> "OperationResult":
        return cls(
            record_id=record.record_id,
            status=record.status,
            settlement_signature=record.settlement_signature,
            error=record.error,
            settled_quantity=record.settled_quantity,
            asset_id=record.asset_id,
        )


def _require_positive(value: Decimal, field: str) -> Decimal:
    if not isinstance(value, Decimal) or not value.is_finite() or value <= 0:
        raise InvalidRequestError(f"{field} must be a positive decimal")
    if not fits_storage_precision(value):
        raise InvalidRequestError(f"{field} exceeds 18 decimal places or 20 integer digits")
    return value


def _require_text(value: Optional[str], field: str) -> str:
    text = clean_text(value)
    if text is None:
        raise InvalidRequestError(f"{field} is required")
    return text


class TreasuryOperations:
    """Validate, open, call the gateway once under a bounded wait, and close."""

    def __init__(
        self,
        *,
        ledger: OperationLedger,
        gateway: RemoteOperationGateway,
        store: RecordStore,
        clock: TreasuryClock | None = None,
        call_timeout_seconds: Optional[float] = 30.0,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._store = store
        self._clock = clock or TreasuryClock()
        self._call_timeout_seconds = call_timeout_seconds

    def _execute(
        self,
        kind: OperationKind,
        asset_id: Optional[str],
        quantity: Decimal,
        call: Callable[[], GatewayResult],
        *,
        rationale: Optional[str],
        description: str,
        reason: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
        settled_from_result: bool = False,
    ) -> OperationRecord:
        record_id = self._ledger.open(
            kind,
            asset_id,
            quantity,
            rationale,
            reason=reason,
            description=description,
            details=details,
        )
        try:
            result = call_with_deadline(call, self._call_timeout_seconds)
        except TreasuryError as exc:
            outcome = OperationOutcome.failed(str(exc))
        except Exception as exc:
            logger.exception("Unexpected gateway error during %s operation %s", kind.value, record_id)
            outcome = OperationOutcome.failed(f"unexpected gateway error: {exc}")
        else:
            if result.success:
                outcome = OperationOutcome.succeeded(
                    result.signature,
                    settled_quantity=result.amount if settled_from_result else None,
                    asset_id=result.asset_id,
                )
            else:
                outcome = OperationOutcome.failed(failure_message(result.error))
        return self._ledger.close(record_id, outcome)

    def burn(
        self,
        context: TreasuryContext,
        asset_id: str,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> OperationResult:
        asset_id = _require_text(asset_id, "assetId")
        amount = _require_positive(amount, "amount")
        record = self._execute(
            OperationKind.BURN,
            asset_id,
            amount,
            lambda: self._gateway.burn(context.treasury_key, asset_id, amount),
            rationale=reason or "Reducing token supply to increase scarcity",
            description=f"Burning {decimal_to_str(amount)} tokens",
            reason=reason,
        )
        return OperationResult.from_record(record)

    def buyback(
        self,
        context: TreasuryContext,
        asset_id: str,
        native_amount: Decimal,
        reason: Optional[str] = None,
    ) -> OperationResult:
        asset_id = _require_text(asset_id, "assetId")
        native_amount = _require_positive(native_amount, "nativeAmount")
        record = self._execute(
            OperationKind.BUYBACK,
            asset_id,
            native_amount,
            lambda: self._gateway.buy(context.treasury_key, asset_id, native_amount),
            rationale=reason or "Buying back tokens to support price",
            description=f"Buying back tokens with {decimal_to_str(native_amount)} native",
            reason=reason,
            settled_from_result=True,
        )
        return OperationResult.from_record(record)

    def claim(self, context: TreasuryContext, asset_id: str, reason: Optional[str] = None) -> OperationResult:
        asset_id = _require_text(asset_id, "assetId")
        record = self._execute(
            OperationKind.CLAIM,
            asset_id,
            ZERO,
            lambda: self._gateway.claim(context.treasury_key, asset_id),
            rationale=reason or "Claiming creator rewards to fund treasury operations",
            description=f"Claiming creator rewards for asset {asset_id}",
            reason=reason,
            settled_from_result=True,
        )
        return OperationResult.from_record(record)

    def deploy(
        self,
        context: TreasuryContext,
        name: str,
        symbol: str,
        description: Optional[str] = None,
        metadata_uri: Optional[str] = None,
        initial_buy: Decimal = ZERO,
    ) -> OperationResult:
        name = _require_text(name, "name")
        symbol = _require_text(symbol, "symbol")
        if not isinstance(initial_buy, Decimal) or not initial_buy.is_finite() or initial_buy < 0:
            raise InvalidRequestError("initialBuy must be a non-negative decimal")
        if not fits_storage_precision(initial_buy):
            raise InvalidRequestError("initialBuy exceeds 18 decimal places or 20 integer digits")
        details = {
            "name": name,
            "symbol": symbol,
            "description": clean_text(description),
            "metadataUri": clean_text(metadata_uri),
            "initialBuy": decimal_to_str(initial_buy),
        }
        record = self._execute(
            OperationKind.DEPLOYMENT,
            None,
            initial_buy,
            lambda: self._gateway.deploy(
                context.treasury_key, name, symbol, details["description"], details["metadataUri"], initial_buy
            ),
            rationale="Initiating asset deployment",
            description=f"Deploying asset: {name} ({symbol})",
            details=details,
        )
        if record.status is OperationStatus.SUCCESS and record.asset_id:
            self._remember_deployed_asset(record.asset_id)
        return OperationResult.from_record(record)

    def _remember_deployed_asset(self, asset_id: str) -> None:
        cached = self._store.get_treasury_balance()
        if cached is None:
            cached = TreasuryBalance(
                native_balance=ZERO,
                managed_balance=ZERO,
                managed_asset_id=asset_id,
                refreshed_at=self._clock.now_utc(),
            )
        self._store.put_treasury_balance(replace(cached, managed_asset_id=asset_id))

    def refresh_balance(self, context: TreasuryContext) -> TreasuryBalance:
        """Read both balances live and replace the cache."""
        asset_id = context.active_asset_id
        native = self._gateway.get_balance(context.treasury_address)
        managed = ZERO if asset_id is None else self._gateway.get_balance(context.treasury_address, asset_id)
        balance = TreasuryBalance(
            native_balance=native,
            managed_balance=managed,
            managed_asset_id=asset_id,
            refreshed_at=self._clock.now_utc(),
        )
        self._store.put_treasury_balance(balance)
        logger.info(
            "Treasury balance refreshed: native=%s managed=%s (%s)",
            decimal_to_str(native),
            decimal_to_str(managed),
            asset_id,
        )
        return balance

    def cached_balance(self) -> Optional[TreasuryBalance]:
        return self._store.get_treasury_balance()

    def pending_rewards(self, context: TreasuryContext, asset_id: Optional[str] = None) -> tuple[str, Decimal]:
        """Unclaimed rewards for the given or active asset, read live under the call deadline."""
        resolved = context.require_asset(asset_id)
        amount = call_with_deadline(lambda: self._gateway.pending_rewards(resolved), self._call_timeout_seconds)
        return resolved, amount
