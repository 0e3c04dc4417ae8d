"""Deterministic in-memory ledger gateway for development and tests."""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from treasury.gateway import GatewayResult, insufficient_funds_message
from treasury.numeric import ZERO, decimal_to_str, normalize_decimal, stable_hash
from treasury.records import HolderBalance

DEFAULT_BUY_RATE = Decimal("1000")
DEFAULT_INITIAL_SUPPLY = Decimal("1000000000")


def _is_valid_address(address: str) -> bool:
    return bool(address) and address == address.strip() and not any(ch.isspace() for ch in address)


class SimulatedLedgerGateway:
    """Simulated ledger implementing the gateway and holder-listing contracts.

    Balances are keyed by ``(address, asset_id)`` with ``asset_id`` None for
    the native asset. Signatures are hashes over the call and a sequence
    number, so a replayed scenario produces the same signatures.
    """

    def __init__(
        self,
        *,
        keys: Mapping[str, str],
        native_balances: Optional[Mapping[str, Decimal]] = None,
        managed_balances: Optional[Mapping[tuple[str, str], Decimal]] = None,
        claimable_rewards: Optional[Mapping[str, Decimal]] = None,
        buy_rate: Decimal = DEFAULT_BUY_RATE,
        initial_supply: Decimal = DEFAULT_INITIAL_SUPPLY,
        failing_destinations: Iterable[str] = (),
    ) -> None:
        self._keys = dict(keys)
        self._lock = threading.Lock()
        self._seq = 0
        self._balances: dict[tuple[str, Optional[str]], Decimal] = {}
        for address, balance in (native_balances or {}).items():
            self._balances[(address, None)] = balance
        for (address, asset_id), balance in (managed_balances or {}).items():
            self._balances[(address, asset_id)] = balance
        self._claimable = dict(claimable_rewards or {})
        self._buy_rate = buy_rate
        self._initial_supply = initial_supply
        self._failing_destinations = set(failing_destinations)
        self._assets: dict[str, str] = {}

    def _signature(self, *tokens: object) -> str:
        self._seq += 1
        return stable_hash(("sim", self._seq, *tokens))

    def _owner(self, key: str) -> Optional[str]:
        return self._keys.get(key)

    def _balance(self, address: str, asset_id: Optional[str]) -> Decimal:
        return self._balances.get((address, asset_id), ZERO)

    def _debit(self, address: str, asset_id: Optional[str], amount: Decimal) -> Optional[str]:
        available = self._balance(address, asset_id)
        if available < amount:
            return insufficient_funds_message(
                f"{address} holds {decimal_to_str(available)}, needs {decimal_to_str(amount)}"
            )
        self._balances[(address, asset_id)] = available - amount
        return None

    def _credit(self, address: str, asset_id: Optional[str], amount: Decimal) -> None:
        self._balances[(address, asset_id)] = self._balance(address, asset_id) + amount

    def fail_transfers_to(self, *addresses: str) -> None:
        with self._lock:
            self._failing_destinations.update(addresses)

    def set_claimable(self, asset_id: str, amount: Decimal) -> None:
        with self._lock:
            self._claimable[asset_id] = amount

    def transfer(
        self,
        source_key: str,
        destination: str,
        asset_id: Optional[str],
        amount: Decimal,
    ) -> GatewayResult:
        with self._lock:
            source = self._owner(source_key)
            if source is None:
                return GatewayResult.failure("unknown signing key")
            if not _is_valid_address(destination):
                return GatewayResult.failure(f"invalid destination address: {destination!r}")
            if amount <= 0:
                return GatewayResult.failure("transfer amount must be positive")
            if destination in self._failing_destinations:
                return GatewayResult.failure(f"simulated transfer failure for {destination}")
            error = self._debit(source, asset_id, amount)
            if error is not None:
                return GatewayResult.failure(error)
            self._credit(destination, asset_id, amount)
            return GatewayResult(
                success=True,
                signature=self._signature("transfer", source, destination, asset_id, amount),
                amount=amount,
                asset_id=asset_id,
            )

    def burn(self, owner_key: str, asset_id: str, amount: Decimal) -> GatewayResult:
        with self._lock:
            owner = self._owner(owner_key)
            if owner is None:
                return GatewayResult.failure("unknown signing key")
            error = self._debit(owner, asset_id, amount)
            if error is not None:
                return GatewayResult.failure(error)
            return GatewayResult(
                success=True,
                signature=self._signature("burn", owner, asset_id, amount),
                amount=amount,
                asset_id=asset_id,
            )

    def buy(self, buyer_key: str, asset_id: str, native_amount: Decimal) -> GatewayResult:
        with self._lock:
            buyer = self._owner(buyer_key)
            if buyer is None:
                return GatewayResult.failure("unknown signing key")
            error = self._debit(buyer, None, native_amount)
            if error is not None:
                return GatewayResult.failure(error)
            received = normalize_decimal(native_amount * self._buy_rate)
            self._credit(buyer, asset_id, received)
            return GatewayResult(
                success=True,
                signature=self._signature("buy", buyer, asset_id, native_amount),
                amount=received,
                asset_id=asset_id,
            )

    def claim(self, owner_key: str, asset_id: str) -> GatewayResult:
        with self._lock:
            owner = self._owner(owner_key)
            if owner is None:
                return GatewayResult.failure("unknown signing key")
            claimed = self._claimable.pop(asset_id, ZERO)
            self._credit(owner, None, claimed)
            return GatewayResult(
                success=True,
                signature=self._signature("claim", owner, asset_id, claimed),
                amount=claimed,
                asset_id=asset_id,
            )

    def deploy(
        self,
        owner_key: str,
        name: str,
        symbol: str,
        description: Optional[str],
        metadata_uri: Optional[str],
        initial_buy: Decimal,
    ) -> GatewayResult:
        with self._lock:
            owner = self._owner(owner_key)
            if owner is None:
                return GatewayResult.failure("unknown signing key")
            if initial_buy > 0:
                error = self._debit(owner, None, initial_buy)
                if error is not None:
                    return GatewayResult.failure(error)
            signature = self._signature("deploy", owner, name, symbol, metadata_uri)
            asset_id = f"asset-{signature[:24]}"
            self._assets[asset_id] = symbol
            self._credit(owner, asset_id, self._initial_supply)
            if initial_buy > 0:
                self._credit(owner, asset_id, normalize_decimal(initial_buy * self._buy_rate))
            return GatewayResult(success=True, signature=signature, asset_id=asset_id)

    def get_balance(self, address: str, asset_id: Optional[str] = None) -> Decimal:
        with self._lock:
            return self._balance(address, asset_id)

    def pending_rewards(self, asset_id: str) -> Decimal:
        with self._lock:
            return self._claimable.get(asset_id, ZERO)

    def list_holders(self, asset_id: str) -> Sequence[HolderBalance]:
        """Holders of ``asset_id`` other than signing-key owners."""
        with self._lock:
            owners = set(self._keys.values())
            return [
                HolderBalance(address=address, balance=balance)
                for (address, held_asset), balance in sorted(self._balances.items(), key=lambda item: item[0][0])
                if held_asset == asset_id and address not in owners
            ]
