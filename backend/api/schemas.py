"""Pydantic request schemas for the treasury API.

Field names are camelCase on the wire. Quantities are accepted as strings or
numbers and parsed straight to ``Decimal`` without going through floats.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from treasury.numeric import parse_quantity
from treasury.records import DistributionKind

# Wire names used by earlier clients.
_DISTRIBUTION_KIND_ALIASES = {
    "sol": DistributionKind.NATIVE,
    "token": DistributionKind.MANAGED,
}


def parse_distribution_kind(value: Any) -> DistributionKind:
    if isinstance(value, DistributionKind):
        return value
    text = str(value or "").strip().lower()
    if text in _DISTRIBUTION_KIND_ALIASES:
        return _DISTRIBUTION_KIND_ALIASES[text]
    try:
        return DistributionKind(text)
    except ValueError as exc:
        raise ValueError(f"kind must be one of native, managed, sol, token (got {value!r})") from exc


def _parse_wire_quantity(value: Any) -> Decimal:
    return parse_quantity(value)


Quantity = Annotated[Decimal, BeforeValidator(_parse_wire_quantity)]
DistributionKindField = Annotated[DistributionKind, BeforeValidator(parse_distribution_kind)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BurnRequest(_CamelModel):
    asset_id: Optional[str] = None
    amount: Quantity
    reason: Optional[str] = None


class BuybackRequest(_CamelModel):
    asset_id: Optional[str] = None
    native_amount: Quantity
    reason: Optional[str] = None


class ClaimRequest(_CamelModel):
    asset_id: Optional[str] = None
    reason: Optional[str] = None


class DeployRequest(_CamelModel):
    name: str
    symbol: str
    description: Optional[str] = None
    metadata_uri: Optional[str] = None
    initial_buy: Quantity = Decimal("0")


class RecipientIn(_CamelModel):
    address: str
    amount: Quantity


class DistributeRequest(_CamelModel):
    asset_id: Optional[str] = None
    kind: DistributionKindField
    recipients: list[RecipientIn] = Field(default_factory=list)
    use_snapshot: bool = False
    snapshot_id: Optional[str] = None
    total_amount: Optional[Quantity] = None
    reason: Optional[str] = None


class RetryRequest(_CamelModel):
    rationale: Optional[str] = None


class SnapshotRequest(_CamelModel):
    asset_id: Optional[str] = None
    rationale: Optional[str] = None


class ThoughtRequest(_CamelModel):
    rationale: str
    action: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RunCycleRequest(_CamelModel):
    """Explicit decision; with no ``action`` the configured advisory service decides."""

    action: Optional[str] = None
    amount: Optional[Quantity] = None
    rationale: Optional[str] = None
    confidence: Optional[float] = None
