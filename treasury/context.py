"""Per-request treasury context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from treasury.config import TreasuryConfig
from treasury.errors import InvalidRequestError
from treasury.ledger import OperationLedger


@dataclass(frozen=True)
class TreasuryContext:
    """Treasury identity and active asset resolved for one request."""

    treasury_address: str
    treasury_key: str
    active_asset_id: Optional[str] = None

    def require_asset(self, asset_id: Optional[str] = None) -> str:
        """Explicit asset id, else the active one; raises when neither exists."""
        resolved = (asset_id or "").strip() or self.active_asset_id
        if not resolved:
            raise InvalidRequestError("No asset id supplied and no active asset is deployed")
        return resolved


def resolve_context(config: TreasuryConfig, ledger: OperationLedger) -> TreasuryContext:
    """Build the request context from configuration and the newest successful deployment."""
    if not config.wallet_address or not config.wallet_key:
        raise InvalidRequestError("Treasury wallet not configured")
    return TreasuryContext(
        treasury_address=config.wallet_address,
        treasury_key=config.wallet_key,
        active_asset_id=config.asset_id or ledger.latest_deployed_asset(),
    )
