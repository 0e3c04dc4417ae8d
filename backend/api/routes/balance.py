from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from backend.api.deps import get_runtime
from backend.api.errors import ApiError
from backend.api.serializers import balance_json
from treasury.numeric import decimal_to_str
from treasury.runtime import TreasuryRuntime

router = APIRouter()


@router.get("/treasury")
def cached_treasury(runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    """Last refreshed balances; never reads the gateway."""
    return balance_json(runtime.operations.cached_balance(), runtime.config.wallet_address)


@router.post("/treasury/refresh")
def refresh_treasury(runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    context = runtime.context()
    return balance_json(runtime.operations.refresh_balance(context), context.treasury_address)


@router.get("/asset/active")
def active_asset(runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    if runtime.config.asset_id:
        return {"assetId": runtime.config.asset_id, "source": "configured"}
    deployed = runtime.ledger.latest_deployed_asset()
    if deployed is None:
        raise ApiError.not_found("no_active_asset", "No active asset is configured or deployed")
    return {"assetId": deployed, "source": "deployment"}


@router.get("/rewards/pending/{asset_id}")
def pending_rewards(asset_id: str, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    resolved, amount = runtime.operations.pending_rewards(runtime.context(), asset_id)
    return {"assetId": resolved, "pendingAmount": decimal_to_str(amount)}
