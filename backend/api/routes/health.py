from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.api.deps import get_runtime
from treasury.runtime import TreasuryRuntime

router = APIRouter()


@router.get("/health")
def health(runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, object]:
    return {
        "ok": True,
        "service": "treasury-ledger",
        "gatewayMode": runtime.config.gateway_mode,
        "persistence": "postgres" if runtime.db is not None else "memory",
        "walletConfigured": bool(runtime.config.wallet_address and runtime.config.wallet_key),
    }
