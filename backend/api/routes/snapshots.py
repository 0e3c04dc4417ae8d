from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from backend.api.deps import get_runtime
from backend.api.errors import ApiError
from backend.api.schemas import SnapshotRequest
from backend.api.serializers import snapshot_json
from treasury.runtime import TreasuryRuntime

router = APIRouter()


@router.post("/snapshot")
def capture_snapshot(body: SnapshotRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    asset_id = body.asset_id or runtime.context().require_asset()
    return snapshot_json(runtime.snapshots.capture_snapshot(asset_id, body.rationale))


@router.get("/snapshot/{snapshot_id}")
def get_snapshot(snapshot_id: str, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    snapshot = runtime.snapshots.get(snapshot_id)
    if snapshot is None:
        raise ApiError.not_found("snapshot_not_found", f"Unknown snapshot: {snapshot_id}")
    return snapshot_json(snapshot)


@router.get("/snapshots/{asset_id}")
def snapshot_history(
    asset_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    runtime: TreasuryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    snapshots = runtime.snapshots.history(asset_id, limit or runtime.config.list_default_limit)
    return {"snapshots": [snapshot_json(snapshot) for snapshot in snapshots]}
