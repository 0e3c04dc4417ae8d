"""Operation endpoints: single-call operations, distributions, and record reads."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from backend.api.deps import get_runtime
from backend.api.errors import ApiError
from backend.api.schemas import (
    BurnRequest,
    BuybackRequest,
    ClaimRequest,
    DeployRequest,
    DistributeRequest,
    RetryRequest,
)
from backend.api.serializers import distribution_result_json, operation_record_json, operation_result_json
from treasury.context import TreasuryContext
from treasury.distribution import DistributionRequest
from treasury.errors import InvalidRequestError
from treasury.numeric import fits_storage_precision
from treasury.operations import OperationResult
from treasury.records import DistributionKind, HolderSnapshot, OperationKind, Recipient
from treasury.runtime import TreasuryRuntime
from treasury.snapshots import plan_proportional_distribution

logger = logging.getLogger(__name__)

router = APIRouter()


def _single_call_response(result: OperationResult) -> JSONResponse:
    # 502: the operation was recorded but failed upstream.
    return JSONResponse(status_code=200 if result.success else 502, content=operation_result_json(result))


@router.post("/operation/burn")
def burn(body: BurnRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> JSONResponse:
    context = runtime.context()
    result = runtime.operations.burn(context, context.require_asset(body.asset_id), body.amount, body.reason)
    return _single_call_response(result)


@router.post("/operation/buyback")
def buyback(body: BuybackRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> JSONResponse:
    context = runtime.context()
    result = runtime.operations.buyback(
        context,
        context.require_asset(body.asset_id),
        body.native_amount,
        body.reason,
    )
    return _single_call_response(result)


@router.post("/operation/claim")
def claim(body: ClaimRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> JSONResponse:
    context = runtime.context()
    result = runtime.operations.claim(context, context.require_asset(body.asset_id), body.reason)
    return _single_call_response(result)


@router.post("/operation/deploy")
def deploy(body: DeployRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> JSONResponse:
    result = runtime.operations.deploy(
        runtime.context(),
        body.name,
        body.symbol,
        body.description,
        body.metadata_uri,
        body.initial_buy,
    )
    return _single_call_response(result)


def _snapshot_for(runtime: TreasuryRuntime, context: TreasuryContext, body: DistributeRequest) -> HolderSnapshot:
    if body.snapshot_id:
        snapshot = runtime.snapshots.get(body.snapshot_id)
        if snapshot is None:
            raise ApiError.not_found("snapshot_not_found", f"Unknown snapshot: {body.snapshot_id}")
        return snapshot
    return runtime.snapshots.capture_snapshot(context.require_asset(body.asset_id), body.reason)


def _snapshot_request(runtime: TreasuryRuntime, context: TreasuryContext, body: DistributeRequest) -> DistributionRequest:
    if body.recipients:
        raise InvalidRequestError("recipients cannot be combined with a snapshot distribution")
    if body.total_amount is None or body.total_amount <= 0:
        raise InvalidRequestError("totalAmount must be positive for a snapshot distribution")
    if not fits_storage_precision(body.total_amount):
        raise InvalidRequestError("totalAmount exceeds 18 decimal places or 20 integer digits")
    snapshot = _snapshot_for(runtime, context, body)
    recipients = plan_proportional_distribution(snapshot, body.total_amount)
    asset_id = body.asset_id
    if body.kind is DistributionKind.MANAGED:
        asset_id = asset_id or snapshot.asset_id
    return DistributionRequest(
        kind=body.kind,
        recipients=tuple(recipients),
        asset_id=asset_id,
        rationale=body.reason or f"Proportional distribution to holders in snapshot {snapshot.snapshot_id}",
        snapshot_id=snapshot.snapshot_id,
        reason=body.reason,
    )


@router.post("/operation/distribute")
def distribute(body: DistributeRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    context = runtime.context()
    if body.use_snapshot or body.snapshot_id:
        request = _snapshot_request(runtime, context, body)
    else:
        request = DistributionRequest(
            kind=body.kind,
            recipients=tuple(Recipient(address=item.address, amount=item.amount) for item in body.recipients),
            asset_id=body.asset_id or context.active_asset_id,
            rationale=body.reason,
            reason=body.reason,
        )
    return distribution_result_json(runtime.engine.distribute(context, request))


@router.post("/operation/distribute/{record_id}/retry")
def retry_distribution(
    record_id: str,
    body: Optional[RetryRequest] = None,
    runtime: TreasuryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    rationale = None if body is None else body.rationale
    result = runtime.engine.retry_failed(runtime.context(), record_id, rationale)
    return distribution_result_json(result)


def _parse_operation_kind(kind: Optional[str]) -> Optional[OperationKind]:
    if kind is None or not kind.strip():
        return None
    try:
        return OperationKind(kind.strip().lower())
    except ValueError as exc:
        raise InvalidRequestError(f"Unknown operation kind: {kind}") from exc


@router.get("/operations")
def list_operations(
    kind: Optional[str] = None,
    asset_id: Optional[str] = Query(None, alias="assetId"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    runtime: TreasuryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    records = runtime.ledger.list(kind=_parse_operation_kind(kind), asset_id=asset_id, limit=limit, offset=offset)
    return {
        "operations": [operation_record_json(record) for record in records],
        "offset": offset,
        "count": len(records),
    }


@router.get("/operations/{record_id}")
def get_operation(record_id: str, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    record = runtime.ledger.get(record_id)
    if record is None:
        raise ApiError.not_found("operation_not_found", f"Unknown operation: {record_id}")
    return operation_record_json(record)
