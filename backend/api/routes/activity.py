from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from backend.api.deps import get_runtime
from backend.api.schemas import ThoughtRequest
from backend.api.serializers import audit_entry_json
from treasury.common import clean_text
from treasury.errors import InvalidRequestError
from treasury.records import AuditKind
from treasury.runtime import TreasuryRuntime

router = APIRouter()


def _parse_audit_kind(kind: Optional[str]) -> Optional[AuditKind]:
    if kind is None or not kind.strip():
        return None
    try:
        return AuditKind(kind.strip().lower())
    except ValueError as exc:
        raise InvalidRequestError(f"Unknown activity kind: {kind}") from exc


@router.get("/activity")
def list_activity(
    kind: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    runtime: TreasuryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    entries = runtime.ledger.list_audit(kind=_parse_audit_kind(kind), limit=limit, offset=offset)
    return {"activity": [audit_entry_json(entry) for entry in entries], "offset": offset, "count": len(entries)}


@router.post("/activity/thought")
def record_thought(body: ThoughtRequest, runtime: TreasuryRuntime = Depends(get_runtime)) -> dict[str, Any]:
    rationale = clean_text(body.rationale)
    if rationale is None:
        raise InvalidRequestError("rationale is required")
    entry = runtime.ledger.record_thought(
        body.action,
        rationale,
        body.metadata,
        asset_id=runtime.config.asset_id or runtime.ledger.latest_deployed_asset(),
    )
    return audit_entry_json(entry)
