from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends

from backend.api.deps import get_runtime
from backend.api.schemas import RunCycleRequest
from backend.api.serializers import cycle_result_json
from treasury.advisory import AdvisoryDecision
from treasury.runtime import TreasuryRuntime

router = APIRouter()


@router.post("/agent/run-cycle")
def run_cycle(
    body: Optional[RunCycleRequest] = None,
    runtime: TreasuryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    decision = None
    if body is not None and body.action:
        decision = AdvisoryDecision(
            action=body.action.strip().lower(),
            rationale=body.rationale or "",
            amount=body.amount,
            confidence=body.confidence,
        )
    result = runtime.automation.run(runtime.context(), decision)
    return cycle_result_json(result)
