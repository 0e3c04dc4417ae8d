"""Request-scoped accessors for the runtime attached to ``app.state``."""

from __future__ import annotations

from fastapi import Request

from backend.api.errors import ApiError
from treasury.runtime import TreasuryRuntime


def get_runtime(request: Request) -> TreasuryRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ApiError(500, "not_ready", "treasury runtime not attached to app.state")
    return runtime
