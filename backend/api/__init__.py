"""HTTP API for the treasury operation ledger."""

from __future__ import annotations

from backend.api.app import create_app

__all__ = ["create_app"]
