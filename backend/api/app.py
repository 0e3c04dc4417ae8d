"""FastAPI application factory for the treasury API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.api.errors import install_error_handlers
from backend.api.routes import api_router
from treasury.config import load_treasury_config
from treasury.runtime import TreasuryRuntime, build_runtime, configure_logging

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[TreasuryRuntime] = None) -> FastAPI:
    """Create the API application.

    With no ``runtime`` the configuration is read from the environment and
    the runtime is wired from it; tests pass a prebuilt runtime instead.
    """
    if runtime is None:
        config = load_treasury_config()
        configure_logging(config.log_level)
        runtime = build_runtime(config)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        app.state.runtime.close()
        logger.info("Treasury API stopped.")

    app = FastAPI(title="Treasury Operation Ledger", lifespan=_lifespan)
    app.state.runtime = runtime
    install_error_handlers(app)
    app.include_router(api_router)
    logger.info(
        "Treasury API ready (gateway=%s, persistence=%s).",
        runtime.config.gateway_mode,
        "postgres" if runtime.db is not None else "memory",
    )
    return app
