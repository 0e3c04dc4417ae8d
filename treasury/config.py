"""Environment-backed configuration for the treasury runtime."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
import os

from treasury.numeric import parse_quantity

_GATEWAY_MODES = ("SIMULATED", "HTTP")
_PACING_MODES = ("FIXED", "TOKEN_BUCKET", "NONE")


@dataclass(frozen=True)
class TreasuryConfig:
    """Canonical configuration surface for the treasury API and CLI."""

    wallet_address: str | None
    wallet_key: str | None
    asset_id: str | None
    database_dsn: str | None
    gateway_mode: str
    gateway_base_url: str | None
    gateway_api_key: str | None
    gateway_call_timeout_seconds: float
    snapshot_base_url: str | None
    snapshot_api_key: str | None
    distribution_pacing: str
    distribution_interval_ms: int
    distribution_rate_per_second: float
    distribution_burst: int
    list_default_limit: int
    log_level: str
    api_host: str
    api_port: int
    simulated_native_balance: Decimal


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _read_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = _read_env(name, default).upper()
    if value not in choices:
        raise RuntimeError(f"Invalid value for {name}: {value} (expected one of {', '.join(choices)})")
    return value


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value for {name}: {raw}") from exc
    return value


def _read_decimal(name: str, default: str) -> Decimal:
    raw = _read_env(name, default)
    try:
        value = parse_quantity(raw, field=name)
    except ValueError as exc:
        raise RuntimeError(f"Invalid decimal value for {name}: {raw}") from exc
    if value < 0:
        raise RuntimeError(f"{name} must be non-negative")
    return value


def load_treasury_config() -> TreasuryConfig:
    """Load and validate treasury configuration from environment."""
    gateway_mode = _read_choice("TREASURY_GATEWAY_MODE", "SIMULATED", _GATEWAY_MODES)
    gateway_base_url = _read_optional("TREASURY_GATEWAY_BASE_URL")
    gateway_api_key = _read_optional("TREASURY_GATEWAY_API_KEY")
    if gateway_mode == "HTTP":
        gateway_base_url = _read_env("TREASURY_GATEWAY_BASE_URL")
        gateway_api_key = _read_env("TREASURY_GATEWAY_API_KEY")

    timeout = _read_float("TREASURY_GATEWAY_CALL_TIMEOUT_SECONDS", 30.0)
    if timeout <= 0:
        raise RuntimeError("TREASURY_GATEWAY_CALL_TIMEOUT_SECONDS must be positive")

    interval_ms = _read_int("TREASURY_DISTRIBUTION_INTERVAL_MS", 100)
    if interval_ms < 0:
        raise RuntimeError("TREASURY_DISTRIBUTION_INTERVAL_MS must be non-negative")
    rate = _read_float("TREASURY_DISTRIBUTION_RATE_PER_SECOND", 10.0)
    if rate <= 0:
        raise RuntimeError("TREASURY_DISTRIBUTION_RATE_PER_SECOND must be positive")
    burst = _read_int("TREASURY_DISTRIBUTION_BURST", 1)
    if burst < 1:
        raise RuntimeError("TREASURY_DISTRIBUTION_BURST must be at least 1")

    list_limit = _read_int("TREASURY_LIST_DEFAULT_LIMIT", 50)
    if list_limit < 1:
        raise RuntimeError("TREASURY_LIST_DEFAULT_LIMIT must be at least 1")

    log_level = _read_env("TREASURY_LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise RuntimeError(f"Invalid value for TREASURY_LOG_LEVEL: {log_level}")

    return TreasuryConfig(
        wallet_address=_read_optional("TREASURY_WALLET_ADDRESS"),
        wallet_key=_read_optional("TREASURY_WALLET_KEY"),
        asset_id=_read_optional("TREASURY_ASSET_ID"),
        database_dsn=_read_optional("TREASURY_DATABASE_DSN"),
        gateway_mode=gateway_mode,
        gateway_base_url=gateway_base_url,
        gateway_api_key=gateway_api_key,
        gateway_call_timeout_seconds=timeout,
        snapshot_base_url=_read_optional("TREASURY_SNAPSHOT_BASE_URL"),
        snapshot_api_key=_read_optional("TREASURY_SNAPSHOT_API_KEY"),
        distribution_pacing=_read_choice("TREASURY_DISTRIBUTION_PACING", "FIXED", _PACING_MODES),
        distribution_interval_ms=interval_ms,
        distribution_rate_per_second=rate,
        distribution_burst=burst,
        list_default_limit=list_limit,
        log_level=log_level,
        api_host=_read_env("TREASURY_API_HOST", "0.0.0.0"),
        api_port=_read_int("TREASURY_API_PORT", 8000),
        simulated_native_balance=_read_decimal("TREASURY_SIMULATED_NATIVE_BALANCE", "100"),
    )
