"""Runtime wiring shared by the HTTP API and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from treasury.advisory import AdvisoryService, AutomationCycle
from treasury.common import TreasuryClock
from treasury.config import TreasuryConfig
from treasury.context import TreasuryContext, resolve_context
from treasury.distribution import BatchDistributionEngine
from treasury.gateway import HttpOperationGateway, RemoteOperationGateway
from treasury.ledger import OperationLedger
from treasury.operations import TreasuryOperations
from treasury.pacing import FixedIntervalPacer, NoDelayPacer, Pacer, TokenBucketPacer
from treasury.postgres import PsycopgTreasuryDB, SqlRecordStore
from treasury.simulator import SimulatedLedgerGateway
from treasury.snapshots import (
    HolderSnapshotService,
    HttpHolderSnapshotService,
    SnapshotRecorder,
    UnconfiguredHolderSnapshotService,
)
from treasury.store import InMemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger; safe to call repeatedly."""
    root = logging.getLogger()
    resolved = getattr(logging, level.upper(), logging.INFO)
    if not getattr(root, "_treasury_configured", False):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.handlers = [handler]
        setattr(root, "_treasury_configured", True)
    root.setLevel(resolved)


@dataclass(frozen=True)
class TreasuryRuntime:
    """Assembled collaborators for one process."""

    config: TreasuryConfig
    store: RecordStore
    ledger: OperationLedger
    gateway: RemoteOperationGateway
    operations: TreasuryOperations
    engine: BatchDistributionEngine
    snapshots: SnapshotRecorder
    automation: AutomationCycle
    db: Optional[PsycopgTreasuryDB] = None

    def context(self) -> TreasuryContext:
        """Resolve the treasury context for one request."""
        return resolve_context(self.config, self.ledger)

    def close(self) -> None:
        if self.db is not None:
            self.db.close()


def build_pacer(config: TreasuryConfig) -> Pacer:
    if config.distribution_pacing == "NONE":
        return NoDelayPacer()
    if config.distribution_pacing == "TOKEN_BUCKET":
        return TokenBucketPacer(config.distribution_rate_per_second, float(config.distribution_burst))
    return FixedIntervalPacer(config.distribution_interval_ms / 1000.0)


def build_gateway(config: TreasuryConfig) -> RemoteOperationGateway:
    if config.gateway_mode == "HTTP":
        return HttpOperationGateway(
            base_url=config.gateway_base_url or "",
            api_key=config.gateway_api_key or "",
            timeout_seconds=config.gateway_call_timeout_seconds,
        )
    keys = {}
    native = {}
    if config.wallet_key and config.wallet_address:
        keys[config.wallet_key] = config.wallet_address
        native[config.wallet_address] = config.simulated_native_balance
    logger.warning("Using the simulated ledger gateway; no real transfers will be made.")
    return SimulatedLedgerGateway(keys=keys, native_balances=native)


def build_snapshot_service(config: TreasuryConfig, gateway: RemoteOperationGateway) -> HolderSnapshotService:
    if config.snapshot_base_url:
        return HttpHolderSnapshotService(
            base_url=config.snapshot_base_url,
            api_key=config.snapshot_api_key,
            timeout_seconds=config.gateway_call_timeout_seconds,
        )
    if isinstance(gateway, SimulatedLedgerGateway):
        return gateway
    return UnconfiguredHolderSnapshotService()


def build_runtime(
    config: TreasuryConfig,
    *,
    store: Optional[RecordStore] = None,
    gateway: Optional[RemoteOperationGateway] = None,
    snapshot_service: Optional[HolderSnapshotService] = None,
    pacer: Optional[Pacer] = None,
    advisory: Optional[AdvisoryService] = None,
    clock: Optional[TreasuryClock] = None,
) -> TreasuryRuntime:
    """Wire the treasury runtime; explicit collaborators override configuration."""
    clock = clock or TreasuryClock()
    db: Optional[PsycopgTreasuryDB] = None
    if store is None:
        if config.database_dsn:
            db = PsycopgTreasuryDB.connect(config.database_dsn)
            store = SqlRecordStore(db)
        else:
            logger.info("TREASURY_DATABASE_DSN is unset; using the in-memory record store.")
            store = InMemoryRecordStore()

    gateway = gateway if gateway is not None else build_gateway(config)
    snapshot_service = snapshot_service if snapshot_service is not None else build_snapshot_service(config, gateway)
    timeout = config.gateway_call_timeout_seconds

    ledger = OperationLedger(store, clock=clock, default_page_size=config.list_default_limit)
    operations = TreasuryOperations(
        ledger=ledger,
        gateway=gateway,
        store=store,
        clock=clock,
        call_timeout_seconds=timeout,
    )
    engine = BatchDistributionEngine(
        ledger=ledger,
        gateway=gateway,
        pacer=pacer if pacer is not None else build_pacer(config),
        call_timeout_seconds=timeout,
    )
    snapshots = SnapshotRecorder(ledger=ledger, store=store, service=snapshot_service, clock=clock)
    automation = AutomationCycle(
        ledger=ledger,
        operations=operations,
        engine=engine,
        snapshots=snapshots,
        advisory=advisory,
    )
    return TreasuryRuntime(
        config=config,
        store=store,
        ledger=ledger,
        gateway=gateway,
        operations=operations,
        engine=engine,
        snapshots=snapshots,
        automation=automation,
        db=db,
    )
