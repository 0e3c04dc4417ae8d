#!/usr/bin/env python3
"""Treasury CLI: serve the API or run ledger operations from a shell."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any, Optional, Sequence

import uvicorn

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend.api.errors import classify_treasury_error, error_body
from backend.api.schemas import parse_distribution_kind
from backend.api.serializers import (
    balance_json,
    distribution_result_json,
    operation_record_json,
    snapshot_json,
)
from treasury.config import TreasuryConfig, load_treasury_config
from treasury.distribution import DistributionRequest
from treasury.errors import InvalidRequestError, TreasuryError
from treasury.numeric import parse_quantity
from treasury.records import DistributionKind, OperationKind, Recipient
from treasury.runtime import TreasuryRuntime, build_runtime, configure_logging


def _print(payload: Any) -> None:
    print(json.dumps(payload, sort_keys=True))


def _load_recipients(path: str) -> tuple[Recipient, ...]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise InvalidRequestError(f"Unable to read recipients file {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise InvalidRequestError("Recipients file must contain a JSON list")
    recipients: list[Recipient] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise InvalidRequestError(f"Recipient {index} must be an object with address and amount")
        try:
            amount = parse_quantity(item.get("amount"), field=f"recipients[{index}].amount")
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from exc
        recipients.append(Recipient(address=str(item.get("address") or ""), amount=amount))
    return tuple(recipients)


def _parse_kind(value: str) -> DistributionKind:
    try:
        return parse_distribution_kind(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Treasury operation ledger CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_cmd = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_cmd.add_argument("--host", default=None)
    serve_cmd.add_argument("--port", type=int, default=None)

    subparsers.add_parser("refresh", help="Refresh the cached treasury balances from the gateway")

    snapshot_cmd = subparsers.add_parser("snapshot", help="Capture a holder snapshot")
    snapshot_cmd.add_argument("--asset-id", default=None)

    list_cmd = subparsers.add_parser("list", help="List operation records newest first")
    list_cmd.add_argument("--kind", choices=[kind.value for kind in OperationKind], default=None)
    list_cmd.add_argument("--asset-id", default=None)
    list_cmd.add_argument("--limit", type=int, default=None)
    list_cmd.add_argument("--offset", type=int, default=0)

    distribute_cmd = subparsers.add_parser("distribute", help="Distribute to recipients listed in a JSON file")
    distribute_cmd.add_argument("--kind", required=True, type=_parse_kind)
    distribute_cmd.add_argument("--asset-id", default=None)
    distribute_cmd.add_argument("--recipients-file", required=True)
    distribute_cmd.add_argument("--reason", default=None)

    return parser


def _serve(config: TreasuryConfig, args: argparse.Namespace) -> int:
    uvicorn.run(
        "backend.api.app:create_app",
        factory=True,
        host=args.host or config.api_host,
        port=args.port or config.api_port,
        log_level=config.log_level.lower(),
    )
    return 0


def _run_command(runtime: TreasuryRuntime, args: argparse.Namespace) -> Any:
    if args.command == "refresh":
        context = runtime.context()
        return balance_json(runtime.operations.refresh_balance(context), context.treasury_address)

    if args.command == "snapshot":
        asset_id = args.asset_id or runtime.context().require_asset()
        return snapshot_json(runtime.snapshots.capture_snapshot(asset_id))

    if args.command == "list":
        kind = None if args.kind is None else OperationKind(args.kind)
        records = runtime.ledger.list(kind=kind, asset_id=args.asset_id, limit=args.limit, offset=args.offset)
        return {"operations": [operation_record_json(record) for record in records], "count": len(records)}

    context = runtime.context()
    request = DistributionRequest(
        kind=args.kind,
        recipients=_load_recipients(args.recipients_file),
        asset_id=args.asset_id or context.active_asset_id,
        rationale=args.reason,
        reason=args.reason,
    )
    return distribution_result_json(runtime.engine.distribute(context, request))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_treasury_config()
    configure_logging(config.log_level)
    if args.command == "serve":
        return _serve(config, args)

    runtime = build_runtime(config)
    try:
        payload = _run_command(runtime, args)
    except TreasuryError as exc:
        _, code = classify_treasury_error(exc)
        _print(error_body(code, str(exc)))
        return 1
    finally:
        runtime.close()
    _print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
