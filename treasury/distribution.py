"""Batch distribution engine: N independent transfers, one aggregate record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from treasury.context import TreasuryContext
from treasury.errors import InvalidRequestError, TreasuryError
from treasury.gateway import RemoteOperationGateway, call_with_deadline, failure_message
from treasury.ledger import OperationLedger, OperationOutcome
from treasury.numeric import ZERO, decimal_to_str, fits_storage_precision
from treasury.pacing import FixedIntervalPacer, Pacer
from treasury.records import (
    DistributionKind,
    OperationKind,
    OperationRecord,
    OperationStatus,
    Recipient,
    RecipientOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DistributionRequest:
    kind: DistributionKind
    recipients: tuple[Recipient, ...]
    asset_id: Optional[str] = None
    rationale: Optional[str] = None
    snapshot_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class DistributionResult:
    record_id: str
    status: OperationStatus
    success_count: int
    fail_count: int
    total_requested: Decimal
    outcomes: tuple[RecipientOutcome, ...]


class BatchDistributionEngine:
    """Executes distributions recipient by recipient and records one aggregate result.

    Each transfer is independent: a failure, timeout, or unexpected error is
    recorded against that recipient and the batch continues. There is no
    automatic retry; :meth:`retry_failed` starts a new distribution.
    """

    def __init__(
        self,
        *,
        ledger: OperationLedger,
        gateway: RemoteOperationGateway,
        pacer: Pacer | None = None,
        call_timeout_seconds: Optional[float] = 30.0,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._pacer = pacer if pacer is not None else FixedIntervalPacer()
        self._call_timeout_seconds = call_timeout_seconds

    def validate(self, context: TreasuryContext, request: DistributionRequest) -> DistributionRequest:
        """Return a normalized copy of ``request`` or raise :class:`InvalidRequestError`."""
        if not context.treasury_key:
            raise InvalidRequestError("Treasury wallet not configured")
        try:
            kind = DistributionKind(request.kind)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown distribution kind: {request.kind!r}") from exc
        if not request.recipients:
            raise InvalidRequestError("Distribution requires at least one recipient")

        recipients: list[Recipient] = []
        for index, recipient in enumerate(request.recipients):
            address = (recipient.address or "").strip()
            if not address:
                raise InvalidRequestError(f"Recipient {index} has a blank address")
            if not isinstance(recipient.amount, Decimal) or not recipient.amount.is_finite():
                raise InvalidRequestError(f"Recipient {index} amount must be a finite decimal")
            if recipient.amount <= 0:
                raise InvalidRequestError(f"Recipient {index} amount must be positive")
            if not fits_storage_precision(recipient.amount):
                raise InvalidRequestError(f"Recipient {index} amount exceeds 18 decimal places or 20 integer digits")
            recipients.append(Recipient(address=address, amount=recipient.amount))

        asset_id = (request.asset_id or "").strip() or None
        if kind is DistributionKind.MANAGED and asset_id is None:
            raise InvalidRequestError("assetId is required for a managed-asset distribution")
        if kind is DistributionKind.NATIVE and asset_id is None:
            asset_id = context.active_asset_id

        return DistributionRequest(
            kind=kind,
            recipients=tuple(recipients),
            asset_id=asset_id,
            rationale=request.rationale,
            snapshot_id=request.snapshot_id,
            reason=request.reason,
        )

    def distribute(self, context: TreasuryContext, request: DistributionRequest) -> DistributionResult:
        request = self.validate(context, request)
        record_id = self._ledger.open_distribution(
            request.kind,
            request.asset_id,
            request.recipients,
            request.rationale,
            snapshot_id=request.snapshot_id,
            reason=request.reason,
        )
        transfer_asset = request.asset_id if request.kind is DistributionKind.MANAGED else None
        logger.info(
            "Distribution %s started: %s recipients, %s %s",
            record_id,
            len(request.recipients),
            decimal_to_str(sum((item.amount for item in request.recipients), ZERO)),
            request.kind.value,
        )

        outcomes: list[RecipientOutcome] = []
        for index, recipient in enumerate(request.recipients):
            if index > 0:
                self._pacer.wait()
            outcomes.append(self._attempt(context, transfer_asset, recipient))

        closed = self._ledger.close(record_id, OperationOutcome.for_distribution(outcomes))
        logger.info(
            "Distribution %s finished with status %s (%s succeeded, %s failed)",
            record_id,
            closed.status.value,
            closed.success_count,
            closed.fail_count,
        )
        return DistributionResult(
            record_id=closed.record_id,
            status=closed.status,
            success_count=closed.success_count,
            fail_count=closed.fail_count,
            total_requested=closed.total_requested if closed.total_requested is not None else ZERO,
            outcomes=closed.outcomes,
        )

    def _attempt(
        self,
        context: TreasuryContext,
        asset_id: Optional[str],
        recipient: Recipient,
    ) -> RecipientOutcome:
        def _transfer():
            return self._gateway.transfer(context.treasury_key, recipient.address, asset_id, recipient.amount)

        try:
            result = call_with_deadline(_transfer, self._call_timeout_seconds)
        except TreasuryError as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected gateway error transferring to %s", recipient.address)
            error = f"unexpected gateway error: {exc}"
        else:
            if result.success:
                return RecipientOutcome(
                    recipient_address=recipient.address,
                    requested_amount=recipient.amount,
                    success=True,
                    settlement_signature=result.signature,
                )
            error = failure_message(result.error)

        logger.warning(
            "Transfer of %s to %s failed: %s",
            decimal_to_str(recipient.amount),
            recipient.address,
            error,
        )
        return RecipientOutcome(
            recipient_address=recipient.address,
            requested_amount=recipient.amount,
            success=False,
            error=error,
        )

    def _terminal_distribution(self, record_id: str) -> OperationRecord:
        record = self._ledger.get(record_id)
        if record is None or record.kind is not OperationKind.DISTRIBUTION:
            raise InvalidRequestError(f"Unknown distribution: {record_id}")
        if not record.is_terminal:
            raise InvalidRequestError(f"Distribution {record_id} is still processing")
        return record

    def retry_failed(
        self,
        context: TreasuryContext,
        record_id: str,
        rationale: Optional[str] = None,
    ) -> DistributionResult:
        """Run a new distribution for the failed recipients of ``record_id``; the original is untouched."""
        original = self._terminal_distribution(record_id)
        failed = tuple(
            Recipient(address=outcome.recipient_address, amount=outcome.requested_amount)
            for outcome in original.outcomes
            if not outcome.success
        )
        if not failed:
            raise InvalidRequestError(f"Distribution {record_id} has no failed recipients to retry")
        return self.distribute(
            context,
            DistributionRequest(
                kind=original.distribution_kind or DistributionKind.NATIVE,
                recipients=failed,
                asset_id=original.asset_id,
                rationale=rationale or f"Retrying {len(failed)} failed recipients of distribution {record_id}",
                snapshot_id=original.snapshot_id,
                reason=f"retry of {record_id}",
            ),
        )
