"""Advisory decisions and the automation cycle that acts on them."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from treasury.context import TreasuryContext
from treasury.distribution import BatchDistributionEngine, DistributionRequest, DistributionResult
from treasury.errors import InvalidRequestError
from treasury.ledger import OperationLedger
from treasury.numeric import decimal_to_str, fits_storage_precision
from treasury.operations import OperationResult, TreasuryOperations
from treasury.records import DistributionKind, TreasuryBalance
from treasury.snapshots import SnapshotRecorder, plan_proportional_distribution

logger = logging.getLogger(__name__)


class AdvisoryAction(str, enum.Enum):
    BURN = "burn"
    BUYBACK = "buyback"
    AIRDROP = "airdrop"
    CLAIM_REWARDS = "claim_rewards"
    HOLD = "hold"
    NONE = "none"


_AMOUNT_REQUIRED = frozenset({AdvisoryAction.BURN, AdvisoryAction.BUYBACK, AdvisoryAction.AIRDROP})
_PASSIVE = frozenset({AdvisoryAction.HOLD, AdvisoryAction.NONE})


@dataclass(frozen=True)
class AdvisoryDecision:
    """Recommended treasury action with the reasoning behind it."""

    action: AdvisoryAction
    rationale: str
    amount: Optional[Decimal] = None
    confidence: Optional[float] = None


class AdvisoryService(Protocol):
    def recommend(self, asset_id: Optional[str], treasury_balance: Optional[TreasuryBalance]) -> AdvisoryDecision:
        """Return the next recommended action."""


class HoldAdvisoryService:
    """Fallback advisor that always recommends holding."""

    def recommend(self, asset_id: Optional[str], treasury_balance: Optional[TreasuryBalance]) -> AdvisoryDecision:
        return AdvisoryDecision(action=AdvisoryAction.HOLD, rationale="No advisory service configured; holding.")


@dataclass(frozen=True)
class CycleResult:
    decision: AdvisoryDecision
    thought_entry_id: str
    operation: Optional[OperationResult] = None
    distribution: Optional[DistributionResult] = None
    snapshot_id: Optional[str] = None


class AutomationCycle:
    """Records an advisory decision as a thought and dispatches it."""

    def __init__(
        self,
        *,
        ledger: OperationLedger,
        operations: TreasuryOperations,
        engine: BatchDistributionEngine,
        snapshots: SnapshotRecorder,
        advisory: AdvisoryService | None = None,
    ) -> None:
        self._ledger = ledger
        self._operations = operations
        self._engine = engine
        self._snapshots = snapshots
        self._advisory = advisory or HoldAdvisoryService()

    def recommend(self, context: TreasuryContext) -> AdvisoryDecision:
        return self._advisory.recommend(context.active_asset_id, self._operations.cached_balance())

    @staticmethod
    def validate(context: TreasuryContext, decision: AdvisoryDecision) -> AdvisoryDecision:
        try:
            action = AdvisoryAction(decision.action)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown advisory action: {decision.action!r}") from exc
        rationale = (decision.rationale or "").strip()
        if not rationale:
            raise InvalidRequestError("Advisory decision requires a rationale")
        if decision.confidence is not None and not 0 <= decision.confidence <= 1:
            raise InvalidRequestError("confidence must be between 0 and 1")
        if action in _AMOUNT_REQUIRED:
            amount = decision.amount
            if amount is None or not amount.is_finite() or amount <= 0:
                raise InvalidRequestError(f"Action {action.value} requires a positive amount")
            if not fits_storage_precision(amount):
                raise InvalidRequestError(f"Action {action.value} amount exceeds 18 decimal places or 20 integer digits")
        if action not in _PASSIVE and not context.active_asset_id:
            raise InvalidRequestError(f"Action {action.value} requires an active asset")
        return AdvisoryDecision(
            action=action,
            rationale=rationale,
            amount=decision.amount,
            confidence=decision.confidence,
        )

    def run(self, context: TreasuryContext, decision: AdvisoryDecision | None = None) -> CycleResult:
        decision = self.validate(context, decision or self.recommend(context))
        metadata = {
            "action": decision.action.value,
            "amount": None if decision.amount is None else decimal_to_str(decision.amount),
            "confidence": decision.confidence,
        }
        thought = self._ledger.record_thought(
            "agent_cycle",
            decision.rationale,
            metadata,
            asset_id=context.active_asset_id,
            description=f"Agent cycle complete. Recommendation: {decision.action.value}",
        )
        logger.info("Automation cycle decided %s (thought %s)", decision.action.value, thought.entry_id)

        asset_id = context.active_asset_id
        action = decision.action
        if action in _PASSIVE or asset_id is None:
            return CycleResult(decision=decision, thought_entry_id=thought.entry_id)
        if action is AdvisoryAction.BURN:
            operation = self._operations.burn(context, asset_id, decision.amount, decision.rationale)
            return CycleResult(decision=decision, thought_entry_id=thought.entry_id, operation=operation)
        if action is AdvisoryAction.BUYBACK:
            operation = self._operations.buyback(context, asset_id, decision.amount, decision.rationale)
            return CycleResult(decision=decision, thought_entry_id=thought.entry_id, operation=operation)
        if action is AdvisoryAction.CLAIM_REWARDS:
            operation = self._operations.claim(context, asset_id, decision.rationale)
            return CycleResult(decision=decision, thought_entry_id=thought.entry_id, operation=operation)

        snapshot = self._snapshots.capture_snapshot(asset_id, decision.rationale)
        recipients = plan_proportional_distribution(snapshot, decision.amount)
        distribution = self._engine.distribute(
            context,
            DistributionRequest(
                kind=DistributionKind.MANAGED,
                recipients=tuple(recipients),
                asset_id=asset_id,
                rationale=decision.rationale,
                snapshot_id=snapshot.snapshot_id,
            ),
        )
        return CycleResult(
            decision=decision,
            thought_entry_id=thought.entry_id,
            distribution=distribution,
            snapshot_id=snapshot.snapshot_id,
        )
