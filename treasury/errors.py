"""Error taxonomy for treasury operations."""

from __future__ import annotations


class TreasuryError(RuntimeError):
    """Base class for treasury runtime failures."""


class InvalidRequestError(TreasuryError):
    """Raised when input is malformed; no record has been opened."""


class EmptySnapshotError(InvalidRequestError):
    """Raised when a holder snapshot has nothing to distribute against."""


class UpstreamUnavailableError(TreasuryError):
    """Raised when the gateway or snapshot service cannot be reached."""


class InsufficientFundsError(TreasuryError):
    """Raised when the treasury cannot cover an operation."""


class InternalConsistencyError(TreasuryError):
    """Raised when a ledger invariant is violated by a caller."""


class StorageFaultError(TreasuryError):
    """Raised when the record store cannot complete a read or write."""
