"""
Custom exception hierarchy for the exit desk.

Hierarchy:

    SolscalpError (base)
    ├── OperationalError        — transient/retryable (feeds, swap API, RPC)
    │   ├── FeedError           — market-data / price feed failure
    │   ├── SwapError           — quote or transaction build failure
    │   └── TransactionSubmitError — sign/broadcast/confirm failure
    ├── DataError               — bad input, skip this position
    │   ├── InvalidExitError
    │   └── InvalidPositionError
    └── LedgerError             — logic fault upstream, surfaced to caller
        ├── PositionNotFoundError
        └── PositionAlreadyClosedError
            └── ExitInProgressError

Rules:
    - OperationalError: catch, log, skip the position or cycle; the
      next monitor cycle retries.
    - DataError: catch, log, skip this position.
    - LedgerError: never swallowed silently. Callers log with context
      and move on; a second concurrent close lands here.
"""


class SolscalpError(Exception):
    """Base exception for all exit desk errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(SolscalpError):
    """Transient/retryable error: HTTP feeds, swap API, RPC node.

    Treatment: catch, log, skip, retry on next cycle.
    """
    pass


class FeedError(OperationalError):
    """Market-data, price or reference-asset feed returned an error."""
    pass


class SwapError(OperationalError):
    """Swap quote or transaction build failed."""
    pass


class TransactionSubmitError(OperationalError):
    """Signing, broadcast or confirmation of a transaction failed."""
    pass


# ============ DATA (bad input, skip position) ============

class DataError(SolscalpError):
    """Bad data: malformed market data, impossible exit request.

    Treatment: catch, log, skip this position, continue loop.
    """
    pass


class InvalidExitError(DataError):
    """Raised when an exit request cannot be honoured as asked."""
    pass


class InvalidPositionError(DataError):
    """Raised when a new position's entry details cannot be valued."""
    pass


# ============ LEDGER (unknown entity / lifecycle) ============

class LedgerError(SolscalpError):
    """Ledger lifecycle violation."""
    pass


class PositionNotFoundError(LedgerError):
    """Raised when a position id is unknown to the ledger."""

    def __init__(self, position_id: str):
        super().__init__(f"Position not found: {position_id}")
        self.position_id = position_id


class PositionAlreadyClosedError(LedgerError):
    """Raised when closing (or exiting) a position that is no longer active."""

    def __init__(self, position_id: str, message: str | None = None):
        super().__init__(message or f"Position already closed: {position_id}")
        self.position_id = position_id


class ExitInProgressError(PositionAlreadyClosedError):
    """Another caller holds the exit claim for this position."""

    def __init__(self, position_id: str):
        super().__init__(position_id, f"Exit already in progress: {position_id}")
