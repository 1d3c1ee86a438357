"""Error taxonomy for txflow workflows."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds reported by a ledger backend."""

    CONFLICT = "conflict"
    REJECTED = "rejected"
    NETWORK = "network"


class TxflowError(Exception):
    """Base class for all txflow errors."""


class LedgerError(TxflowError):
    """A failure reported by the ledger collaborator, tagged with its kind."""

    kind: ErrorKind = ErrorKind.REJECTED

    def __init__(self, detail: str, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if kind is not None:
            self.kind = kind


class ConflictError(LedgerError):
    """The submission used a stale or duplicate ordering counter (nonce)."""

    kind = ErrorKind.CONFLICT


class SubmissionRejected(LedgerError):
    """The ledger refused the call outright, e.g. a business-rule revert."""

    kind = ErrorKind.REJECTED


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached or returned a malformed answer."""

    kind = ErrorKind.NETWORK


class RetriesExhausted(TxflowError):
    """A conflict persisted past the configured number of attempts."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class PreconditionFailed(TxflowError):
    """A guarded goal did not hold even after its action ran."""

    def __init__(self, goal: str) -> None:
        super().__init__(f"Precondition not achieved: {goal}")
        self.goal = goal


class TrackingInconclusive(TxflowError):
    """A tracked handle vanished before reaching the required depth."""

    def __init__(self, handle: str, reason: str = "transaction not found") -> None:
        super().__init__(f"Tracking of {handle} inconclusive: {reason}")
        self.handle = handle
        self.reason = reason


class IllegalTransitionError(TxflowError, ValueError):
    """A step update would move a status backwards or touch a terminal step."""


class WorkflowActiveError(TxflowError, RuntimeError):
    """A run is already active on this controller."""


class WorkflowResetError(TxflowError, RuntimeError):
    """The run a step belongs to was reset; it may no longer touch the ledger."""


class UnknownStepError(TxflowError, KeyError):
    """No step with the given id exists in the current run."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown step"
