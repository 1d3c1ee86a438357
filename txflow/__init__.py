"""txflow: multi-step transaction workflow orchestration."""

from .barrier import PendingBarrier
from .contracts import (
    AggregatedResult,
    StepStatus,
    StepTemplate,
    TxCall,
    WorkflowState,
    WorkflowStep,
)
from .errors import (
    ConflictError,
    PreconditionFailed,
    RetriesExhausted,
    SubmissionRejected,
    TrackingInconclusive,
    WorkflowResetError,
)
from .guard import PreconditionGuard, ensure
from .ledger import BaseLedger, InMemoryLedger, get_ledger
from .retry import RetryController, classify_error, retry
from .runner import StepContext, WorkflowRunner
from .state import WorkflowController
from .submit import TransactionSubmitter
from .tracker import ConfirmationTracker, TrackingToken

__version__ = "0.1.0"
__all__ = [
    "AggregatedResult",
    "BaseLedger",
    "ConfirmationTracker",
    "ConflictError",
    "InMemoryLedger",
    "PendingBarrier",
    "PreconditionFailed",
    "PreconditionGuard",
    "RetriesExhausted",
    "RetryController",
    "StepContext",
    "StepStatus",
    "StepTemplate",
    "SubmissionRejected",
    "TrackingInconclusive",
    "TrackingToken",
    "TransactionSubmitter",
    "TxCall",
    "WorkflowController",
    "WorkflowResetError",
    "WorkflowRunner",
    "WorkflowState",
    "WorkflowStep",
    "classify_error",
    "ensure",
    "get_ledger",
    "retry",
]
