"""Core data contracts for txflow workflows."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED})

ALLOWED_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.IN_PROGRESS},
    StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}


class StepTemplate(BaseModel):
    """Declaration of a step before a run starts."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str


class WorkflowStep(BaseModel):
    """One declared unit of work and its progress within a run."""

    id: int
    title: str
    status: StepStatus = StepStatus.PENDING
    tx_handle: Optional[str] = None
    confirmations: Optional[int] = None
    required_confirmations: Optional[int] = None
    estimated_time_left: Optional[float] = None
    error: Optional[str] = None
    complete_info: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkflowState(BaseModel):
    """Ordered steps of a run plus the forward-only cursor."""

    steps: List[WorkflowStep] = Field(default_factory=list)
    current_step: int = 0
    show_details: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def get_step(self, step_id: int) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def position_of(self, step_id: int) -> Optional[int]:
        """Return the 1-based position of ``step_id`` or ``None``."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index + 1
        return None

    def is_finished(self) -> bool:
        """Return ``True`` once every step is terminal."""
        return all(step.is_terminal for step in self.steps)


class AggregatedResult(BaseModel):
    """Running log of a workflow run exposed to observers."""

    success: bool = True
    messages: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)

    def add_message(self, message: str) -> None:
        self.messages.append(message)

    def add_error(self, error: str) -> None:
        """Record a fatal error; ``success`` never returns to ``True``."""
        self.errors.append(error)
        self.success = False


class RetryPolicy(BaseModel):
    """Bounded exponential backoff settings, in milliseconds."""

    max_retries: int = Field(default=5, ge=1)
    initial_delay_ms: float = Field(default=2000, ge=0)
    backoff_factor: float = Field(default=1.5, ge=1)
    max_delay_ms: float = Field(default=10000, ge=0)


class RetryContext(BaseModel):
    """Ephemeral bookkeeping for one retried call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    attempt: int = 0
    current_delay_ms: float
    max_retries: int
    last_error: Optional[BaseException] = None
    delays_ms: List[float] = Field(default_factory=list)

    @property
    def attempts_remaining(self) -> bool:
        return self.attempt < self.max_retries - 1


class TxCall(BaseModel):
    """A mutating call to submit to the ledger.

    ``method`` and ``args`` describe the call for logging and for the
    in-memory ledger; ``data`` carries pre-encoded calldata for a JSON-RPC
    node. ``nonce`` left as ``None`` is filled in fresh on every attempt.
    """

    sender: str
    to: Optional[str] = None
    method: str = ""
    args: List[Any] = Field(default_factory=list)
    data: str = "0x"
    value: int = 0
    nonce: Optional[int] = None
    gas_limit: Optional[int] = None

    @property
    def label(self) -> str:
        return self.method or f"call to {self.to}"


class TxLookup(BaseModel):
    """Inclusion status of a submitted handle."""

    handle: str
    included: bool = False
    inclusion_height: Optional[int] = None


class TrackingStatus(str, Enum):
    RUNNING = "running"
    CONFIRMED = "confirmed"
    INCONCLUSIVE = "inconclusive"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class TrackingResult(BaseModel):
    """Final state of a confirmation tracker."""

    handle: str
    status: TrackingStatus
    confirmations: int = 0
    required_confirmations: int
    ticks: int = 0
    reason: Optional[str] = None


class BarrierResult(BaseModel):
    """Outcome of waiting for an account's pending operations to settle."""

    account: str
    quiesced: bool
    timed_out: bool = False
    ticks: int = 0
    waited_ms: float = 0
    outstanding: Optional[int] = None
    confirmed: Optional[int] = None


class GuardOutcome(str, Enum):
    ALREADY_MET = "already_met"
    ACHIEVED = "achieved"
