"""Workflow runner composing submission, retry, tracking and guards."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .barrier import PendingBarrier
from .config import TxflowConfig, load_config
from .contracts import (
    AggregatedResult,
    BarrierResult,
    GuardOutcome,
    StepStatus,
    StepTemplate,
    TrackingResult,
    TrackingStatus,
    TxCall,
)
from .errors import TrackingInconclusive, WorkflowResetError
from .guard import GoalCheck, PreconditionGuard
from .ledger import BaseLedger
from .retry import RetryController
from .state import WorkflowController
from .submit import TransactionSubmitter
from .tracker import ConfirmationTracker, TrackingToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepAction = Callable[["StepContext"], Awaitable[Optional[str]]]
ResultObserver = Callable[[AggregatedResult], None]


@dataclass
class StepDefinition:
    id: int
    title: str
    action: StepAction


@dataclass
class RunScope:
    """One call to :meth:`WorkflowRunner.run`: its generation and its own result."""

    generation: int
    result: AggregatedResult


class StepContext:
    """Toolkit handed to a step action while its step is in progress.

    A context belongs to one run. Once that run is reset, its messages
    stay on the run's own result, step updates are dropped, and anything
    that would touch the ledger raises :class:`WorkflowResetError`.
    """

    def __init__(self, runner: "WorkflowRunner", step_id: int, scope: RunScope) -> None:
        self._runner = runner
        self._scope = scope
        self.step_id = step_id

    @property
    def payload(self) -> dict[str, Any]:
        return self._scope.result.payload

    @property
    def is_stale(self) -> bool:
        return not self._runner._is_current(self._scope)

    def _require_current(self) -> None:
        if self.is_stale:
            raise WorkflowResetError("Workflow was reset before completion")

    def log(self, message: str) -> None:
        self._runner._add_message(self._scope, message)

    def set_payload(self, key: str, value: Any) -> None:
        self._scope.result.payload[key] = value
        self._runner._emit(self._scope)

    async def retry(self, action: Callable[[], Awaitable[T]]) -> T:
        self._require_current()

        async def guarded() -> T:
            self._require_current()
            return await action()

        return await self._runner.retry_controller.run(guarded)

    async def await_quiescence(
        self,
        account: str,
        poll_interval_ms: Optional[float] = None,
        max_wait_ms: Optional[float] = None,
    ) -> BarrierResult:
        self._require_current()
        result = await self._runner.barrier.await_quiescence(
            account, poll_interval_ms, max_wait_ms
        )
        if result.timed_out:
            self.log(
                f"Timed out after {result.waited_ms:.0f}ms waiting for pending "
                f"operations of {account}; continuing"
            )
        return result

    async def submit(self, call: TxCall, label: Optional[str] = None) -> str:
        """Submit ``call`` behind the pending barrier with conflict retries."""
        label = label or call.label
        if self._runner.config.runner.use_barrier:
            await self.await_quiescence(call.sender)

        handle = await self.retry(lambda: self._runner.submitter.submit(call, label))
        self._update_step(tx_handle=handle)
        self.log(f"{label} transaction hash: {handle}")
        return handle

    def track(self, handle: str, confirmations: Optional[int] = None) -> TrackingToken:
        """Start tracking ``handle`` and mirror its progress on this step."""
        self._require_current()
        required = (
            self._runner.config.tracker.required_confirmations
            if confirmations is None
            else confirmations
        )
        self._update_step(
            tx_handle=handle,
            confirmations=0,
            required_confirmations=required,
        )
        token = self._runner.tracker.track(handle, required, self._on_confirmation)
        self._runner.controller.attach_tracker(self.step_id, token)
        return token

    def _update_step(self, **fields: Any) -> None:
        if self.is_stale:
            logger.debug(f"Dropping update of step {self.step_id} from a reset run")
            return
        self._runner.controller.update(self.step_id, **fields)

    def _on_confirmation(self, confirmations: int, estimated_time_left: Optional[float]) -> None:
        if self.is_stale:
            return
        state = self._runner.controller.state
        step = state.get_step(self.step_id) if state else None
        if step is None or step.is_terminal:
            return
        self._update_step(
            confirmations=confirmations,
            estimated_time_left=estimated_time_left,
        )

    async def confirm(
        self, handle: str, confirmations: Optional[int] = None
    ) -> TrackingResult:
        """Track ``handle`` until it is final enough, failing if it vanishes."""
        token = self.track(handle, confirmations)
        try:
            result = await token.wait()
        finally:
            token.cancel()

        if result.status == TrackingStatus.INCONCLUSIVE:
            raise TrackingInconclusive(handle, result.reason or "transaction not found")
        if result.status == TrackingStatus.CANCELLED:
            raise TrackingInconclusive(handle, "tracking cancelled")
        if result.status == TrackingStatus.TIMED_OUT:
            self.log(
                f"Stopped waiting for {handle} at "
                f"{result.confirmations}/{result.required_confirmations} confirmations"
            )
        return result

    async def send(
        self,
        call: TxCall,
        confirmations: Optional[int] = None,
        label: Optional[str] = None,
    ) -> str:
        """Submit ``call`` and wait for the required confirmation depth."""
        label = label or call.label
        handle = await self.submit(call, label)
        await self.confirm(handle, confirmations)
        self.log(f"✓ {label} confirmed")
        return handle

    async def ensure(
        self,
        check_goal: GoalCheck,
        act: Callable[[], Awaitable[Any]],
        verify_after: Optional[GoalCheck] = None,
        goal: str = "goal state",
    ) -> GuardOutcome:
        self._require_current()
        outcome = await self._runner.guard.ensure(check_goal, act, verify_after, goal)
        if outcome == GuardOutcome.ALREADY_MET:
            self.log(f"{goal}: already satisfied, skipping")
        else:
            self.log(f"✓ {goal}")
        return outcome


class WorkflowRunner:
    """Run declared steps in order against a ledger.

    Example:
        runner = WorkflowRunner(ledger)
        runner.add_step("Bind module", bind_module)
        result = await runner.run()
    """

    def __init__(
        self,
        ledger: BaseLedger,
        config: Optional[TxflowConfig] = None,
        controller: Optional[WorkflowController] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.config = config or load_config()
        self.ledger = ledger
        self.controller = controller or WorkflowController()
        self._sleep = sleep or asyncio.sleep

        self.submitter = TransactionSubmitter(ledger, self.config.ledger)
        self.retry_controller = RetryController(self.config.retry, sleep=sleep)
        self.barrier = PendingBarrier(ledger, self.config.barrier, self._sleep)
        self.tracker = ConfirmationTracker(ledger, self.config.tracker, self._sleep)
        self.guard = PreconditionGuard()

        self._steps: List[StepDefinition] = []
        self._result_observers: List[ResultObserver] = []
        self._result = AggregatedResult()
        self._generation = 0

    # ------------------------------------------------------------------
    @property
    def steps(self) -> List[StepTemplate]:
        return [StepTemplate(id=step.id, title=step.title) for step in self._steps]

    @property
    def result(self) -> AggregatedResult:
        """Snapshot of the aggregated result of the latest run."""
        return self._result.model_copy(deep=True)

    def add_step(
        self, title: str, action: StepAction, step_id: Optional[int] = None
    ) -> StepTemplate:
        """Declare a step; ids default to 1, 2, ... in declaration order."""
        if step_id is None:
            step_id = max((step.id for step in self._steps), default=0) + 1
        if any(step.id == step_id for step in self._steps):
            raise ValueError(f"Duplicate step id {step_id}")
        self._steps.append(StepDefinition(id=step_id, title=title, action=action))
        return StepTemplate(id=step_id, title=title)

    def step(self, title: str, step_id: Optional[int] = None) -> Callable[[StepAction], StepAction]:
        """Decorator form of :meth:`add_step`."""

        def decorator(action: StepAction) -> StepAction:
            self.add_step(title, action, step_id)
            return action

        return decorator

    def on_result(self, observer: ResultObserver) -> None:
        """Call ``observer`` with a result snapshot after every change."""
        self._result_observers.append(observer)

    def _is_current(self, scope: RunScope) -> bool:
        return scope.generation == self._generation and self.controller.is_active

    def _emit(self, scope: RunScope) -> None:
        # observers follow the current run only
        if scope.generation != self._generation:
            return
        snapshot = scope.result.model_copy(deep=True)
        for observer in list(self._result_observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Workflow result observer failed")

    def _add_message(self, scope: RunScope, message: str) -> None:
        scope.result.add_message(message)
        self._emit(scope)

    def _add_error(self, scope: RunScope, error: str) -> None:
        scope.result.add_error(error)
        self._emit(scope)

    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Discard the current run; an in-flight :meth:`run` stops at its next step."""
        self._generation += 1
        self.controller.reset()

    async def run(self, payload: Optional[dict[str, Any]] = None) -> AggregatedResult:
        """Execute every step in order and return the aggregated result.

        The first failing step halts the run; later steps stay pending.
        A run that is reset while in flight keeps writing to its own result
        only, so the next run starts clean.
        """
        if not self._steps:
            raise ValueError("No steps declared")

        self.controller.initialize(self.steps)
        self._generation += 1
        scope = RunScope(
            generation=self._generation,
            result=AggregatedResult(payload=dict(payload or {})),
        )
        self._result = scope.result
        self._emit(scope)

        try:
            for index, step in enumerate(self._steps):
                if index and self.config.runner.step_delay_ms:
                    await self._sleep(self.config.runner.step_delay_ms / 1000)
                if not self._is_current(scope):
                    self._add_error(scope, "Workflow was reset before completion")
                    break

                self.controller.advance(step.id)
                self.controller.update(step.id, status=StepStatus.IN_PROGRESS)
                self._add_message(scope, f"=== Step {index + 1}: {step.title} ===")

                try:
                    info = await step.action(StepContext(self, step.id, scope))
                except Exception as e:
                    if not self._is_current(scope):
                        self._add_error(scope, "Workflow was reset before completion")
                        break
                    message = str(e) or type(e).__name__
                    logger.error(f"Step {step.id} '{step.title}' failed: {message}")
                    self.controller.update(step.id, status=StepStatus.FAILED, error=message)
                    self._add_error(scope, f"{step.title}: {message}")
                    break

                if not self._is_current(scope):
                    self._add_error(scope, "Workflow was reset before completion")
                    break
                self.controller.update(
                    step.id,
                    status=StepStatus.COMPLETED,
                    complete_info=info if isinstance(info, str) else None,
                )
        finally:
            if scope.generation == self._generation:
                self.controller.cancel_trackers()

        if scope.result.success:
            self._add_message(scope, "=== All steps completed ===")
        return scope.result.model_copy(deep=True)
