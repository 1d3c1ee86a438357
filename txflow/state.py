"""Step-level state machine for a workflow run."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .contracts import (
    ALLOWED_TRANSITIONS,
    StepStatus,
    StepTemplate,
    WorkflowState,
    WorkflowStep,
)
from .errors import IllegalTransitionError, UnknownStepError, WorkflowActiveError
from .tracker import TrackingToken

logger = logging.getLogger(__name__)

StateObserver = Callable[[Optional[WorkflowState]], None]

UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "tx_handle",
        "confirmations",
        "required_confirmations",
        "estimated_time_left",
        "error",
        "complete_info",
    }
)


class WorkflowController:
    """Own the :class:`WorkflowState` of one run and every mutation of it.

    Readers get deep copies through :attr:`state` or a subscription, so
    nothing outside the controller can change a step behind its back.
    """

    def __init__(self) -> None:
        self._state: Optional[WorkflowState] = None
        self._observers: List[StateObserver] = []
        self._trackers: Dict[int, List[TrackingToken]] = {}

    # ------------------------------------------------------------------
    @property
    def state(self) -> Optional[WorkflowState]:
        """Snapshot of the current run, or ``None`` when no run exists."""
        return self._state.model_copy(deep=True) if self._state else None

    @property
    def is_active(self) -> bool:
        return self._state is not None

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Call ``observer`` with a snapshot after every mutation."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.state
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Workflow state observer failed")

    # ------------------------------------------------------------------
    def initialize(
        self, templates: Iterable[Union[StepTemplate, Dict[str, Any]]]
    ) -> WorkflowState:
        """Create every step as pending with the cursor at 0."""
        if self._state is not None:
            raise WorkflowActiveError(
                "A workflow run is already active; reset() it first"
            )

        steps: List[WorkflowStep] = []
        seen: set[int] = set()
        for template in templates:
            if not isinstance(template, StepTemplate):
                template = StepTemplate.model_validate(template)
            if template.id in seen:
                raise ValueError(f"Duplicate step id {template.id}")
            seen.add(template.id)
            steps.append(WorkflowStep(id=template.id, title=template.title))

        self._state = WorkflowState(steps=steps)
        logger.debug(f"Initialized workflow with {len(steps)} steps")
        self._notify()
        return self.state

    def _require_state(self) -> WorkflowState:
        if self._state is None:
            raise WorkflowActiveError("No workflow run is active")
        return self._state

    def _require_index(self, step_id: int) -> int:
        state = self._require_state()
        position = state.position_of(step_id)
        if position is None:
            raise UnknownStepError(f"No step with id {step_id}")
        return position - 1

    def advance(self, step_id: int) -> None:
        """Move the cursor to the position of ``step_id``."""
        state = self._require_state()
        position = self._require_index(step_id) + 1
        if position < state.current_step:
            logger.warning(
                f"Cursor moved back from {state.current_step} to {position}"
            )
        state.current_step = position
        self._notify()

    def update(self, step_id: int, **fields: Any) -> WorkflowStep:
        """Merge ``fields`` into a step, enforcing forward-only status changes.

        Raises:
            IllegalTransitionError: The step is terminal, the status would
                move backwards, or ``error`` is set on a non-failed step.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update step fields: {sorted(unknown)}")

        state = self._require_state()
        index = self._require_index(step_id)
        step = state.steps[index]

        if step.is_terminal:
            raise IllegalTransitionError(
                f"Step {step_id} is already {step.status.value}"
            )

        target = StepStatus(fields["status"]) if fields.get("status") else step.status
        if target != step.status and target not in ALLOWED_TRANSITIONS[step.status]:
            raise IllegalTransitionError(
                f"Illegal transition for step {step_id}: "
                f"{step.status.value} -> {target.value}"
            )
        if fields.get("error") is not None and target != StepStatus.FAILED:
            raise IllegalTransitionError(
                f"Step {step_id} can only carry an error when it fails"
            )
        if target == StepStatus.FAILED and not fields.get("error"):
            fields["error"] = "Step failed"

        updated = WorkflowStep.model_validate({**step.model_dump(), **fields})
        state.steps[index] = updated
        if updated.status != step.status:
            logger.info(
                f"Step {step_id} '{updated.title}': "
                f"{step.status.value} -> {updated.status.value}"
            )
        self._notify()
        return updated.model_copy()

    def toggle_details(self) -> bool:
        state = self._require_state()
        state.show_details = not state.show_details
        self._notify()
        return state.show_details

    # ------------------------------------------------------------------
    def attach_tracker(self, step_id: int, token: TrackingToken) -> None:
        """Register a tracker so :meth:`reset` can cancel it."""
        self._require_index(step_id)
        self._trackers.setdefault(step_id, []).append(token)

    def cancel_trackers(self) -> int:
        """Cancel every registered tracker and return how many were running."""
        running = 0
        for tokens in self._trackers.values():
            for token in tokens:
                if not token.done():
                    running += 1
                token.cancel()
        self._trackers.clear()
        if running:
            logger.debug(f"Cancelled {running} running tracker(s)")
        return running

    def reset(self) -> None:
        """Discard the current run, cancelling its trackers."""
        self.cancel_trackers()
        self._state = None
        self._notify()
