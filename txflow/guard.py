"""Idempotent precondition handling."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from .contracts import GuardOutcome
from .errors import PreconditionFailed

logger = logging.getLogger(__name__)

GoalCheck = Callable[[], Awaitable[bool]]


class PreconditionGuard:
    """Check a goal state and act only when it does not hold yet."""

    async def ensure(
        self,
        check_goal: GoalCheck,
        act: Callable[[], Awaitable[Any]],
        verify_after: Optional[GoalCheck] = None,
        goal: str = "goal state",
    ) -> GuardOutcome:
        """Run ``act`` unless ``check_goal`` already holds, then verify.

        Args:
            check_goal: Returns ``True`` when nothing needs to be done.
            act: Mutating action that should make the goal hold.
            verify_after: Re-check after acting; defaults to ``check_goal``.
            goal: Description used in logs and in :class:`PreconditionFailed`.

        Raises:
            PreconditionFailed: The goal still does not hold after ``act``.
        """
        if await check_goal():
            logger.info(f"{goal}: already satisfied, skipping")
            return GuardOutcome.ALREADY_MET

        logger.info(f"{goal}: not satisfied, acting")
        await act()

        verify = verify_after or check_goal
        if not await verify():
            logger.error(f"{goal}: still not satisfied after acting")
            raise PreconditionFailed(goal)

        logger.info(f"{goal}: achieved")
        return GuardOutcome.ACHIEVED


_default_guard = PreconditionGuard()


async def ensure(
    check_goal: GoalCheck,
    act: Callable[[], Awaitable[Any]],
    verify_after: Optional[GoalCheck] = None,
    goal: str = "goal state",
) -> GuardOutcome:
    """Module-level shortcut for :meth:`PreconditionGuard.ensure`."""
    return await _default_guard.ensure(check_goal, act, verify_after, goal)
