"""Confirmation tracking for submitted ledger operations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from .config import TrackerConfig
from .contracts import TrackingResult, TrackingStatus
from .errors import LedgerError
from .ledger import BaseLedger

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[int, Optional[float]], None]


class TrackingToken:
    """Handle on one running tracker; cancel it to stop polling."""

    def __init__(self, handle: str, required_confirmations: int) -> None:
        self.handle = handle
        self.required_confirmations = required_confirmations
        self.confirmations = 0
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[TrackingResult] = None

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def done(self) -> bool:
        return self._task is None or self._task.done()

    @property
    def result(self) -> Optional[TrackingResult]:
        return self._result

    async def wait(self) -> TrackingResult:
        """Wait for the tracker to stop and return how it ended."""
        if self._task is None:
            return self._finish(TrackingStatus.CANCELLED, 0)
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return self._result or self._finish(TrackingStatus.CANCELLED, 0)

    def _finish(
        self, status: TrackingStatus, ticks: int, reason: Optional[str] = None
    ) -> TrackingResult:
        self._result = TrackingResult(
            handle=self.handle,
            status=status,
            confirmations=self.confirmations,
            required_confirmations=self.required_confirmations,
            ticks=ticks,
            reason=reason,
        )
        return self._result


class ConfirmationTracker:
    """Poll the ledger for a handle's confirmation depth.

    Each call to :meth:`track` starts an independent asyncio task with its
    own state, so several handles can be tracked at once. The first poll
    happens immediately, later ones every ``poll_interval_ms``.
    """

    def __init__(
        self,
        ledger: BaseLedger,
        config: Optional[TrackerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._config = config or TrackerConfig()
        self._sleep = sleep

    def track(
        self,
        handle: str,
        required_confirmations: Optional[int] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> TrackingToken:
        """Start tracking ``handle``. Must be called from a running event loop."""
        required = (
            self._config.required_confirmations
            if required_confirmations is None
            else required_confirmations
        )
        if required < 0:
            raise ValueError(f"required_confirmations must not be negative, got {required}")
        token = TrackingToken(handle, required)
        token._task = asyncio.create_task(self._poll(token, on_update))
        return token

    @asynccontextmanager
    async def tracking(
        self,
        handle: str,
        required_confirmations: Optional[int] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> AsyncIterator[TrackingToken]:
        """Track ``handle`` for the duration of the block, cancelling on exit."""
        token = self.track(handle, required_confirmations, on_update)
        try:
            yield token
        finally:
            token.cancel()

    def estimate_time_left(self, confirmations: int, required: int) -> Optional[float]:
        remaining = max(0, required - confirmations)
        estimate = remaining * self._config.seconds_per_block
        return estimate if estimate > 0 else None

    async def _poll(
        self, token: TrackingToken, on_update: Optional[UpdateCallback]
    ) -> TrackingResult:
        handle = token.handle
        required = token.required_confirmations
        ticks = 0

        try:
            while ticks < self._config.max_ticks:
                ticks += 1
                try:
                    lookup = await self._ledger.lookup(handle)
                    if lookup is None:
                        logger.warning(f"{handle} no longer known to the ledger")
                        return token._finish(
                            TrackingStatus.INCONCLUSIVE, ticks, "transaction not found"
                        )
                    if lookup.included and lookup.inclusion_height is not None:
                        height = await self._ledger.current_height()
                        confirmations = height - lookup.inclusion_height + 1
                    else:
                        confirmations = 0
                except LedgerError as e:
                    logger.error(f"Checking confirmations of {handle} failed: {e}")
                    return token._finish(TrackingStatus.INCONCLUSIVE, ticks, str(e))

                token.confirmations = confirmations
                estimate = self.estimate_time_left(confirmations, required)
                logger.debug(f"{handle}: {confirmations}/{required} confirmations")
                if on_update is not None:
                    try:
                        on_update(confirmations, estimate)
                    except Exception:
                        logger.exception(f"Confirmation callback for {handle} failed")

                if confirmations >= required:
                    logger.info(f"{handle} reached {confirmations} confirmations")
                    return token._finish(TrackingStatus.CONFIRMED, ticks)

                await self._sleep(self._config.poll_interval_ms / 1000)
        except asyncio.CancelledError:
            token._finish(TrackingStatus.CANCELLED, ticks)
            raise

        logger.warning(
            f"Stopped tracking {handle} after {ticks} polls at "
            f"{token.confirmations}/{required} confirmations"
        )
        return token._finish(TrackingStatus.TIMED_OUT, ticks)
