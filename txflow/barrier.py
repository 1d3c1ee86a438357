"""Wait for an account's outstanding operations to settle."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import BarrierConfig
from .contracts import BarrierResult
from .errors import LedgerError
from .ledger import BaseLedger

logger = logging.getLogger(__name__)


class PendingBarrier:
    """Poll until an account has no unconfirmed operations.

    This narrows, but cannot close, the window in which a new submission
    races an outstanding one for the same nonce. A timeout is reported on
    the result and the caller proceeds at its own risk. Cancel the awaiting
    task to stop waiting early.
    """

    def __init__(
        self,
        ledger: BaseLedger,
        config: Optional[BarrierConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._config = config or BarrierConfig()
        self._sleep = sleep

    async def await_quiescence(
        self,
        account: str,
        poll_interval_ms: Optional[float] = None,
        max_wait_ms: Optional[float] = None,
    ) -> BarrierResult:
        interval = self._config.poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        if interval <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {interval}")
        max_wait = self._config.max_wait_ms if max_wait_ms is None else max_wait_ms

        ticks = 0
        waited = 0.0
        outstanding: Optional[int] = None
        confirmed: Optional[int] = None

        while True:
            ticks += 1
            try:
                outstanding = await self._ledger.outstanding_count(account)
                confirmed = await self._ledger.confirmed_count(account)
            except LedgerError as e:
                logger.warning(f"Could not read operation counts for {account}: {e}")
            else:
                logger.debug(
                    f"{account}: outstanding={outstanding} confirmed={confirmed} (tick {ticks})"
                )
                if outstanding == confirmed:
                    return BarrierResult(
                        account=account,
                        quiesced=True,
                        ticks=ticks,
                        waited_ms=waited,
                        outstanding=outstanding,
                        confirmed=confirmed,
                    )

            if waited + interval > max_wait:
                break
            await self._sleep(interval / 1000)
            waited += interval

        logger.warning(
            f"Timed out after {waited:.0f}ms waiting for {account} to settle "
            f"(outstanding={outstanding}, confirmed={confirmed})"
        )
        return BarrierResult(
            account=account,
            quiesced=False,
            timed_out=True,
            ticks=ticks,
            waited_ms=waited,
            outstanding=outstanding,
            confirmed=confirmed,
        )
