"""Transaction submission for txflow."""

from __future__ import annotations

import logging
from typing import Optional

from .config import LedgerConfig
from .contracts import TxCall
from .errors import LedgerError, SubmissionRejected
from .ledger import BaseLedger

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """Submit one mutating call and return its handle before confirmation."""

    def __init__(self, ledger: BaseLedger, config: Optional[LedgerConfig] = None) -> None:
        self._ledger = ledger
        self._config = config or LedgerConfig()

    async def submit(self, call: TxCall, label: Optional[str] = None) -> str:
        """Submit ``call`` with a freshly read nonce unless one is pinned.

        The nonce is looked up on every invocation so that a retried
        submission never reuses a stale ordering counter.
        """
        label = label or call.label
        try:
            if call.nonce is None:
                nonce = await self._ledger.outstanding_count(call.sender)
                call = call.model_copy(update={"nonce": nonce})
            if call.gas_limit is None:
                call = call.model_copy(update={"gas_limit": self._config.gas_limit})

            handle = await self._ledger.submit(call)
        except LedgerError as e:
            logger.warning(f"{label} from {call.sender} failed ({e.kind.value}): {e}")
            raise
        except Exception as e:
            logger.error(f"{label} from {call.sender} failed: {e}")
            raise SubmissionRejected(f"{label} failed: {e}") from e

        logger.info(f"{label} submitted with nonce {call.nonce}, handle {handle}")

        if self._config.automine_blocks > 0:
            await self._ledger.mine(self._config.automine_blocks)
        return handle
