"""In-memory ledger for tests and demos."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..contracts import TxCall, TxLookup
from ..errors import ConflictError
from .base import BaseLedger

logger = logging.getLogger(__name__)

Effect = Callable[[], None]
MethodHandler = Callable[[TxCall], Optional[Effect]]


@dataclass
class _PendingTx:
    handle: str
    call: TxCall
    nonce: int
    effect: Optional[Effect] = None


class InMemoryLedger(BaseLedger):
    """Deterministic simulated chain.

    Transactions wait in a pending pool until :meth:`mine` produces a block,
    at which point every pending transaction is included and its effect is
    applied. Method handlers registered with :meth:`on` run at submit time;
    they may raise :class:`SubmissionRejected` to emulate a revert and may
    return an effect to apply on inclusion.
    """

    def __init__(self, auto_mine: bool = False) -> None:
        self.auto_mine = auto_mine
        self.submitted: List[TxCall] = []
        self._height = 0
        self._sequence = 0
        self._pending: Dict[str, _PendingTx] = {}
        self._included: Dict[str, int] = {}
        self._confirmed: Dict[str, int] = defaultdict(int)
        self._handlers: Dict[str, MethodHandler] = {}
        self._injected_conflicts: Dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    def on(self, method: str, handler: MethodHandler) -> None:
        """Register ``handler`` for calls naming ``method``."""
        self._handlers[method] = handler

    def inject_conflicts(self, account: str, count: int) -> None:
        """Make the next ``count`` submissions from ``account`` conflict."""
        self._injected_conflicts[account] += count

    def drop(self, handle: str) -> bool:
        """Remove a pending transaction as if it were replaced or evicted."""
        return self._pending.pop(handle, None) is not None

    @property
    def height(self) -> int:
        return self._height

    def _next_nonce(self, account: str) -> int:
        in_pool = sum(1 for tx in self._pending.values() if tx.call.sender == account)
        return self._confirmed[account] + in_pool

    async def submit(self, call: TxCall) -> str:
        async with self._lock:
            account = call.sender
            if self._injected_conflicts[account] > 0:
                self._injected_conflicts[account] -= 1
                raise ConflictError("nonce too low")

            expected = self._next_nonce(account)
            nonce = expected if call.nonce is None else call.nonce
            if nonce < expected:
                raise ConflictError(
                    f"nonce too low: next nonce {expected}, tx nonce {nonce}"
                )
            if nonce > expected:
                raise ConflictError(
                    f"nonce too high: next nonce {expected}, tx nonce {nonce}"
                )

            handler = self._handlers.get(call.method)
            effect = handler(call) if handler is not None else None

            self._sequence += 1
            digest = hashlib.sha256(
                f"{account}:{nonce}:{self._sequence}".encode()
            ).hexdigest()
            handle = f"0x{digest}"
            self._pending[handle] = _PendingTx(handle, call, nonce, effect)
            self.submitted.append(call)
            logger.debug(f"Accepted {call.label} from {account} as {handle}")

            if self.auto_mine:
                self._mine_locked(1)
            return handle

    async def lookup(self, handle: str) -> Optional[TxLookup]:
        if handle in self._included:
            return TxLookup(
                handle=handle, included=True, inclusion_height=self._included[handle]
            )
        if handle in self._pending:
            return TxLookup(handle=handle, included=False)
        return None

    async def current_height(self) -> int:
        return self._height

    async def outstanding_count(self, account: str) -> int:
        return self._next_nonce(account)

    async def confirmed_count(self, account: str) -> int:
        return self._confirmed[account]

    async def mine(self, blocks: int = 1) -> None:
        async with self._lock:
            self._mine_locked(blocks)

    def _mine_locked(self, blocks: int) -> None:
        for _ in range(blocks):
            self._height += 1
            batch = sorted(self._pending.values(), key=lambda tx: tx.nonce)
            self._pending.clear()
            for tx in batch:
                self._included[tx.handle] = self._height
                self._confirmed[tx.call.sender] += 1
                if tx.effect is not None:
                    tx.effect()
            if batch:
                logger.debug(f"Block {self._height} included {len(batch)} transaction(s)")
