"""Base ledger interface for txflow."""

from __future__ import annotations

import abc
from typing import Optional

from ..contracts import TxCall, TxLookup


class BaseLedger(metaclass=abc.ABCMeta):
    """Abstract RPC-style ledger that accepts calls and reports inclusion."""

    async def connect(self) -> None:
        """Open connection to the ledger (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the ledger (no-op by default)."""
        pass

    @abc.abstractmethod
    async def submit(self, call: TxCall) -> str:
        """Submit a mutating call and return its handle before confirmation.

        Raises:
            ConflictError: The call's nonce is stale or already in use.
            SubmissionRejected: The ledger refused the call.
            LedgerUnavailable: The ledger could not be reached.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def lookup(self, handle: str) -> Optional[TxLookup]:
        """Return inclusion status for ``handle`` or ``None`` if unknown."""
        raise NotImplementedError

    @abc.abstractmethod
    async def current_height(self) -> int:
        """Return the height of the latest block."""
        raise NotImplementedError

    @abc.abstractmethod
    async def outstanding_count(self, account: str) -> int:
        """Number of operations issued by ``account``, pending ones included."""
        raise NotImplementedError

    @abc.abstractmethod
    async def confirmed_count(self, account: str) -> int:
        """Number of operations issued by ``account`` that are included."""
        raise NotImplementedError

    async def mine(self, blocks: int = 1) -> None:
        """Force block production on development ledgers (no-op by default)."""
        pass

    async def __aenter__(self) -> "BaseLedger":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()
