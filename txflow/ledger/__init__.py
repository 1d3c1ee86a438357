"""Ledger factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TxflowConfig, load_config
from .base import BaseLedger
from .inmemory import InMemoryLedger


def get_ledger(
    backend: Optional[str] = None, config: Optional[TxflowConfig] = None
) -> BaseLedger:
    """Factory function to get the configured ledger."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("TXFLOW_LEDGER")
        or config.ledger.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryLedger()
    elif backend == "jsonrpc":
        from .jsonrpc import JsonRpcLedger

        return JsonRpcLedger(
            rpc_url=config.ledger.rpc_url,
            timeout=config.ledger.timeout_s,
        )
    else:
        raise ValueError(f"Unsupported ledger backend: {backend}")


__all__ = ["BaseLedger", "InMemoryLedger", "get_ledger"]
