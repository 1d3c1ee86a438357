"""JSON-RPC ledger backend for Ethereum-style nodes."""

from __future__ import annotations

import itertools
import logging
from typing import Any, List, Optional

import httpx

from ..contracts import TxCall, TxLookup
from ..errors import ConflictError, LedgerUnavailable, SubmissionRejected
from .base import BaseLedger

logger = logging.getLogger(__name__)

# Node error messages that indicate a stale or duplicate nonce.
CONFLICT_MARKERS = (
    "nonce too low",
    "nonce too high",
    "already known",
    "replacement transaction underpriced",
    "nonce has already been used",
    "invalid nonce",
)


def _to_hex(value: int) -> str:
    return hex(value)


def _quantity(method: str, value: Any) -> int:
    """Parse a hex quantity from a node answer, rejecting null or malformed ones."""
    if not isinstance(value, str):
        raise LedgerUnavailable(f"{method} returned {value!r}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise LedgerUnavailable(f"{method} returned malformed quantity {value!r}") from e


class JsonRpcLedger(BaseLedger):
    """Talk to a node over HTTP JSON-RPC using node-managed accounts."""

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8545",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        if self._client is None:
            await self.connect()

        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client.post(self.rpc_url, json=request)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"{method} returned invalid JSON: {e}") from e

        error = body.get("error")
        if error:
            message = str(error.get("message", error))
            lowered = message.lower()
            if any(marker in lowered for marker in CONFLICT_MARKERS):
                raise ConflictError(message)
            raise SubmissionRejected(message)
        return body.get("result")

    async def submit(self, call: TxCall) -> str:
        tx: dict[str, Any] = {
            "from": call.sender,
            "data": call.data,
            "value": _to_hex(call.value),
        }
        if call.to is not None:
            tx["to"] = call.to
        if call.nonce is not None:
            tx["nonce"] = _to_hex(call.nonce)
        if call.gas_limit is not None:
            tx["gas"] = _to_hex(call.gas_limit)

        handle = await self._call("eth_sendTransaction", [tx])
        if not isinstance(handle, str):
            raise LedgerUnavailable(f"eth_sendTransaction returned {handle!r}")
        return handle

    async def lookup(self, handle: str) -> Optional[TxLookup]:
        tx = await self._call("eth_getTransactionByHash", [handle])
        if tx is None:
            return None
        raw_block = tx.get("blockNumber")
        block_number = (
            None if raw_block is None else _quantity("eth_getTransactionByHash", raw_block)
        )
        return TxLookup(
            handle=handle,
            included=block_number is not None,
            inclusion_height=block_number,
        )

    async def current_height(self) -> int:
        return _quantity("eth_blockNumber", await self._call("eth_blockNumber", []))

    async def outstanding_count(self, account: str) -> int:
        result = await self._call("eth_getTransactionCount", [account, "pending"])
        return _quantity("eth_getTransactionCount", result)

    async def confirmed_count(self, account: str) -> int:
        result = await self._call("eth_getTransactionCount", [account, "latest"])
        return _quantity("eth_getTransactionCount", result)

    async def mine(self, blocks: int = 1) -> None:
        for _ in range(blocks):
            await self._call("evm_mine", [])
        logger.debug(f"Requested {blocks} block(s) from {self.rpc_url}")
