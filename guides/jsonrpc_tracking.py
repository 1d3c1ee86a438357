"""Track a transaction on a local development node.

Start a node first, e.g. ``anvil`` or ``npx hardhat node``, then run
this script. Unlocked node accounts sign the transaction.
"""

import asyncio

from txflow import ConfirmationTracker, TransactionSubmitter, TxCall
from txflow.config import LedgerConfig, TrackerConfig
from txflow.ledger.jsonrpc import JsonRpcLedger

SENDER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"


async def main():
    async with JsonRpcLedger("http://127.0.0.1:8545") as ledger:
        submitter = TransactionSubmitter(ledger, LedgerConfig(automine_blocks=1))
        handle = await submitter.submit(TxCall(sender=SENDER, to=SENDER, value=1))
        print(f"📋 Submitted {handle}")

        tracker = ConfirmationTracker(ledger, TrackerConfig(poll_interval_ms=500))

        def on_update(confirmations, eta):
            print(f"🔗 {confirmations} confirmations, ~{eta or 0:.0f}s left")

        token = tracker.track(handle, 3, on_update)
        # Produce blocks so the confirmations arrive
        for _ in range(3):
            await asyncio.sleep(0.5)
            await ledger.mine(1)
        result = await token.wait()
        print(f"✅ Tracking finished: {result.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
