"""Simple example showing a two-step transaction workflow."""

import asyncio

from txflow import InMemoryLedger, TxCall, WorkflowRunner
from txflow.config import TxflowConfig
from txflow.demo import block_clock

ACCOUNT = "0x00000000000000000000000000000000000000a1"


async def main():
    """Basic workflow example."""
    ledger = InMemoryLedger()
    config = TxflowConfig(tracker={"required_confirmations": 3})

    # Every wait produces a block so the example finishes instantly
    runner = WorkflowRunner(ledger, config, sleep=block_clock(ledger))

    @runner.step("Approve spender")
    async def approve(ctx):
        handle = await ctx.send(TxCall(sender=ACCOUNT, method="approve"))
        return f"approved in {handle[:10]}"

    @runner.step("Transfer tokens")
    async def transfer(ctx):
        await ctx.send(TxCall(sender=ACCOUNT, method="transfer", args=[ACCOUNT, 100]))

    result = await runner.run()

    for message in result.messages:
        print(message)
    print(f"✅ Success: {result.success}")


if __name__ == "__main__":
    asyncio.run(main())
