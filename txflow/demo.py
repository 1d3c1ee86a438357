"""Module-binding workflow over the in-memory ledger.

Deploys a compliance module, binds it to a compliance registry (skipping
the bind when it is already in place), unbinds it again and verifies the
final state. Used by ``txflow demo`` and the integration tests.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, List, Optional

from .config import TxflowConfig
from .contracts import TxCall
from .errors import PreconditionFailed, SubmissionRejected
from .ledger import InMemoryLedger
from .runner import StepContext, WorkflowRunner

logger = logging.getLogger(__name__)

OWNER = "0x00000000000000000000000000000000000000a1"
OUTSIDER = "0x00000000000000000000000000000000000000b2"
COMPLIANCE_ADDRESS = "0x00000000000000000000000000000000000000c0"

MODULE_BINDING_STEPS = [
    "Deploy module",
    "Bind module",
    "Unbind module",
    "Verify result",
    "Finish",
]


def module_address_for(salt: str) -> str:
    return "0x" + hashlib.sha256(salt.encode()).hexdigest()[:40]


class ComplianceRegistry:
    """Simulated compliance contract living on an :class:`InMemoryLedger`."""

    def __init__(self, owner: str = OWNER) -> None:
        self.owner = owner
        self.deployed: List[str] = []
        self.modules: List[str] = []

    def install(self, ledger: InMemoryLedger) -> None:
        ledger.on("deployModule", self._deploy)
        ledger.on("addModule", self._add_module)
        ledger.on("removeModule", self._remove_module)

    def _only_owner(self, call: TxCall) -> None:
        if call.sender != self.owner:
            raise SubmissionRejected("caller is not owner")

    def _deploy(self, call: TxCall):
        address = module_address_for(str(call.args[0]))
        return lambda: self.deployed.append(address)

    def _add_module(self, call: TxCall):
        self._only_owner(call)
        module = call.args[0]
        if module in self.modules:
            raise SubmissionRejected("module already bound")
        if module not in self.deployed:
            raise SubmissionRejected("module not deployed")
        return lambda: self.modules.append(module)

    def _remove_module(self, call: TxCall):
        self._only_owner(call)
        module = call.args[0]
        if module not in self.modules:
            raise SubmissionRejected("module not bound")
        return lambda: self.modules.remove(module)

    async def is_bound(self, module: str) -> bool:
        return module in self.modules


def block_clock(ledger: InMemoryLedger) -> Callable[[float], Awaitable[None]]:
    """Sleep replacement that produces one block per wait instead of pausing."""

    async def sleep(_seconds: float) -> None:
        await ledger.mine(1)
        await asyncio.sleep(0)

    return sleep


def build_module_binding_workflow(
    ledger: InMemoryLedger,
    registry: ComplianceRegistry,
    config: Optional[TxflowConfig] = None,
    salt: str = "module-1",
    unbind_sender: str = OWNER,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> WorkflowRunner:
    runner = WorkflowRunner(
        ledger,
        config=config or TxflowConfig(),
        sleep=sleep or block_clock(ledger),
    )
    module = module_address_for(salt)

    async def deploy(ctx: StepContext) -> str:
        await ctx.send(TxCall(sender=registry.owner, method="deployModule", args=[salt]))
        ctx.set_payload("module_address", module)
        return f"Module deployed at {module}"

    async def bind(ctx: StepContext) -> str:
        bound = await registry.is_bound(module)
        ctx.log(f"Module bound before: {bound}")
        await ctx.ensure(
            lambda: registry.is_bound(module),
            lambda: ctx.send(
                TxCall(
                    sender=registry.owner,
                    to=COMPLIANCE_ADDRESS,
                    method="addModule",
                    args=[module],
                )
            ),
            goal=f"module {module} bound",
        )
        return f"Module {module} bound"

    async def unbind(ctx: StepContext) -> str:
        await ctx.send(
            TxCall(
                sender=unbind_sender,
                to=COMPLIANCE_ADDRESS,
                method="removeModule",
                args=[module],
            )
        )
        return f"Module {module} unbound"

    async def verify(ctx: StepContext) -> str:
        bound = await registry.is_bound(module)
        ctx.log(f"Module removed: {not bound}")
        ctx.log(f"Current modules: {', '.join(registry.modules) or 'none'}")
        if bound:
            raise PreconditionFailed(f"module {module} unbound")
        return "Module list verified"

    async def finish(ctx: StepContext) -> str:
        return "All operations completed"

    for title, action in zip(MODULE_BINDING_STEPS, (deploy, bind, unbind, verify, finish)):
        runner.add_step(title, action)
    return runner
