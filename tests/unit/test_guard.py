"""Precondition guard tests."""

import pytest

from txflow.contracts import GuardOutcome
from txflow.errors import PreconditionFailed
from txflow.guard import PreconditionGuard, ensure


class Registry:
    def __init__(self):
        self.registered = False
        self.register_calls = 0

    async def is_registered(self):
        return self.registered

    async def register(self):
        self.register_calls += 1
        self.registered = True


@pytest.mark.asyncio
async def test_ensure_acts_once_across_repeated_calls():
    registry = Registry()
    guard = PreconditionGuard()

    first = await guard.ensure(registry.is_registered, registry.register, goal="identity registered")
    second = await guard.ensure(registry.is_registered, registry.register, goal="identity registered")

    assert first == GuardOutcome.ACHIEVED
    assert second == GuardOutcome.ALREADY_MET
    assert registry.register_calls == 1


@pytest.mark.asyncio
async def test_ensure_skips_action_when_goal_already_holds():
    registry = Registry()
    registry.registered = True

    outcome = await ensure(registry.is_registered, registry.register)

    assert outcome == GuardOutcome.ALREADY_MET
    assert registry.register_calls == 0


@pytest.mark.asyncio
async def test_ensure_uses_separate_verification():
    checks = iter([False, True])
    acted = []

    async def check_goal():
        return next(checks)

    async def act():
        acted.append(True)

    async def verify():
        return True

    outcome = await ensure(check_goal, act, verify)

    assert outcome == GuardOutcome.ACHIEVED
    assert acted == [True]


@pytest.mark.asyncio
async def test_ensure_raises_when_goal_not_reached():
    async def never():
        return False

    async def act():
        return None

    with pytest.raises(PreconditionFailed) as excinfo:
        await ensure(never, act, goal="module bound")

    assert excinfo.value.goal == "module bound"
    assert "module bound" in str(excinfo.value)


@pytest.mark.asyncio
async def test_ensure_propagates_action_failure():
    registry = Registry()

    async def act():
        raise RuntimeError("reverted")

    with pytest.raises(RuntimeError, match="reverted"):
        await ensure(registry.is_registered, act)
