"""Workflow runner tests."""

import asyncio

import pytest

from txflow import WorkflowRunner
from txflow.config import RunnerConfig, TxflowConfig
from txflow.contracts import GuardOutcome, StepStatus, TxCall
from txflow.demo import block_clock
from txflow.errors import SubmissionRejected, WorkflowActiveError, WorkflowResetError
from txflow.ledger import InMemoryLedger

ACCOUNT = "0x00000000000000000000000000000000000000a1"


def make_runner(ledger=None, **config):
    ledger = ledger or InMemoryLedger()
    return WorkflowRunner(ledger, TxflowConfig(**config), sleep=block_clock(ledger))


async def succeed(ctx):
    return None


@pytest.mark.asyncio
async def test_all_steps_complete():
    runner = make_runner()
    runner.add_step("A", succeed)
    runner.add_step("B", succeed)
    runner.add_step("C", succeed)

    result = await runner.run()
    state = runner.controller.state

    assert result.success
    assert result.errors == []
    assert state.current_step == 3
    assert [step.status for step in state.steps] == [StepStatus.COMPLETED] * 3
    assert result.messages[0] == "=== Step 1: A ==="
    assert result.messages[-1] == "=== All steps completed ==="


@pytest.mark.asyncio
async def test_failing_step_halts_the_run():
    runner = make_runner()
    executed = []

    async def reject(ctx):
        executed.append("B")
        raise SubmissionRejected("caller is not owner")

    async def never(ctx):
        executed.append("C")

    runner.add_step("A", succeed)
    runner.add_step("B", reject)
    runner.add_step("C", never)

    result = await runner.run()
    state = runner.controller.state

    assert not result.success
    assert result.errors == ["B: caller is not owner"]
    assert executed == ["B"]
    assert state.current_step == 2
    assert state.get_step(1).status == StepStatus.COMPLETED
    assert state.get_step(2).status == StepStatus.FAILED
    assert state.get_step(2).error == "caller is not owner"
    assert state.get_step(3).status == StepStatus.PENDING
    assert "=== All steps completed ===" not in result.messages


@pytest.mark.asyncio
async def test_steps_run_strictly_in_order():
    runner = make_runner()
    order = []

    def recorder(name):
        async def action(ctx):
            status = runner.controller.state.get_step(ctx.step_id).status
            order.append((name, status))
            return f"{name} done"

        return action

    for name in ("first", "second", "third"):
        runner.add_step(name, recorder(name))

    await runner.run()

    assert order == [
        ("first", StepStatus.IN_PROGRESS),
        ("second", StepStatus.IN_PROGRESS),
        ("third", StepStatus.IN_PROGRESS),
    ]
    assert runner.controller.state.get_step(2).complete_info == "second done"


@pytest.mark.asyncio
async def test_step_decorator_and_payload():
    runner = make_runner()

    @runner.step("Produce")
    async def produce(ctx):
        ctx.set_payload("address", "0xc0")

    @runner.step("Consume")
    async def consume(ctx):
        ctx.log(f"using {ctx.payload['address']}")

    result = await runner.run(payload={"seed": 1})

    assert result.payload == {"seed": 1, "address": "0xc0"}
    assert "using 0xc0" in result.messages
    assert [step.id for step in runner.steps] == [1, 2]


def test_duplicate_step_ids_rejected():
    runner = make_runner()
    runner.add_step("A", succeed, step_id=4)
    with pytest.raises(ValueError):
        runner.add_step("B", succeed, step_id=4)
    assert runner.add_step("C", succeed).id == 5


@pytest.mark.asyncio
async def test_send_mirrors_tracking_on_the_step():
    ledger = InMemoryLedger()
    runner = make_runner(ledger)
    seen = []
    runner.controller.subscribe(
        lambda state: seen.append(state.steps[0].confirmations) if state else None
    )

    @runner.step("Transfer")
    async def transfer(ctx):
        return await ctx.send(TxCall(sender=ACCOUNT, method="transfer"), confirmations=3)

    result = await runner.run()
    step = runner.controller.state.get_step(1)

    assert result.success
    assert step.status == StepStatus.COMPLETED
    assert step.tx_handle.startswith("0x")
    assert step.confirmations == step.required_confirmations == 3
    assert step.estimated_time_left is None
    assert [c for c in seen if c] == sorted(c for c in seen if c)
    assert f"transfer transaction hash: {step.tx_handle}" in result.messages
    assert "✓ transfer confirmed" in result.messages


@pytest.mark.asyncio
async def test_send_retries_conflicts_inside_a_step():
    ledger = InMemoryLedger()
    ledger.inject_conflicts(ACCOUNT, 2)
    runner = make_runner(ledger)

    @runner.step("Approve")
    async def approve(ctx):
        await ctx.send(TxCall(sender=ACCOUNT, method="approve"), confirmations=1)

    result = await runner.run()

    assert result.success
    assert len(ledger.submitted) == 1
    assert ledger.submitted[0].nonce == 0


@pytest.mark.asyncio
async def test_retries_exhausted_fails_the_step():
    ledger = InMemoryLedger()
    ledger.inject_conflicts(ACCOUNT, 10)
    runner = make_runner(ledger, retry={"max_retries": 2})

    @runner.step("Approve")
    async def approve(ctx):
        await ctx.send(TxCall(sender=ACCOUNT, method="approve"))

    result = await runner.run()

    assert not result.success
    assert "Gave up after 2 attempts" in runner.controller.state.get_step(1).error


@pytest.mark.asyncio
async def test_vanished_transaction_fails_the_step():
    ledger = InMemoryLedger()
    runner = make_runner(ledger)

    @runner.step("Transfer")
    async def transfer(ctx):
        handle = await ctx.submit(TxCall(sender=ACCOUNT, method="transfer"))
        ledger.drop(handle)
        await ctx.confirm(handle, 2)

    result = await runner.run()
    step = runner.controller.state.get_step(1)

    assert not result.success
    assert step.status == StepStatus.FAILED
    assert "inconclusive: transaction not found" in step.error


@pytest.mark.asyncio
async def test_barrier_timeout_is_reported_not_raised():
    ledger = InMemoryLedger()
    await ledger.submit(TxCall(sender=ACCOUNT, method="stuck"))

    async def idle(_seconds):
        return None

    runner = WorkflowRunner(
        ledger, TxflowConfig(barrier={"poll_interval_ms": 100, "max_wait_ms": 300}), sleep=idle
    )

    @runner.step("Wait")
    async def wait(ctx):
        result = await ctx.await_quiescence(ACCOUNT)
        return "timed out" if result.timed_out else "settled"

    result = await runner.run()

    assert result.success
    assert runner.controller.state.get_step(1).complete_info == "timed out"
    assert any(message.startswith("Timed out after 300ms") for message in result.messages)


@pytest.mark.asyncio
async def test_ensure_inside_step_reports_outcome():
    runner = make_runner()
    registered = {"value": False}

    async def check():
        return registered["value"]

    async def register():
        registered["value"] = True

    outcomes = []

    @runner.step("Register")
    async def step(ctx):
        outcomes.append(await ctx.ensure(check, register, goal="identity registered"))
        outcomes.append(await ctx.ensure(check, register, goal="identity registered"))

    result = await runner.run()

    assert outcomes == [GuardOutcome.ACHIEVED, GuardOutcome.ALREADY_MET]
    assert "✓ identity registered" in result.messages
    assert "identity registered: already satisfied, skipping" in result.messages


@pytest.mark.asyncio
async def test_second_run_requires_reset():
    runner = make_runner()
    runner.add_step("A", succeed)

    await runner.run()
    with pytest.raises(WorkflowActiveError):
        await runner.run()

    runner.reset()
    assert runner.controller.state is None
    result = await runner.run()
    assert result.success


@pytest.mark.asyncio
async def test_reset_during_run_stops_later_steps():
    runner = make_runner()
    executed = []

    async def reset_midway(ctx):
        executed.append(1)
        runner.reset()

    async def later(ctx):
        executed.append(2)

    runner.add_step("A", reset_midway)
    runner.add_step("B", later)

    result = await runner.run()

    assert executed == [1]
    assert not result.success
    assert result.errors == ["Workflow was reset before completion"]
    assert runner.controller.state is None


@pytest.mark.asyncio
async def test_step_delay_is_awaited_between_steps():
    delays = []

    async def record(seconds):
        delays.append(seconds)

    runner = WorkflowRunner(
        InMemoryLedger(), TxflowConfig(runner=RunnerConfig(step_delay_ms=1500)), sleep=record
    )
    runner.add_step("A", succeed)
    runner.add_step("B", succeed)
    runner.add_step("C", succeed)

    await runner.run()

    assert delays == [1.5, 1.5]


@pytest.mark.asyncio
async def test_result_observers_receive_snapshots():
    runner = make_runner()
    snapshots = []
    runner.on_result(snapshots.append)

    async def fail(ctx):
        raise RuntimeError("boom")

    runner.add_step("A", fail)
    await runner.run()

    assert snapshots[0].messages == []
    assert snapshots[-1].success is False
    assert snapshots[-1].errors == ["A: boom"]
    snapshots[-1].errors.append("tampered")
    assert runner.result.errors == ["A: boom"]


@pytest.mark.asyncio
async def test_reset_run_cannot_leak_into_the_next_run():
    ledger = InMemoryLedger()
    runner = make_runner(ledger)
    first_started = asyncio.Event()
    release_first = asyncio.Event()
    second_in_b = asyncio.Event()
    release_second = asyncio.Event()
    calls = {"A": 0, "B": 0}
    refused = []

    async def step_a(ctx):
        calls["A"] += 1
        if calls["A"] == 1:
            first_started.set()
            await release_first.wait()
            ctx.log("late message")
            ctx.set_payload("late", True)
            try:
                await ctx.submit(TxCall(sender=ACCOUNT, method="late"))
            except WorkflowResetError:
                refused.append("submit")
        return "A done"

    async def step_b(ctx):
        calls["B"] += 1
        second_in_b.set()
        await release_second.wait()
        return "B done"

    runner.add_step("A", step_a)
    runner.add_step("B", step_b)
    seen = []
    runner.on_result(seen.append)

    first = asyncio.create_task(runner.run())
    await first_started.wait()
    runner.reset()

    second = asyncio.create_task(runner.run(payload={"fresh": True}))
    await second_in_b.wait()
    release_first.set()
    stale = await first

    live = runner.result
    assert live.errors == []
    assert "late message" not in live.messages
    assert runner.controller.state.get_step(1).status == StepStatus.COMPLETED

    release_second.set()
    result = await second

    assert result.success
    assert result.errors == []
    assert result.payload == {"fresh": True}
    assert "late message" not in result.messages
    assert result.messages == [
        "=== Step 1: A ===",
        "=== Step 2: B ===",
        "=== All steps completed ===",
    ]
    assert [step.status for step in runner.controller.state.steps] == [
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
    ]
    assert runner.controller.state.get_step(1).complete_info == "A done"
    assert all("late message" not in snapshot.messages for snapshot in seen)

    assert refused == ["submit"]
    assert ledger.submitted == []
    assert not stale.success
    assert stale.errors == ["Workflow was reset before completion"]
    assert "late message" in stale.messages
    assert stale.payload == {"late": True}
    assert calls == {"A": 2, "B": 1}


@pytest.mark.asyncio
async def test_explicit_zero_confirmations_is_not_replaced_by_default():
    ledger = InMemoryLedger()
    runner = make_runner(ledger)

    @runner.step("Fire and forget")
    async def fire(ctx):
        handle = await ctx.submit(TxCall(sender=ACCOUNT, method="ping"))
        await ctx.confirm(handle, 0)

    result = await runner.run()
    step = runner.controller.state.get_step(1)

    assert result.success
    assert step.required_confirmations == 0
    assert step.confirmations == 0
