"""Command line interface for txflow."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from txflow.barrier import PendingBarrier
from txflow.config import TxflowConfig, load_config
from txflow.contracts import StepStatus, TrackingStatus, WorkflowState
from txflow.demo import OUTSIDER, ComplianceRegistry, build_module_binding_workflow
from txflow.errors import LedgerError
from txflow.ledger import InMemoryLedger, get_ledger
from txflow.tracker import ConfirmationTracker

app = typer.Typer(help="CLI for txflow transaction workflows")

STATUS_MARKS = {
    StepStatus.PENDING: " ",
    StepStatus.IN_PROGRESS: "~",
    StepStatus.COMPLETED: "✓",
    StepStatus.FAILED: "✗",
}


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a txflow YAML file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """txflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_config(str(config) if config else None)


def _config(ctx: typer.Context) -> TxflowConfig:
    return ctx.obj if isinstance(ctx.obj, TxflowConfig) else load_config()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command("height")
def height(ctx: typer.Context) -> None:
    """Print the latest block height of the configured ledger."""
    config = _config(ctx)

    async def _run() -> int:
        async with get_ledger(config=config) as ledger:
            return await ledger.current_height()

    try:
        typer.echo(asyncio.run(_run()))
    except LedgerError as e:
        _fail(f"Ledger error: {e}")


@app.command("track")
def track(
    ctx: typer.Context,
    handle: str,
    confirmations: Optional[int] = typer.Option(None, help="Required confirmation depth"),
    interval_ms: Optional[float] = typer.Option(None, help="Polling interval in milliseconds"),
) -> None:
    """
    Track a submitted transaction until it is confirmed deeply enough.

    Prints one line per poll. Exits with code 1 when the transaction
    disappears or the polling budget runs out.

    Example:
        txflow track 0xabc... --confirmations 12
    """
    config = _config(ctx)
    tracker_config = config.tracker.model_copy()
    if interval_ms:
        tracker_config.poll_interval_ms = interval_ms

    def on_update(current: int, eta: Optional[float]) -> None:
        suffix = f" (~{eta:.0f}s left)" if eta else ""
        typer.echo(f"{handle}: {current} confirmations{suffix}")

    async def _run():
        async with get_ledger(config=config) as ledger:
            tracker = ConfirmationTracker(ledger, tracker_config)
            token = tracker.track(handle, confirmations, on_update)
            return await token.wait()

    result = asyncio.run(_run())
    if result.status != TrackingStatus.CONFIRMED:
        _fail(f"Tracking {result.status.value}: {result.reason or 'not confirmed'}")
    typer.echo(f"Confirmed with {result.confirmations} confirmations")


@app.command("pending")
def pending(
    ctx: typer.Context,
    account: str,
    max_wait_ms: Optional[float] = typer.Option(None, help="Give up after this many milliseconds"),
) -> None:
    """Wait until ACCOUNT has no unconfirmed transactions."""
    config = _config(ctx)

    async def _run():
        async with get_ledger(config=config) as ledger:
            barrier = PendingBarrier(ledger, config.barrier)
            return await barrier.await_quiescence(account, max_wait_ms=max_wait_ms)

    result = asyncio.run(_run())
    if result.quiesced:
        typer.echo(f"{account} settled at nonce {result.confirmed}")
    else:
        typer.secho(
            f"{account} still has {result.outstanding} outstanding vs "
            f"{result.confirmed} confirmed after {result.waited_ms:.0f}ms",
            fg=typer.colors.YELLOW,
        )


def _render_state(state: Optional[WorkflowState]) -> None:
    if state is None:
        return
    typer.echo(f"Step {state.current_step}/{state.total_steps}")
    for step in state.steps:
        line = f"[{STATUS_MARKS[step.status]}] {step.id}. {step.title} - {step.status.value}"
        if step.error:
            line += f": {step.error}"
        elif step.complete_info:
            line += f" ({step.complete_info})"
        typer.echo(line)


@app.command("demo")
def demo(
    ctx: typer.Context,
    confirmations: int = typer.Option(3, help="Confirmations required per transaction"),
    fail_unbind: bool = typer.Option(False, help="Unbind from a non-owner account"),
) -> None:
    """Run the module-binding workflow against a simulated ledger."""
    config = _config(ctx).model_copy(deep=True)
    config.tracker.required_confirmations = confirmations

    ledger = InMemoryLedger()
    registry = ComplianceRegistry()
    registry.install(ledger)
    runner = build_module_binding_workflow(
        ledger,
        registry,
        config=config,
        unbind_sender=OUTSIDER if fail_unbind else registry.owner,
    )

    result = asyncio.run(runner.run())
    _render_state(runner.controller.state)
    for message in result.messages:
        typer.echo(message)
    for error in result.errors:
        typer.secho(f"✗ {error}", fg=typer.colors.RED)
    if not result.success:
        raise typer.Exit(code=1)
