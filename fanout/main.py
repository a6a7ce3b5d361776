from __future__ import annotations

import asyncio
import shlex
import signal
from dataclasses import dataclass
from pathlib import Path

import typer

from fanout.config import AppConfig
from fanout.logger import configure_logging
from fanout.runner.control import BatchOutcome
from fanout.runner.poller import command_predicate, wait_until
from fanout.runner.pool import CommandSourceError, ProcessPool
from fanout.runner.signals import install_signal_handlers, remove_signal_handlers


app = typer.Typer(help="Wait for a condition with backoff, run shell jobs in parallel")

# shell exit statuses are a single byte
MAX_EXIT_CODE = 255


@dataclass(slots=True)
class CliState:
    config: AppConfig


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML config file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Override log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    cfg = AppConfig.from_yaml(config)
    if log_level:
        cfg.logging.level = log_level.upper()
    if json_logs:
        cfg.logging.json_output = True
    configure_logging(cfg.logging.level, json=cfg.logging.json_output)
    ctx.obj = CliState(config=cfg)


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def wait(
    ctx: typer.Context,
    command: list[str] = typer.Argument(..., help="Condition command and its args"),
    max_wait: float | None = typer.Option(None, "--max-wait", min=0, help="Ceiling, seconds"),
    initial_wait: float | None = typer.Option(None, "--initial-wait", min=0, help="First wait"),
    min_wait: float | None = typer.Option(None, "--min-wait", min=0, help="Wait floor"),
) -> None:
    """Run COMMAND until it exits 0, halving the pause between attempts."""
    state: CliState = ctx.obj
    settings = state.config.poller
    line = command[0] if len(command) == 1 else shlex.join(command)

    result = asyncio.run(
        wait_until(
            settings.max_total_wait_sec if max_wait is None else max_wait,
            settings.initial_wait_sec if initial_wait is None else initial_wait,
            settings.min_wait_sec if min_wait is None else min_wait,
            command_predicate(line),
        )
    )
    if not result.is_ok:
        typer.echo(result.error)
        raise typer.Exit(code=1)


@app.command()
def run(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="File with one command line per line"),
    delete: str = typer.Argument("", help="Delete SOURCE afterwards: y|yes|t|true"),
) -> None:
    """Run every line of SOURCE as a parallel job; exit code is the failed-job count."""
    state: CliState = ctx.obj
    settings = state.config.pool
    pool = ProcessPool(
        poll_interval_sec=settings.poll_interval_sec,
        job_timeout_sec=settings.job_timeout_sec,
        scratch_dir=settings.scratch_dir,
        stop_timeout_sec=settings.stop_timeout_sec,
        kill_timeout_sec=settings.kill_timeout_sec,
    )

    try:
        outcome = asyncio.run(_run_pool(pool, source, delete))
    except CommandSourceError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if not outcome.is_ok:
        raise typer.Exit(code=min(outcome.failed, MAX_EXIT_CODE))


async def _run_pool(pool: ProcessPool, source: Path, delete: str) -> BatchOutcome:
    loop = asyncio.get_running_loop()

    def _on_signal(received_sig: signal.Signals) -> None:
        pool.log_event.warning("signal.received", signal=received_sig.name)
        pool.shutdown()

    install_signal_handlers(loop, _on_signal)
    try:
        return await pool.run_batch(source, delete)
    finally:
        remove_signal_handlers(loop)


def run_cli() -> None:
    app()


if __name__ == "__main__":
    run_cli()
