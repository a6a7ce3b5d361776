"""
Condition poller: waits for an external condition with a shrinking interval.

Sleep first, then check. Each failed check adds the wait it just used to the
elapsed total, and the interval is halved toward the floor. The poller gives up
the first time the elapsed total exceeds the ceiling, so at least one check
always happens.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Mapping

from structlog.typing import FilteringBoundLogger

from fanout.logger import get_logger
from fanout.runner.backoff import BackoffState
from fanout.runner.control import PollResult, Success, TimeoutExceeded
from fanout.runner.types import Predicate


Sleep = Callable[[float], Awaitable[None]]


class CommandPredicate:
    """Shell command as a predicate: exit status 0 means the condition holds."""

    def __init__(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = env

    def __repr__(self) -> str:
        return self.command

    async def __call__(self) -> bool:
        env = None
        if self.env:
            env = os.environ.copy()
            env.update(self.env)
        try:
            # stdout is discarded: only the exit status carries the result
            process = await asyncio.create_subprocess_shell(
                self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                cwd=self.cwd,
                env=env,
            )
        except OSError:
            return False
        return await process.wait() == 0


def command_predicate(
    command: str,
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandPredicate:
    return CommandPredicate(command, cwd=cwd, env=env)


def describe(predicate: Predicate) -> str:
    if isinstance(predicate, CommandPredicate):
        return predicate.command
    return getattr(predicate, "__name__", None) or repr(predicate)


async def wait_until(
    max_total_wait: float,
    initial_wait: float,
    min_wait: float,
    predicate: Predicate,
    *,
    description: str | None = None,
    sleep: Sleep = asyncio.sleep,
    log_event: FilteringBoundLogger | None = None,
) -> PollResult:
    """
    Wait until `predicate` reports success or the cumulative wait exceeds the ceiling.

    :param max_total_wait: ceiling for the sum of waits before failed checks, seconds
    :param initial_wait: first wait before the first check, seconds
    :param min_wait: floor the wait is halved toward, seconds
    :param predicate: async zero-argument check; exceptions count as "not yet"
    """
    log = log_event or get_logger("poll.event")
    what = description or describe(predicate)
    state = BackoffState(
        current_wait=initial_wait, min_wait=min_wait, max_cumulative=max_total_wait
    )
    log = log.bind(condition=what)

    if min_wait <= 0:
        log.warning("poll.zero_floor", min_wait=min_wait)

    while True:
        await sleep(state.current_wait)

        try:
            ok = bool(await predicate())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("poll.check_error", error=repr(exc))
            ok = False

        if ok:
            log.info("poll.ok", attempts=state.attempts + 1, elapsed_s=state.elapsed)
            return Success(f"<{what}> succeeded after {state.attempts + 1} attempt(s)")

        state.register_failure()
        log.debug(
            "poll.attempt",
            attempt=state.attempts,
            wait_s=state.current_wait,
            elapsed_s=state.elapsed,
        )
        if state.exhausted():
            result = TimeoutExceeded(
                description=what,
                max_total_wait=max_total_wait,
                elapsed=state.elapsed,
                attempts=state.attempts,
            )
            log.warning("poll.timeout", attempts=state.attempts, max_total_wait=max_total_wait)
            return result

        state.advance()
