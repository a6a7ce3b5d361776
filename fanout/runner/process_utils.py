"""
Async utilities for child process supervision.

- is_process_alive(): cheap non-blocking liveness check
- reclaim_exit_status(): bounded wait on a child already known to be dead
- terminate_process_group(): TERM(process group) -> wait -> KILL -> wait
- log_output_lines(): logs captured job output line-by-line
"""

from __future__ import annotations

import asyncio
import os
import signal

from structlog.typing import FilteringBoundLogger


def is_process_alive(proc: asyncio.subprocess.Process | None) -> bool:
    """Return True if the given subprocess is alive."""
    return proc is not None and proc.returncode is None


async def reclaim_exit_status(proc: asyncio.subprocess.Process, timeout_sec: float) -> int | None:
    """Collect the exit status of an exited child without waiting on any other."""
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout_sec)
    except asyncio.TimeoutError:  # noqa: UP041
        return proc.returncode


def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        pgid = os.getpgid(proc.pid)
    except ProcessLookupError:
        return
    except OSError:
        pgid = proc.pid
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        pass


async def terminate_process_group(
    proc: asyncio.subprocess.Process,
    *,
    reason: str,
    stop_timeout_sec: float,
    kill_timeout_sec: float,
    log_event: FilteringBoundLogger,
) -> int | None:
    """Generic stop: TERM(process group) -> wait -> KILL(process group) -> wait."""
    if proc.returncode is not None:
        return proc.returncode

    # 1) TERM whole process group
    try:
        _signal_group(proc, signal.SIGTERM)
    except OSError as exc:
        log_event.warning("signal.term_error", pid=proc.pid, error=repr(exc))
    log_event.info("proc.terminate_sent", pid=proc.pid, reason=reason)

    # 2) wait for graceful exit
    try:
        await asyncio.wait_for(proc.wait(), timeout=stop_timeout_sec)
        log_event.info("proc.terminated", pid=proc.pid, returncode=proc.returncode)
        return proc.returncode
    except asyncio.TimeoutError:  # noqa: UP041
        pass

    # 3) KILL whole process group
    try:
        _signal_group(proc, signal.SIGKILL)
    except OSError as exc:
        log_event.warning("signal.kill_error", pid=proc.pid, error=repr(exc))

    # 4) final wait after KILL
    try:
        await asyncio.wait_for(proc.wait(), timeout=kill_timeout_sec)
        log_event.info("proc.killed", pid=proc.pid, returncode=proc.returncode)
    except asyncio.TimeoutError:  # noqa: UP041
        log_event.error("proc.kill_timeout", pid=proc.pid)
    return proc.returncode


def log_output_lines(
    logger: FilteringBoundLogger,
    text: str,
    *,
    job_index: int,
    pid: int | None,
    max_line_len: int = 1000,
) -> int:
    """Log captured output line-by-line, clamping long lines. Returns line count."""
    count = 0
    for line in text.splitlines():
        if len(line) > max_line_len:
            line = line[:max_line_len] + "…"
        logger.debug("proc.out", job=job_index, pid=pid, line=line)
        count += 1
    return count
