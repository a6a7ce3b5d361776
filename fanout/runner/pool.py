from __future__ import annotations

import asyncio
import os
import sys
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

from structlog.typing import FilteringBoundLogger

from fanout.logger import get_logger
from fanout.runner.control import BatchOutcome, PartialFailure, Success
from fanout.runner.process_utils import (
    is_process_alive,
    log_output_lines,
    reclaim_exit_status,
    terminate_process_group,
)
from fanout.runner.sinks import allocate_sink, read_sink, release_sink
from fanout.runner.types import BatchResult, JobRecord, JobStatus


AFFIRMATIVE_TOKENS = frozenset({"y", "yes", "t", "true"})


class CommandSourceError(OSError):
    """Command source is missing, unreadable or empty."""


def is_affirmative(value: object) -> bool:
    """Truthy flag parser: y/yes/t/true in any case, or bool True."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in AFFIRMATIVE_TOKENS


class ProcessPool:
    """
    Runs a batch of independent shell command lines as child processes.

    Every command is launched right away with stdout and stderr redirected into
    its own scratch file. The pool then sweeps the outstanding jobs, finalizes
    the ones whose process has exited, forwards their output to the diagnostic
    stream and removes the scratch file. The batch always runs to completion;
    failures are counted, not raised.
    """

    # reclaiming the status of an already exited child must not hang the sweep
    RECLAIM_TIMEOUT_SEC = 1.0

    def __init__(
        self,
        *,
        poll_interval_sec: float = 1.0,
        job_timeout_sec: float | None = None,
        scratch_dir: Path | None = None,
        stop_timeout_sec: float = 5.0,
        kill_timeout_sec: float = 2.0,
        diagnostic: TextIO | None = None,
        log_event: FilteringBoundLogger | None = None,
        log_out: FilteringBoundLogger | None = None,
    ) -> None:
        if poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be positive")
        if job_timeout_sec is not None and job_timeout_sec <= 0:
            raise ValueError("job_timeout_sec must be positive or None")

        self.poll_interval_sec = poll_interval_sec
        self.job_timeout_sec = job_timeout_sec
        self.scratch_dir = scratch_dir
        self.stop_timeout_sec = stop_timeout_sec
        self.kill_timeout_sec = kill_timeout_sec
        self._diagnostic = diagnostic

        # Dedicated loggers
        self.log_event: FilteringBoundLogger = log_event or get_logger("proc.event")
        self.log_out: FilteringBoundLogger = log_out or get_logger("proc.out")

        self.shutdown_event: asyncio.Event = asyncio.Event()
        self.sinks_allocated = 0
        self.sinks_released = 0

    @property
    def diagnostic(self) -> TextIO:
        return self._diagnostic if self._diagnostic is not None else sys.stderr

    def shutdown(self) -> None:
        """Request termination of all outstanding jobs (idempotent)."""
        if not self.shutdown_event.is_set():
            self.log_event.info("pool.shutdown_requested")
            self.shutdown_event.set()

    # ----- Input --------------------------------------------------------------------------------

    @staticmethod
    def load_commands(source: Path | str) -> list[str]:
        """Read one command line per record; fail before anything is launched."""
        path = Path(source)
        if not path.is_file() or not os.access(path, os.R_OK):
            raise CommandSourceError(f"can not read {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CommandSourceError(f"can not read {path}: {exc}") from exc

        commands = [line for line in text.splitlines() if line.strip()]
        if not commands:
            raise CommandSourceError(f"can not read {path}: no commands")
        return commands

    # ----- Batch --------------------------------------------------------------------------------

    async def run_batch(self, source: Path | str, delete_source: object = False) -> BatchOutcome:
        """Run every command from `source`; remove it afterwards if the flag is affirmative."""
        path = Path(source)
        commands = self.load_commands(path)
        batch = await self.run_commands(commands)

        if is_affirmative(delete_source):
            path.unlink(missing_ok=True)
            self.log_event.info("batch.source_deleted", source=str(path))

        if batch.is_ok:
            return Success(f"all {batch.total} jobs succeeded")
        return PartialFailure(failed=batch.failed, total=batch.total)

    async def run_commands(self, commands: Iterable[str]) -> BatchResult:
        """Launch all commands, sweep until every job is finalized, aggregate the result."""
        batch = BatchResult()
        outstanding: dict[int, JobRecord] = {}
        started = time.monotonic()

        try:
            # 1) Launch phase, input order
            for index, command in enumerate(commands):
                job = JobRecord(index=index, command=command)
                if await self._launch(job):
                    outstanding[index] = job
                else:
                    self._drain(job)
                    batch.jobs.append(job)

            self.log_event.info("batch.launched", jobs=len(outstanding) + len(batch.jobs))

            # 2) Completion detection: sweep, finalize exited jobs, yield
            while outstanding:
                await self._sweep(outstanding, batch)
                if outstanding:
                    await asyncio.sleep(self.poll_interval_sec)
        finally:
            # 3) Interrupted sweep: stop stragglers, still release every sink
            for job in list(outstanding.values()):
                await self._stop_job(job, reason="interrupted")
                outstanding.pop(job.index, None)
                batch.jobs.append(job)

        self.log_event.info(
            "batch.finished",
            total=batch.total,
            succeeded=batch.succeeded,
            failed=batch.failed,
            duration_s=round(time.monotonic() - started, 3),
        )
        return batch

    # ----- Job lifecycle ------------------------------------------------------------------------

    async def _launch(self, job: JobRecord) -> bool:
        fd, job.sink = allocate_sink(job.command, self.scratch_dir)
        self.sinks_allocated += 1
        try:
            process = await asyncio.create_subprocess_shell(
                job.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=fd,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            self.log_event.error("job.start_error", job=job.index, error=repr(exc))
            os.write(fd, f"{job.command}: {exc}\n".encode())
            job.finish(None)
            return False
        except BaseException:
            release_sink(job.sink)
            job.sink = None
            self.sinks_released += 1
            raise
        finally:
            # the child holds its own copy of the descriptor
            os.close(fd)

        job.attach(process)
        self.log_event.info("job.started", job=job.index, pid=process.pid, command=job.command)
        return True

    async def _sweep(self, outstanding: dict[int, JobRecord], batch: BatchResult) -> None:
        stopping = self.shutdown_event.is_set()
        for index, job in list(outstanding.items()):
            if is_process_alive(job.process):
                if stopping:
                    await self._stop_job(job, reason="shutdown")
                elif (
                    self.job_timeout_sec is not None
                    and job.runtime_seconds > self.job_timeout_sec
                ):
                    job.timed_out = True
                    await self._stop_job(job, reason="timeout")
                else:
                    continue
            else:
                assert job.process is not None
                returncode = await reclaim_exit_status(job.process, self.RECLAIM_TIMEOUT_SEC)
                job.finish(returncode)
                self._drain(job)

            del outstanding[index]
            batch.jobs.append(job)

    async def _stop_job(self, job: JobRecord, reason: str) -> None:
        returncode = None
        if job.process is not None:
            returncode = await terminate_process_group(
                job.process,
                reason=reason,
                stop_timeout_sec=self.stop_timeout_sec,
                kill_timeout_sec=self.kill_timeout_sec,
                log_event=self.log_event.bind(job=job.index),
            )
        if not job.is_terminal:
            # stopped jobs never count as succeeded
            job.finish(returncode if returncode else -1)
        self._drain(job)

    def _drain(self, job: JobRecord) -> None:
        """Forward captured output exactly once, then release the sink."""
        if job.sink is None:
            return
        try:
            job.output = read_sink(job.sink)
        except OSError as exc:
            job.output = ""
            self.log_event.warning("job.output_error", job=job.index, error=repr(exc))
        finally:
            release_sink(job.sink)
            job.sink = None
            self.sinks_released += 1

        if job.output:
            self.diagnostic.write(job.output)
            if not job.output.endswith("\n"):
                self.diagnostic.write("\n")
            self.diagnostic.flush()
        lines = log_output_lines(self.log_out, job.output, job_index=job.index, pid=job.pid)

        log = self.log_event.info if job.status is JobStatus.SUCCEEDED else self.log_event.warning
        log(
            "job.finished",
            job=job.index,
            pid=job.pid,
            status=str(job.status),
            returncode=job.returncode,
            timed_out=job.timed_out,
            runtime_s=round(job.runtime_seconds, 3),
            output_lines=lines,
        )


async def run_batch(
    source: Path | str,
    delete_source: object = False,
    *,
    pool: ProcessPool | None = None,
) -> BatchOutcome:
    """Convenience wrapper over ProcessPool.run_batch()."""
    return await (pool or ProcessPool()).run_batch(source, delete_source)
