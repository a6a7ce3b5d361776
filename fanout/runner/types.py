"""
Type definitions for the condition poller and the process pool.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path


Predicate = Callable[[], Awaitable[bool]]  # Async "is the condition true?" check.


class JobStatus(StrEnum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Bookkeeping entry for one command line of a batch.
@dataclass(slots=True)
class JobRecord:
    index: int
    command: str
    sink: Path | None = None
    process: asyncio.subprocess.Process | None = None
    status: JobStatus = JobStatus.RUNNING
    returncode: int | None = None
    started_monotonic: float = field(default_factory=time.monotonic)
    finished_monotonic: float | None = None
    timed_out: bool = False
    output: str | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.RUNNING

    @property
    def runtime_seconds(self) -> float:
        end = self.finished_monotonic if self.finished_monotonic is not None else time.monotonic()
        return max(0.0, end - self.started_monotonic)

    def attach(self, process: asyncio.subprocess.Process) -> None:
        if self.process is not None:
            raise RuntimeError(f"job {self.index} already has a process (pid={self.pid})")
        self.process = process

    def finish(self, returncode: int | None) -> JobStatus:
        """Move RUNNING -> SUCCEEDED/FAILED. Terminal states are final."""
        if self.is_terminal:
            raise RuntimeError(f"job {self.index} is already {self.status}")
        self.returncode = returncode
        self.finished_monotonic = time.monotonic()
        if returncode == 0 and not self.timed_out:
            self.status = JobStatus.SUCCEEDED
        else:
            self.status = JobStatus.FAILED
        return self.status


@dataclass(slots=True)
class BatchResult:
    jobs: list[JobRecord] = field(default_factory=list)  # In completion order.

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def succeeded(self) -> int:
        return sum(1 for job in self.jobs if job.status is JobStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def is_ok(self) -> bool:
        return self.failed == 0
