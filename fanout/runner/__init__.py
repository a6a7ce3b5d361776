"""
Public API: condition poller and process pool runner.
"""

from __future__ import annotations

from .backoff import BackoffState, halve
from .control import BatchOutcome, PartialFailure, PollResult, Success, TimeoutExceeded
from .poller import CommandPredicate, command_predicate, wait_until
from .pool import CommandSourceError, ProcessPool, is_affirmative, run_batch
from .types import BatchResult, JobRecord, JobStatus, Predicate


__all__ = [
    "BackoffState",
    "BatchOutcome",
    "BatchResult",
    "CommandPredicate",
    "CommandSourceError",
    "JobRecord",
    "JobStatus",
    "PartialFailure",
    "PollResult",
    "Predicate",
    "ProcessPool",
    "Success",
    "TimeoutExceeded",
    "command_predicate",
    "halve",
    "is_affirmative",
    "run_batch",
    "wait_until",
]
