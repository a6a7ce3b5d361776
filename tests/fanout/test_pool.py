from __future__ import annotations

import asyncio
import io
import time
from pathlib import Path

import pytest

from fanout.runner.control import PartialFailure, Success
from fanout.runner.pool import CommandSourceError, ProcessPool, is_affirmative, run_batch
from fanout.runner.types import JobRecord, JobStatus


POLL_SEC = 0.05


def _pool(scratch: Path, diagnostic: io.StringIO | None = None, **kwargs: object) -> ProcessPool:
    return ProcessPool(
        poll_interval_sec=POLL_SEC,
        scratch_dir=scratch,
        diagnostic=diagnostic if diagnostic is not None else io.StringIO(),
        **kwargs,  # type: ignore[arg-type]
    )


def _write_source(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def scratch(tmp_path: Path) -> Path:
    directory = tmp_path / "scratch"
    directory.mkdir()
    return directory


# ---- Run all regardless of failures ----
@pytest.mark.asyncio
async def test_runs_all_jobs_and_counts_failures(scratch: Path) -> None:
    diagnostic = io.StringIO()
    pool = _pool(scratch, diagnostic)

    batch = await pool.run_commands(["echo one", "echo two; exit 3", "echo three"])

    assert batch.total == 3
    assert batch.succeeded == 2
    assert batch.failed == 1
    assert not batch.is_ok

    by_index = {job.index: job for job in batch.jobs}
    assert by_index[0].status is JobStatus.SUCCEEDED
    assert by_index[1].status is JobStatus.FAILED
    assert by_index[1].returncode == 3
    assert by_index[2].status is JobStatus.SUCCEEDED

    text = diagnostic.getvalue()
    for word in ("one", "two", "three"):
        assert word in text


# ---- Scratch sinks are always released ----
@pytest.mark.asyncio
async def test_every_sink_is_released(scratch: Path) -> None:
    pool = _pool(scratch)

    await pool.run_commands(["exit 0", "exit 1", "echo x >&2; exit 2", "true"])

    assert pool.sinks_allocated == 4
    assert pool.sinks_released == 4
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_stderr_is_captured_with_stdout(scratch: Path) -> None:
    pool = _pool(scratch)

    batch = await pool.run_commands(["echo out; echo err >&2"])

    (job,) = batch.jobs
    assert job.output is not None
    assert "out" in job.output
    assert "err" in job.output


@pytest.mark.asyncio
async def test_default_diagnostic_is_stderr(
    scratch: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    pool = ProcessPool(poll_interval_sec=POLL_SEC, scratch_dir=scratch)

    await pool.run_commands(["echo to-diagnostic"])

    assert "to-diagnostic" in capsys.readouterr().err


# ---- Parallel execution, bounded by the longest job ----
@pytest.mark.asyncio
async def test_jobs_run_in_parallel(scratch: Path) -> None:
    pool = _pool(scratch)
    started = time.monotonic()

    batch = await pool.run_commands(
        ["sleep 0.2; echo a", "sleep 0.5; echo b", "sleep 0.4; echo c"]
    )

    elapsed = time.monotonic() - started
    assert batch.is_ok
    assert batch.total == 3
    assert elapsed < 0.5 + POLL_SEC + 0.6
    assert sorted(job.index for job in batch.jobs) == [0, 1, 2]
    # the shortest job is finalized first
    assert batch.jobs[0].index == 0


@pytest.mark.asyncio
async def test_empty_command_list(scratch: Path) -> None:
    pool = _pool(scratch)

    batch = await pool.run_commands([])

    assert batch.total == 0
    assert batch.is_ok
    assert pool.sinks_allocated == 0


# ---- Optional per-job deadline ----
@pytest.mark.asyncio
async def test_job_timeout_stops_hung_job(scratch: Path) -> None:
    pool = _pool(scratch, job_timeout_sec=0.2, stop_timeout_sec=1.0)
    started = time.monotonic()

    batch = await pool.run_commands(["sleep 30", "echo fine"])

    assert time.monotonic() - started < 5
    by_index = {job.index: job for job in batch.jobs}
    assert by_index[0].status is JobStatus.FAILED
    assert by_index[0].timed_out
    assert by_index[1].status is JobStatus.SUCCEEDED
    assert list(scratch.iterdir()) == []


# ---- Shutdown request ----
@pytest.mark.asyncio
async def test_shutdown_stops_outstanding_jobs(scratch: Path) -> None:
    pool = _pool(scratch, stop_timeout_sec=1.0)

    task = asyncio.create_task(pool.run_commands(["sleep 30", "sleep 30"]))
    await asyncio.sleep(0.3)
    pool.shutdown()
    batch = await asyncio.wait_for(task, timeout=10)

    assert batch.failed == 2
    assert all(job.status is JobStatus.FAILED for job in batch.jobs)
    assert pool.sinks_released == pool.sinks_allocated == 2
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_cancelled_batch_still_releases_sinks(scratch: Path) -> None:
    pool = _pool(scratch, stop_timeout_sec=1.0)

    task = asyncio.create_task(pool.run_commands(["sleep 30"]))
    await asyncio.sleep(0.3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert pool.sinks_released == pool.sinks_allocated == 1
    assert list(scratch.iterdir()) == []


# ---- Source file handling ----
@pytest.mark.asyncio
async def test_run_batch_success(tmp_path: Path, scratch: Path) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["echo a", "", "echo b"])

    outcome = await _pool(scratch).run_batch(source)

    assert isinstance(outcome, Success)
    assert source.exists()


@pytest.mark.asyncio
async def test_run_batch_partial_failure(tmp_path: Path, scratch: Path) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["exit 1", "true", "exit 4"])

    outcome = await _pool(scratch).run_batch(source)

    assert isinstance(outcome, PartialFailure)
    assert outcome.failed == 2
    assert outcome.total == 3
    assert outcome.error == "2 of 3 jobs failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["y", "Y", "yes", "Yes", "t", "T", "true", "True", True])
async def test_source_deleted_on_affirmative_flag(
    tmp_path: Path, scratch: Path, flag: object
) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["true"])

    await _pool(scratch).run_batch(source, flag)

    assert not source.exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["", "n", "no", "false", "nope", "1", None, False])
async def test_source_kept_otherwise(tmp_path: Path, scratch: Path, flag: object) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["true"])

    await _pool(scratch).run_batch(source, flag)

    assert source.exists()


@pytest.mark.asyncio
async def test_source_deleted_even_when_jobs_fail(tmp_path: Path, scratch: Path) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["exit 1"])

    outcome = await _pool(scratch).run_batch(source, "yes")

    assert not outcome.is_ok
    assert not source.exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "\n  \n"])
async def test_bad_source_fails_before_launch(
    tmp_path: Path, scratch: Path, content: str | None
) -> None:
    source = tmp_path / "jobs.txt"
    if content is not None:
        source.write_text(content, encoding="utf-8")
    pool = _pool(scratch)

    with pytest.raises(CommandSourceError, match="can not read"):
        await pool.run_batch(source, "yes")

    assert pool.sinks_allocated == 0
    if content is not None:
        assert source.exists()


def test_source_error_is_os_error() -> None:
    assert issubclass(CommandSourceError, OSError)


def test_load_commands_keeps_order(tmp_path: Path) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["echo 1", "echo 2 | tr 2 3", "echo 3"])
    assert ProcessPool.load_commands(source) == ["echo 1", "echo 2 | tr 2 3", "echo 3"]


# ---- Flag parsing and job record ----
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("y", True),
        (" YES ", True),
        ("tRuE", True),
        ("t", True),
        ("n", False),
        ("yess", False),
        ("", False),
        (None, False),
        (True, True),
        (False, False),
    ],
)
def test_is_affirmative(value: object, expected: bool) -> None:
    assert is_affirmative(value) is expected


def test_job_record_transition_is_one_way() -> None:
    job = JobRecord(index=0, command="true")
    assert job.finish(0) is JobStatus.SUCCEEDED
    with pytest.raises(RuntimeError):
        job.finish(1)
    assert job.status is JobStatus.SUCCEEDED


def test_job_record_nonzero_is_failed() -> None:
    job = JobRecord(index=1, command="false")
    assert job.finish(1) is JobStatus.FAILED
    assert job.returncode == 1


def test_pool_rejects_bad_intervals() -> None:
    with pytest.raises(ValueError):
        ProcessPool(poll_interval_sec=0)
    with pytest.raises(ValueError):
        ProcessPool(job_timeout_sec=0)


@pytest.mark.asyncio
async def test_module_run_batch_wrapper(tmp_path: Path, scratch: Path) -> None:
    source = _write_source(tmp_path / "jobs.txt", ["echo wrapped"])
    diagnostic = io.StringIO()

    outcome = await run_batch(source, "no", pool=_pool(scratch, diagnostic))

    assert outcome.is_ok
    assert "wrapped" in diagnostic.getvalue()
