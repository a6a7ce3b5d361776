"""
Scratch sinks: one temporary file per job capturing its combined output.
"""

from __future__ import annotations

import contextlib
import hashlib
import os
import tempfile
from pathlib import Path


def sink_prefix(command: str) -> str:
    """Content-based seed for the scratch file name."""
    return hashlib.md5(command.encode("utf-8"), usedforsecurity=False).hexdigest()


def allocate_sink(command: str, scratch_dir: Path | None = None) -> tuple[int, Path]:
    """Create a uniquely named scratch file. Returns an open fd and its path."""
    fd, name = tempfile.mkstemp(
        prefix=f"{sink_prefix(command)}.",
        suffix=".out",
        dir=str(scratch_dir) if scratch_dir is not None else None,
    )
    return fd, Path(name)


def read_sink(path: Path) -> str:
    return path.read_bytes().decode("utf-8", errors="replace")


def release_sink(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)
