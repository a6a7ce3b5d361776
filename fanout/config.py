from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollerSettings(BaseModel):
    """Defaults for `fanout wait` when the caller omits them."""

    max_total_wait_sec: float = Field(default=300.0, ge=0)
    initial_wait_sec: float = Field(default=40.0, ge=0)
    min_wait_sec: float = Field(default=5.0, ge=0)


class PoolSettings(BaseModel):

    poll_interval_sec: float = Field(default=1.0, gt=0)  # pause between liveness sweeps
    job_timeout_sec: float | None = Field(default=None, gt=0)  # None: jobs may run forever
    scratch_dir: Path | None = Field(default=None)  # None: system temp dir
    stop_timeout_sec: float = Field(default=5.0, gt=0)  # SIGTERM -> SIGKILL grace
    kill_timeout_sec: float = Field(default=2.0, gt=0)


class LogSettings(BaseModel):

    level: str = Field(default="INFO")
    json_output: bool = Field(default=False, alias="json")


class AppConfig(BaseSettings):
    """
    Main application settings.

    Source of truth:
      1) YAML file (structured config)
      2) Flat FANOUT_* env overrides, merged explicitly in from_yaml().
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="",  # no automatic prefixing
        extra="ignore",
        case_sensitive=False,
    )

    poller: PollerSettings = Field(default_factory=PollerSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    logging: LogSettings = Field(default_factory=LogSettings)

    # ---------- YAML loader with explicit env merge ----------
    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """
        Load config from YAML, then overlay flat env overrides.
        Search order if path is not provided:
          ./fanout.yaml
          ~/.config/fanout/config.yaml
        """
        candidates: list[Path] = []
        if path is not None:
            candidates.append(path)
        else:
            candidates.extend(
                [Path("fanout.yaml"), Path.home() / ".config" / "fanout" / "config.yaml"]
            )

        raw: dict[str, object] = {}
        for p in candidates:
            if p.exists():
                text = p.read_text(encoding="utf-8")
                loaded = yaml.safe_load(text) or {}
                if not isinstance(loaded, dict):
                    raise ValueError(f"YAML at {p} must define a mapping at the root")
                raw = loaded
                break

        cfg = cls.model_validate(raw)

        def _get_env(*names: str) -> str | None:
            for n in names:
                v = os.getenv(n)
                if v is not None and v != "":
                    return v
            return None

        poll_interval = _get_env("FANOUT_POLL_INTERVAL_SEC")
        if poll_interval is not None:
            cfg.pool.poll_interval_sec = _positive_float("FANOUT_POLL_INTERVAL_SEC", poll_interval)

        job_timeout = _get_env("FANOUT_JOB_TIMEOUT_SEC")
        if job_timeout is not None:
            cfg.pool.job_timeout_sec = _positive_float("FANOUT_JOB_TIMEOUT_SEC", job_timeout)

        scratch_dir = _get_env("FANOUT_SCRATCH_DIR")
        if scratch_dir is not None:
            cfg.pool.scratch_dir = Path(scratch_dir)

        log_level = _get_env("FANOUT_LOG_LEVEL")
        if log_level is not None:
            cfg.logging.level = log_level.strip().upper()

        json_raw = _get_env("FANOUT_LOG_JSON")
        if json_raw is not None:
            truthy = {"1", "true", "yes", "on"}
            cfg.logging.json_output = json_raw.strip().lower() in truthy

        return cfg


def _positive_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


__all__ = [
    "AppConfig",
    "LogSettings",
    "PollerSettings",
    "PoolSettings",
]
