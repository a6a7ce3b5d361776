from __future__ import annotations

import os

import pytest


# ---- Env cleanup ----
@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("FANOUT_"):
            monkeypatch.delenv(key, raising=False)
