from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, TypeAlias


@dataclass(slots=True, frozen=True)
class Success:
    message: str

    is_ok: Literal[True] = True


@dataclass(slots=True, frozen=True)
class TimeoutExceeded:
    """Условие так и не выполнилось за отведенное время"""

    # описание проверяемого условия
    description: str
    # потолок суммарного ожидания в секундах
    max_total_wait: float
    # фактически набранное время ожидания
    elapsed: float
    # количество выполненных проверок
    attempts: int

    is_ok: Literal[False] = False

    @property
    def error(self) -> str:
        return (
            f"Maximum of {self.max_total_wait:g} secs is reached for "
            f"<{self.description}> to execute successfully."
        )


@dataclass(slots=True, frozen=True)
class PartialFailure:
    """Часть задач пакета завершилась неуспешно"""

    # количество неуспешных задач
    failed: int
    # всего задач в пакете
    total: int

    is_ok: Literal[False] = False

    @property
    def error(self) -> str:
        return f"{self.failed} of {self.total} jobs failed"


PollResult: TypeAlias = Success | TimeoutExceeded
BatchOutcome: TypeAlias = Success | PartialFailure
