from __future__ import annotations

from dataclasses import dataclass, field


def halve(value: float, floor: float) -> float:
    """
    Следующий интервал ожидания: половина от текущего, но не ниже пола

    :param value: текущий интервал в секундах
    :param floor: минимальный интервал в секундах
    """
    if value <= floor:
        return floor
    return max(value // 2, floor)


@dataclass(slots=True)
class BackoffState:
    """Состояние ожидания одного вызова поллера"""

    # текущий интервал ожидания в секундах
    current_wait: float
    # минимальный интервал, ниже которого не уходим
    min_wait: float
    # потолок суммарного ожидания в секундах
    max_cumulative: float
    # суммарное время ожидания неудачных попыток
    elapsed: float = field(default=0.0, init=False)
    # количество проверок условия
    attempts: int = field(default=0, init=False)

    def register_failure(self) -> None:
        """Учесть неудачную проверку: добавить использованное ожидание"""

        self.attempts += 1
        self.elapsed += self.current_wait

    def exhausted(self) -> bool:
        """Превышен ли потолок суммарного ожидания"""
        return self.elapsed > self.max_cumulative

    def advance(self) -> float:
        """Уменьшить интервал ожидания вдвое в сторону минимума"""

        self.current_wait = halve(self.current_wait, self.min_wait)
        return self.current_wait
