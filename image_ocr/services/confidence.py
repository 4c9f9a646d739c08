"""
Накопитель уверенности распознавания.

Хранит только количество, сумму и минимум наблюдений - отдельные
значения не сохраняются, поэтому память не зависит от размера документа.
"""

from typing import Optional


class Confidence:
    """
    Потоковая свёртка оценок уверенности Tesseract (0-100).

    Пока не было ни одного наблюдения, среднее и минимум не определены
    (None, а не 0). Значения вне диапазона принимаются как есть.

    Attributes:
        count: количество наблюдений
        sum: сумма всех наблюдений
    """

    def __init__(self) -> None:
        self.count = 0
        self.sum = 0.0
        self._minimum: Optional[float] = None

    def observe(self, value: float) -> None:
        """Добавляет одно наблюдение."""
        self.count += 1
        self.sum += value
        if self._minimum is None:
            self._minimum = value
        else:
            self._minimum = min(self._minimum, value)

    def average(self) -> Optional[float]:
        if self.count == 0:
            return None
        return self.sum / self.count

    def minimum(self) -> Optional[float]:
        return self._minimum

    def __repr__(self) -> str:
        return (
            f"Confidence(count={self.count}, sum={self.sum}, "
            f"minimum={self._minimum})"
        )
