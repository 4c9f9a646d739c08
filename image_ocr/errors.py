"""
Исключения пайплайна конвертации.

Внутри задачи конвертации эти исключения превращаются в значения
ConversionFailure / UnexpectedFailure (см. schemas.py) и через границу
пула потоков уже не пробрасываются.
"""


class ConversionError(Exception):
    """Базовая ошибка конвертации документа в текст."""


class InputError(ConversionError):
    """Пустой или нечитаемый поток изображения, нет подходящего декодера."""


class EngineError(ConversionError):
    """Ошибка при обработке конкретной страницы (декодирование, Tesseract)."""


class PoolShutdownError(RuntimeError):
    """Пул воркеров остановлен и больше не принимает задачи."""
