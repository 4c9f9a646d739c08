"""
Image OCR Service - конвертация многостраничных изображений в текст.

Документ ставится в очередь пула воркеров, каждая задача
последовательно распознаёт страницы через Tesseract и возвращает
текст со статистикой уверенности по строкам.
"""

from image_ocr.config import settings
from image_ocr.schemas import (
    ConversionFailure,
    ConversionResult,
    ErrorResponse,
    ExtractTextResponse,
    StatisticsResponse,
    UnexpectedFailure,
)

__all__ = [
    "settings",
    "ConversionResult",
    "ConversionFailure",
    "UnexpectedFailure",
    "ExtractTextResponse",
    "ErrorResponse",
    "StatisticsResponse",
]
