"""
Задача конвертации документа в текст.

Координирует источник страниц, OCR движок и накопитель уверенности
для одного документа:
    QUEUED -> RUNNING -> SUCCEEDED | FAILED

Ошибки не пробрасываются наружу, а возвращаются значениями
(ConversionFailure / UnexpectedFailure), чтобы через Future
всегда приходил один из трёх исходов.
"""

import logging
import time
from typing import Callable

from image_ocr.errors import ConversionError, InputError
from image_ocr.schemas import (
    ConversionFailure,
    ConversionOutcome,
    ConversionRequest,
    ConversionResult,
    FailureKind,
    TaskState,
    UnexpectedFailure,
)
from image_ocr.services.page_source import PageSource, open_page_source
from image_ocr.services.tesseract_engine import OcrEngine, acquire_handle

logger = logging.getLogger(__name__)


class ConversionTask:
    """
    Одна единица работы: многостраничный документ -> текст.

    Задача владеет дескриптором движка и накопителем уверенности
    на всё время выполнения и не делит их с другими задачами.

    Attributes:
        request: запрос на конвертацию
        state: текущее состояние задачи
    """

    def __init__(
        self,
        request: ConversionRequest,
        engine: OcrEngine,
        language: str,
        page_source_factory: Callable[[bytes], PageSource] = open_page_source,
    ):
        self.request = request
        self.state = TaskState.QUEUED
        self._engine = engine
        self._language = language
        self._page_source_factory = page_source_factory

    @property
    def context_id(self) -> str:
        return self.request.context_id

    def run(self, queue_wait_ms: int) -> ConversionOutcome:
        """
        Выполняет конвертацию документа.

        Алгоритм:
            1. Открытие источника страниц (ошибка -> FAILED, минуя RUNNING)
            2. Инициализация дескриптора Tesseract
            3. Последовательная обработка страниц
            4. Освобождение дескриптора на любом пути выхода

        Args:
            queue_wait_ms: время ожидания задачи в очереди пула

        Returns:
            ConversionOutcome: результат или классифицированная ошибка
        """
        start = time.perf_counter()
        result = ConversionResult(
            context_id=self.request.context_id,
            response_id=self.request.response_id,
            queue_wait_ms=queue_wait_ms,
        )

        logger.info(
            f"Конвертация файла в текст, ожидание в очереди {queue_wait_ms}ms",
            extra={"context_id": self.context_id, "queue_wait_ms": queue_wait_ms},
        )

        try:
            with self._page_source_factory(self.request.image_bytes) as source:
                self.state = TaskState.RUNNING
                text = self._extract_text(source, result)
        except ConversionError as e:
            return self._fail(result, start, e)
        except Exception as e:
            self._finish_failed(result, start)
            logger.exception(
                f"Непредвиденная ошибка конвертации: {e}",
                extra={"context_id": self.context_id},
            )
            return UnexpectedFailure(
                cause=e,
                context_id=self.request.context_id,
                response_id=self.request.response_id,
            )

        result.complete_success(text, _elapsed_ms(start))
        self.state = TaskState.SUCCEEDED

        logger.info("Метаданные документа", extra=result.metadata())
        return result

    def _extract_text(self, source: PageSource, result: ConversionResult) -> str:
        """Обрабатывает все страницы по порядку и возвращает общий текст."""
        total_pages = source.page_count
        logger.debug(
            f"Страниц к обработке: {total_pages}",
            extra={"context_id": self.context_id, "page_count": total_pages},
        )

        page_texts = []
        with acquire_handle(self._engine, self._language) as handle:
            for raster in source.pages():
                # Страница учитывается до распознавания: при ошибке
                # в ней pages_processed покажет, на какой странице упали
                result.add_page()

                percent = raster.index * 100 // total_pages if total_pages else 0
                logger.info(
                    f"Обработано {percent}%",
                    extra={"context_id": self.context_id, "percent_complete": percent},
                )

                page = self._engine.extract_page(
                    handle,
                    raster.data,
                    raster.width,
                    raster.height,
                    raster.bits_per_pixel,
                    raster.row_stride,
                )

                for confidence in page.confidences:
                    result.add_confidence(confidence)
                    logger.debug(
                        f"Уверенность строки {confidence:.1f}",
                        extra={"context_id": self.context_id, "confidence": confidence},
                    )

                if page.blank_lines:
                    logger.debug(
                        f"стр.{raster.index + 1}: пустых строк {page.blank_lines}",
                        extra={"context_id": self.context_id, "blank_lines": page.blank_lines},
                    )
                if not page.confidences:
                    logger.debug(
                        f"стр.{raster.index + 1}: распознанных строк нет",
                        extra={"context_id": self.context_id, "page": raster.index + 1},
                    )

                page_texts.append(page.text)

        return "".join(page_texts)

    def _fail(
        self,
        result: ConversionResult,
        start: float,
        error: ConversionError,
    ) -> ConversionFailure:
        kind = FailureKind.INPUT if isinstance(error, InputError) else FailureKind.ENGINE
        self._finish_failed(result, start)

        logger.error(
            f"Ошибка конвертации ({kind.value}) после {result.pages_processed} стр.: {error}",
            extra={
                "context_id": self.context_id,
                "response_id": self.request.response_id,
                "pages_processed": result.pages_processed,
            },
        )

        return ConversionFailure(
            context_id=self.request.context_id,
            response_id=self.request.response_id,
            kind=kind,
            cause=error,
            result=result,
        )

    def _finish_failed(self, result: ConversionResult, start: float) -> None:
        result.complete_failure(_elapsed_ms(start))
        self.state = TaskState.FAILED


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
