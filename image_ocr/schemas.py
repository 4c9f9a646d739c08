"""
Схемы данных Image OCR сервиса.

Включает:
    - Pydantic модели для API (результат конвертации, ошибка, статистика)
    - Внутренние dataclass'ы пайплайна (запрос, растр страницы, результат)
    - Классифицированные ошибки, которые задача возвращает вызывающему коду
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel

from image_ocr.services.confidence import Confidence


# =============================================================================
# Pydantic модели для API
# =============================================================================


class ExtractTextResponse(BaseModel):
    """
    Ответ API с результатом конвертации документа.

    Attributes:
        context_id: идентификатор контекста (для корреляции логов)
        response_id: идентификатор ответа, переданный клиентом
        extracted_text: текст всех страниц в порядке следования
        pages_processed: количество обработанных страниц
        average_confidence_score: средняя уверенность по строкам (None если строк нет)
        lowest_confidence_score: минимальная уверенность по строкам
        ocr_processing_time_ms: время самой конвертации в мс
        time_on_executor_queue_ms: время ожидания в очереди пула в мс
        total_processing_time_ms: полное время обработки запроса в мс
    """

    context_id: str
    response_id: str
    extracted_text: str
    pages_processed: int
    average_confidence_score: Optional[float] = None
    lowest_confidence_score: Optional[float] = None
    ocr_processing_time_ms: int = 0
    time_on_executor_queue_ms: int = 0
    total_processing_time_ms: int = 0


class ErrorResponse(BaseModel):
    """
    Ответ API при ошибке.

    Идентификаторы могут отсутствовать, если ошибка произошла
    вне отслеживаемой задачи конвертации.

    Attributes:
        error_message: описание ошибки
        context_id: идентификатор контекста (если известен)
        response_id: идентификатор ответа (если известен)
    """

    error_message: str
    context_id: Optional[str] = None
    response_id: Optional[str] = None


class StatisticsResponse(BaseModel):
    """
    Статистика пула воркеров.

    Attributes:
        instance_uuid: UUID экземпляра сервиса (назначается при старте процесса)
        queue_size: задачи в очереди, ещё не взятые воркером
        tesseract_thread_pool_size: размер пула воркеров
    """

    instance_uuid: str
    queue_size: int
    tesseract_thread_pool_size: int


# =============================================================================
# Внутренние dataclass'ы для пайплайна
# =============================================================================


class TaskState(str, Enum):
    """Состояние задачи конвертации."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Вид ошибки конвертации: входные данные или обработка страницы."""

    INPUT = "input"
    ENGINE = "engine"


@dataclass(frozen=True)
class ConversionRequest:
    """
    Запрос на конвертацию одного документа.

    Attributes:
        context_id: ключ корреляции (может совпадать с response_id)
        response_id: идентификатор, переданный клиентом (уникальность не проверяется)
        image_bytes: содержимое файла
    """

    context_id: str
    response_id: str
    image_bytes: bytes = field(repr=False)


@dataclass
class PageRaster:
    """
    Декодированная страница в виде сырого растра.

    Attributes:
        index: номер страницы (начинается с 0)
        data: пиксели построчно
        width: ширина в пикселях
        height: высота в пикселях
        bits_per_pixel: глубина цвета (1, 8, 24 или 32)
        row_stride: байт на строку растра
    """

    index: int
    data: bytes = field(repr=False)
    width: int
    height: int
    bits_per_pixel: int
    row_stride: int


@dataclass
class PageExtraction:
    """
    Результат распознавания одной страницы.

    Attributes:
        text: распознанный текст страницы
        confidences: уверенность по каждой распознанной строке (0-100)
        blank_lines: строки без распознанных символов (наблюдений не дают)
    """

    text: str
    confidences: list[float] = field(default_factory=list)
    blank_lines: int = 0


@dataclass
class ConversionResult:
    """
    Результат конвертации документа.

    Создаётся при старте задачи, поля накапливаются по мере обработки
    страниц. После перехода в конечное состояние изменения запрещены.

    Attributes:
        context_id: идентификатор контекста
        response_id: идентификатор ответа
        queue_wait_ms: время ожидания в очереди пула
        pages_processed: количество страниц, обработка которых была начата
        confidence: накопитель уверенности по строкам
        extracted_text: текст всех страниц
        status: состояние (RUNNING, SUCCEEDED или FAILED)
        processing_time_ms: время конвертации без учёта очереди
    """

    context_id: str
    response_id: str
    queue_wait_ms: int = 0
    pages_processed: int = 0
    confidence: Confidence = field(default_factory=Confidence)
    extracted_text: str = ""
    status: TaskState = TaskState.RUNNING
    processing_time_ms: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskState.SUCCEEDED, TaskState.FAILED)

    def add_page(self) -> None:
        self._check_mutable()
        self.pages_processed += 1

    def add_confidence(self, value: float) -> None:
        self._check_mutable()
        self.confidence.observe(value)

    def complete_success(self, text: str, processing_time_ms: int) -> None:
        self._check_mutable()
        self.extracted_text = text
        self.processing_time_ms = processing_time_ms
        self.status = TaskState.SUCCEEDED

    def complete_failure(self, processing_time_ms: int) -> None:
        self._check_mutable()
        self.processing_time_ms = processing_time_ms
        self.status = TaskState.FAILED

    def metadata(self) -> dict:
        """
        Сводные данные документа для структурированного лога.

        Returns:
            dict: страницы, статистика уверенности, тайминги
        """
        return {
            "context_id": self.context_id,
            "response_id": self.response_id,
            "pages_processed": self.pages_processed,
            "average_confidence_score": self.confidence.average(),
            "lowest_confidence_score": self.confidence.minimum(),
            "confidence_data_points": self.confidence.count,
            "queue_wait_ms": self.queue_wait_ms,
            "processing_time_ms": self.processing_time_ms,
        }

    def to_response(self) -> ExtractTextResponse:
        """Преобразует результат в модель ответа API."""
        return ExtractTextResponse(
            context_id=self.context_id,
            response_id=self.response_id,
            extracted_text=self.extracted_text,
            pages_processed=self.pages_processed,
            average_confidence_score=self.confidence.average(),
            lowest_confidence_score=self.confidence.minimum(),
            ocr_processing_time_ms=self.processing_time_ms,
            time_on_executor_queue_ms=self.queue_wait_ms,
        )

    def _check_mutable(self) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"Результат {self.response_id} уже в состоянии {self.status.value}"
            )


@dataclass
class ConversionFailure:
    """
    Ошибка внутри пайплайна конвертации.

    Идентификаторы известны и возвращаются клиенту. Частичный результат
    сохраняется для диагностики (pages_processed).

    Attributes:
        context_id: идентификатор контекста
        response_id: идентификатор ответа
        kind: INPUT (входные данные) или ENGINE (обработка страницы)
        cause: исходное исключение
        result: частичный результат на момент ошибки
    """

    context_id: str
    response_id: str
    kind: FailureKind
    cause: BaseException
    result: ConversionResult

    @property
    def pages_processed(self) -> int:
        return self.result.pages_processed


@dataclass
class UnexpectedFailure:
    """
    Непредвиденная ошибка (до конвертации или вне отслеживаемой задачи).

    Attributes:
        cause: исходное исключение
        context_id: идентификатор контекста (если известен)
        response_id: идентификатор ответа (если известен)
    """

    cause: BaseException
    context_id: Optional[str] = None
    response_id: Optional[str] = None


ConversionOutcome = Union[ConversionResult, ConversionFailure, UnexpectedFailure]
