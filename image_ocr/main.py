"""
Image OCR Service - FastAPI приложение.

Принимает многостраничное изображение (TIFF, PDF), ставит его
в очередь пула воркеров и ждёт результат конвертации в текст.

Эндпоинты:
    POST /api/ocr/image/tiff/extractText - конвертация документа в текст
    GET  /healthcheck - проверка работоспособности
    GET  /api/ocr/statistics - состояние пула воркеров

Запуск:
    uvicorn image_ocr.main:app --host 0.0.0.0 --port 8080
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from image_ocr.config import settings
from image_ocr.schemas import (
    ConversionFailure,
    ConversionOutcome,
    ConversionResult,
    ErrorResponse,
    ExtractTextResponse,
    StatisticsResponse,
    UnexpectedFailure,
)
from image_ocr.services.dispatcher import WorkerPoolDispatcher
from image_ocr.services.ocr_service import ConversionService
from image_ocr.services.tesseract_engine import TesseractEngine

TIFF_EXTRACT_TEXT_URL = "/api/ocr/image/tiff/extractText"
STATISTICS_URL = "/api/ocr/statistics"
HEALTH_CHECK_URL = "/healthcheck"
HEALTH_CHECK_MESSAGE = "ALIVE"

TEXT_CONVERSION_ERROR_MESSAGE = "Ошибка конвертации изображения в текст"
GENERAL_SERVICE_ERROR_MESSAGE = "Непредвиденная ошибка при конвертации"
CONTROLLER_ERROR_MESSAGE = "Непредвиденная ошибка до начала конвертации"

# Настройка логгера
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [Image-OCR] %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ с нормальным отображением кириллицы (без \\uXXXX экранирования)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Создаёт сервис конвертации на время жизни процесса."""
    engine = TesseractEngine(
        oem=settings.ocr_oem,
        psm=settings.ocr_psm,
        tessdata_path=settings.tessdata_path,
    )
    service = ConversionService(
        dispatcher=WorkerPoolDispatcher(settings.thread_pool_size),
        engine=engine,
        language=settings.ocr_language,
    )
    app.state.conversion_service = service

    logger.info(
        f"Сервис запущен: instance={service.instance_id}, "
        f"воркеров={settings.thread_pool_size}, язык={settings.ocr_language}"
    )
    try:
        yield
    finally:
        service.shutdown()


# FastAPI приложение
app = FastAPI(
    title="Image OCR Service",
    description="Сервис конвертации многостраничных изображений в текст (Tesseract OCR)",
    version="1.0.0",
    default_response_class=UnicodeJSONResponse,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Логирует каждый запрос: метод, путь, статус и длительность."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = int((time.perf_counter() - start) * 1000)

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


@app.exception_handler(Exception)
async def handle_uncaught_exception(request: Request, exc: Exception) -> JSONResponse:
    """Ошибка до постановки документа в очередь (чтение файла и т.п.)."""
    logger.exception(f"Непредвиденная ошибка: {exc}")
    return UnicodeJSONResponse(
        status_code=500,
        content=ErrorResponse(error_message=CONTROLLER_ERROR_MESSAGE).model_dump(),
    )


@app.get(HEALTH_CHECK_URL, response_class=PlainTextResponse)
async def health_check() -> str:
    """
    Проверка работоспособности сервиса.

    Returns:
        str: ALIVE
    """
    logger.debug("Health check")
    return HEALTH_CHECK_MESSAGE


@app.get(STATISTICS_URL, response_model=StatisticsResponse)
async def get_statistics(request: Request) -> StatisticsResponse:
    """
    Статистика пула воркеров.

    Returns:
        StatisticsResponse: UUID экземпляра, глубина очереди, размер пула
    """
    return _get_service(request).statistics()


@app.post(TIFF_EXTRACT_TEXT_URL, response_model=ExtractTextResponse)
async def extract_text_from_tiff(
    request: Request,
    file: UploadFile = File(..., description="Многостраничное изображение (TIFF, PDF)"),
    response_id: str = Form(..., alias="responseId"),
    context_id: Optional[str] = Form(default=None, alias="contextId"),
):
    """
    Конвертирует документ в текст.

    Ставит документ в очередь пула воркеров и ждёт результата
    (ожидание выполняется в threadpool, event loop не блокируется).

    Args:
        file: файл изображения (multipart/form-data)
        response_id: идентификатор ответа от клиента
        context_id: ключ корреляции логов (по умолчанию = response_id)

    Returns:
        ExtractTextResponse: текст и статистика уверенности
        либо ErrorResponse со статусом 500 при ошибке конвертации

    Raises:
        HTTPException: 413 если файл больше max_file_size_mb
    """
    start_time = time.perf_counter()

    if not context_id or not context_id.strip():
        context_id = response_id

    logger.info(
        f"Получен файл: {file.filename}, Content-Type: {file.content_type}",
        extra={"context_id": context_id, "response_id": response_id},
    )

    file_bytes = await _read_file(file)
    service = _get_service(request)

    try:
        future = service.submit_conversion(context_id, response_id, file_bytes)
        outcome = await run_in_threadpool(
            service.wait_for,
            future,
            settings.conversion_timeout_seconds,
        )
    except Exception as e:
        outcome = UnexpectedFailure(cause=e)

    total_ms = int((time.perf_counter() - start_time) * 1000)
    logger.info(
        f"Файл {file.filename} обработан за {total_ms}ms",
        extra={"context_id": context_id, "total_processing_time_ms": total_ms},
    )

    return _outcome_to_response(outcome, total_ms)


def _outcome_to_response(outcome: ConversionOutcome, total_ms: int):
    """
    Преобразует исход конвертации в HTTP ответ.

    Args:
        outcome: результат или классифицированная ошибка
        total_ms: полное время обработки запроса

    Returns:
        ExtractTextResponse или UnicodeJSONResponse с кодом 500
    """
    if isinstance(outcome, ConversionResult):
        response = outcome.to_response()
        response.total_processing_time_ms = total_ms
        return response

    if isinstance(outcome, ConversionFailure):
        error = ErrorResponse(
            error_message=TEXT_CONVERSION_ERROR_MESSAGE,
            context_id=outcome.context_id,
            response_id=outcome.response_id,
        )
    else:
        logger.error(
            f"Непредвиденная ошибка конвертации: {outcome.cause!r}",
            extra={"context_id": outcome.context_id},
        )
        error = ErrorResponse(
            error_message=GENERAL_SERVICE_ERROR_MESSAGE,
            context_id=outcome.context_id,
            response_id=outcome.response_id,
        )

    return UnicodeJSONResponse(status_code=500, content=error.model_dump())


async def _read_file(file: UploadFile) -> bytes:
    """
    Читает загруженный файл и проверяет размер.

    Формат не проверяется: подходящий декодер подбирает источник страниц.

    Raises:
        HTTPException: 413 если файл больше max_file_size_mb
    """
    file_bytes = await file.read()

    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(file_bytes) > max_size:
        raise HTTPException(
            status_code=413,
            detail={
                "error": "file_too_large",
                "message": f"Файл слишком большой: {len(file_bytes)} байт, "
                f"максимум: {settings.max_file_size_mb} МБ",
            },
        )

    return file_bytes


def _get_service(request: Request) -> ConversionService:
    return request.app.state.conversion_service


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск Image OCR Service на {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
