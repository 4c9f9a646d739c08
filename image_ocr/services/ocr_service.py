"""
Сервис конвертации изображений в текст.

Создаётся один раз при старте приложения и передаётся в обработчики
запросов. Хранит состояние уровня процесса:
    - пул воркеров
    - OCR движок
    - UUID экземпляра (для статистики)
"""

import logging
import uuid
from concurrent.futures import Future
from typing import Callable, Optional

from image_ocr.schemas import ConversionOutcome, ConversionRequest, StatisticsResponse
from image_ocr.services.conversion_task import ConversionTask
from image_ocr.services.dispatcher import WorkerPoolDispatcher
from image_ocr.services.page_source import PageSource, open_page_source
from image_ocr.services.tesseract_engine import OcrEngine

logger = logging.getLogger(__name__)


class ConversionService:
    """
    Точка входа в пайплайн конвертации.

    Attributes:
        dispatcher: пул воркеров
        engine: OCR движок
        language: языки Tesseract для всех задач
        instance_id: UUID экземпляра, назначается один раз на процесс
    """

    def __init__(
        self,
        dispatcher: WorkerPoolDispatcher,
        engine: OcrEngine,
        language: str,
        instance_id: Optional[str] = None,
        page_source_factory: Callable[[bytes], PageSource] = open_page_source,
    ):
        self.dispatcher = dispatcher
        self.engine = engine
        self.language = language
        self.instance_id = instance_id or str(uuid.uuid4())
        self._page_source_factory = page_source_factory

    def submit_conversion(
        self,
        context_id: str,
        response_id: str,
        image_bytes: bytes,
    ) -> "Future[ConversionOutcome]":
        """
        Ставит документ в очередь на конвертацию.

        Формат и уникальность идентификаторов не проверяются.

        Args:
            context_id: ключ корреляции логов
            response_id: идентификатор ответа от клиента
            image_bytes: содержимое файла

        Returns:
            Future: исход конвертации
        """
        request = ConversionRequest(
            context_id=context_id,
            response_id=response_id,
            image_bytes=image_bytes,
        )
        task = ConversionTask(
            request,
            engine=self.engine,
            language=self.language,
            page_source_factory=self._page_source_factory,
        )
        return self.dispatcher.submit(task)

    @staticmethod
    def wait_for(
        future: "Future[ConversionOutcome]",
        timeout: Optional[float] = None,
    ) -> ConversionOutcome:
        """
        Блокирующее ожидание исхода конвертации.

        Args:
            future: результат submit_conversion
            timeout: секунд ожидания (None - без ограничения)

        Returns:
            ConversionOutcome: результат или классифицированная ошибка

        Raises:
            PoolShutdownError: задача отклонена остановленным пулом
            TimeoutError: истёк timeout (задача при этом не отменяется)
        """
        return future.result(timeout=timeout)

    def statistics(self) -> StatisticsResponse:
        return StatisticsResponse(
            instance_uuid=self.instance_id,
            queue_size=self.dispatcher.queue_depth(),
            tesseract_thread_pool_size=self.dispatcher.pool_size(),
        )

    def shutdown(self) -> None:
        logger.info(f"Остановка сервиса конвертации {self.instance_id}")
        self.dispatcher.shutdown(wait=True)
