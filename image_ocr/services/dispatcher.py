"""
Пул воркеров для задач конвертации.

Фиксированное число потоков разбирает общую FIFO очередь
(ThreadPoolExecutor). submit() не блокирует вызывающего и сразу
возвращает Future; ожидание результата - явный вызов future.result().

Глубина очереди (задачи, которые ещё не взял воркер) отдаётся
только для мониторинга: ограничения приёма по ней нет.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from image_ocr.errors import PoolShutdownError
from image_ocr.schemas import ConversionOutcome

logger = logging.getLogger(__name__)


class Task(Protocol):
    context_id: str

    def run(self, queue_wait_ms: int) -> ConversionOutcome:
        ...


class WorkerPoolDispatcher:
    """
    Диспетчер задач поверх ThreadPoolExecutor.

    Счётчик ожидающих задач уменьшается в момент, когда воркер
    начинает выполнение (там же измеряется время ожидания в очереди)
    либо когда задача отменена, не дождавшись воркера.
    """

    def __init__(self, pool_size: int, thread_name_prefix: str = "ocr-worker"):
        if pool_size < 1:
            raise ValueError(f"Размер пула должен быть >= 1, получено: {pool_size}")

        self._pool_size = pool_size
        self._executor = ThreadPoolExecutor(
            max_workers=pool_size,
            thread_name_prefix=thread_name_prefix,
        )
        self._lock = threading.Lock()
        self._pending = 0
        self._shutdown = False

    def submit(self, task: Task) -> "Future[ConversionOutcome]":
        """
        Ставит задачу в очередь.

        Args:
            task: задача с методом run(queue_wait_ms)

        Returns:
            Future: исход задачи; если пул остановлен - уже отклонённый
                Future с PoolShutdownError
        """
        enqueued_at = time.perf_counter()

        with self._lock:
            if self._shutdown:
                return _rejected(task)
            self._pending += 1
            try:
                future = self._executor.submit(self._execute, task, enqueued_at)
            except RuntimeError:
                self._pending -= 1
                return _rejected(task)
            depth = self._pending

        # Отменённая в очереди задача до _execute не дойдёт
        future.add_done_callback(self._forget_cancelled)

        logger.debug(
            f"Задача поставлена в очередь, глубина очереди {depth}",
            extra={"context_id": task.context_id, "queue_depth": depth},
        )
        return future

    def _execute(self, task: Task, enqueued_at: float) -> ConversionOutcome:
        with self._lock:
            self._pending -= 1
        queue_wait_ms = int((time.perf_counter() - enqueued_at) * 1000)
        return task.run(queue_wait_ms)

    def _forget_cancelled(self, future: Future) -> None:
        # cancel() срабатывает только до старта, поэтому _execute
        # для такой задачи счётчик уже не уменьшит
        if future.cancelled():
            with self._lock:
                self._pending -= 1

    def queue_depth(self) -> int:
        with self._lock:
            return self._pending

    def pool_size(self) -> int:
        return self._pool_size

    def shutdown(self, wait: bool = True) -> None:
        """Останавливает приём задач; уже поставленные задачи дорабатывают."""
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.info("Пул воркеров остановлен")


def _rejected(task: Task) -> Future:
    future: Future = Future()
    future.set_exception(PoolShutdownError("Пул воркеров остановлен"))
    logger.warning(
        "Задача отклонена: пул воркеров остановлен",
        extra={"context_id": task.context_id},
    )
    return future
