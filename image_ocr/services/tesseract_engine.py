"""
Адаптер OCR движка Tesseract.

Тонкая прослойка над pytesseract с контрактом:
    - initialize(language) -> TesseractHandle
    - extract_page(handle, buffer, width, height, bits_per_pixel, row_stride)
      -> PageExtraction (текст + уверенность по строкам)
    - release(handle)

Дескриптор хранит состояние движка одной задачи и не должен
использоваться из нескольких задач одновременно: каждая задача
создаёт и освобождает свой дескриптор (см. acquire_handle).
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import pytesseract
from PIL import Image

from image_ocr.errors import EngineError
from image_ocr.schemas import PageExtraction

logger = logging.getLogger(__name__)

# Режим Pillow для сырого буфера по глубине цвета
MODES_BY_BITS = {
    1: "1",
    8: "L",
    24: "RGB",
    32: "RGBA",
}

# Уровень строки текста в выводе image_to_data (1 - страница, 5 - слово)
LINE_LEVEL = 4
WORD_LEVEL = 5


@dataclass
class TesseractHandle:
    """
    Дескриптор инициализированного движка.

    Attributes:
        language: языки в формате Tesseract (например "eng" или "rus+eng")
        config: строка параметров Tesseract (--oem, --psm, --tessdata-dir)
        released: флаг освобождения дескриптора
    """

    language: str
    config: str
    released: bool = False


class OcrEngine(ABC):
    """Контракт OCR движка, которым пользуется задача конвертации."""

    @abstractmethod
    def initialize(self, language: str):
        raise NotImplementedError

    @abstractmethod
    def extract_page(
        self,
        handle,
        buffer: bytes,
        width: int,
        height: int,
        bits_per_pixel: int,
        row_stride: int,
    ) -> PageExtraction:
        raise NotImplementedError

    @abstractmethod
    def release(self, handle) -> None:
        raise NotImplementedError


@contextmanager
def acquire_handle(engine: OcrEngine, language: str) -> Iterator:
    """
    Инициализирует дескриптор и гарантированно освобождает его.

    Освобождение выполняется ровно один раз на любом пути выхода:
    успех, ошибка страницы или непредвиденное исключение.
    """
    handle = engine.initialize(language)
    try:
        yield handle
    finally:
        engine.release(handle)


class TesseractEngine(OcrEngine):
    """
    Tesseract через pytesseract.

    Один вызов image_to_data на страницу: из него собирается и текст,
    и уверенность по строкам.
    """

    def __init__(self, oem: int, psm: int, tessdata_path: Optional[str] = None):
        self.oem = oem
        self.psm = psm
        self.tessdata_path = tessdata_path

    def _base_config(self) -> str:
        if self.tessdata_path:
            return f'--tessdata-dir "{self.tessdata_path}"'
        return ""

    def initialize(self, language: str) -> TesseractHandle:
        """
        Проверяет наличие языковых моделей и создаёт дескриптор.

        Args:
            language: языки через "+" (например "rus+eng")

        Returns:
            TesseractHandle: дескриптор для обработки страниц

        Raises:
            EngineError: Tesseract недоступен или нет обученной модели языка
        """
        base_config = self._base_config()
        try:
            available = set(pytesseract.get_languages(config=base_config))
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise EngineError(f"Tesseract недоступен: {e}") from e

        missing = [lang for lang in language.split("+") if lang not in available]
        if missing:
            raise EngineError(f"Нет обученных моделей для языков: {missing}")

        config = f"--oem {self.oem} --psm {self.psm} {base_config}".strip()
        return TesseractHandle(language=language, config=config)

    def extract_page(
        self,
        handle: TesseractHandle,
        buffer: bytes,
        width: int,
        height: int,
        bits_per_pixel: int,
        row_stride: int,
    ) -> PageExtraction:
        """
        Распознаёт текст одной страницы.

        Args:
            handle: дескриптор движка
            buffer: сырой растр страницы
            width: ширина в пикселях
            height: высота в пикселях
            bits_per_pixel: глубина цвета (1, 8, 24, 32)
            row_stride: байт на строку растра

        Returns:
            PageExtraction: текст страницы и уверенность по строкам

        Raises:
            EngineError: некорректный растр или ошибка Tesseract
        """
        self._check_handle(handle)

        mode = MODES_BY_BITS.get(bits_per_pixel)
        if mode is None:
            raise EngineError(f"Неподдерживаемая глубина цвета: {bits_per_pixel} бит")

        try:
            image = Image.frombuffer(
                mode, (width, height), buffer, "raw", mode, row_stride, 1
            )
        except ValueError as e:
            raise EngineError(f"Некорректный растр страницы: {e}") from e

        try:
            data = pytesseract.image_to_data(
                image,
                lang=handle.language,
                config=handle.config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise EngineError(f"Ошибка Tesseract: {e}") from e

        text, confidences, blank_lines = _parse_page_data(data)

        return PageExtraction(
            text=text + "\n" if text else "",
            confidences=confidences,
            blank_lines=blank_lines,
        )

    def release(self, handle: TesseractHandle) -> None:
        self._check_handle(handle)
        handle.released = True

    @staticmethod
    def _check_handle(handle: TesseractHandle) -> None:
        if handle.released:
            raise EngineError("Дескриптор Tesseract уже освобождён")


def _parse_page_data(data: dict) -> tuple[str, list[float], int]:
    """
    Разбирает вывод image_to_data за один проход.

    Текст собирается по структуре страницы:
        - Слова на одной строке (line_num) соединяются пробелами
        - Разные строки в одном блоке - новая строка (\\n)
        - Разные блоки - пустая строка между ними (\\n\\n)

    Уверенность строки: среднее по её словам (conf >= 0, непустой текст).
    Это приближение: Tesseract считает уверенность строки по символам,
    поэтому длинные слова у него весят больше. Строка без распознанных
    символов считается пустой и наблюдения не даёт.

    Args:
        data: словарь от pytesseract.image_to_data()

    Returns:
        tuple: (текст, уверенность по строкам, количество пустых строк)
    """
    # {(block, par, line): ([слова], [conf слов])}
    lines: dict[tuple, tuple[list[str], list[float]]] = {}

    for i in range(len(data["text"])):
        level = int(data["level"][i])
        if level not in (LINE_LEVEL, WORD_LEVEL):
            continue

        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        words, word_confs = lines.setdefault(key, ([], []))
        if level == LINE_LEVEL:
            continue

        word = str(data["text"][i]).strip()
        if not word:
            continue
        words.append(word)

        conf = float(data["conf"][i])
        if conf >= 0:
            word_confs.append(conf)

    blocks: dict = {}
    confidences = []
    blank_lines = 0

    for key in sorted(lines):
        words, word_confs = lines[key]
        if words:
            blocks.setdefault(key[0], []).append(" ".join(words))
        if word_confs:
            confidences.append(sum(word_confs) / len(word_confs))
        else:
            blank_lines += 1

    text = "\n\n".join("\n".join(blocks[block]) for block in sorted(blocks))
    return text, confidences, blank_lines
