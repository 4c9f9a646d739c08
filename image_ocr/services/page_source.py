"""
Источник страниц многостраничного документа.

Декодирует контейнер изображения и отдаёт страницы по одной
в виде сырых растров (PageRaster):
    - TIFF и другие многокадровые форматы - через Pillow
    - PDF - через pdf2image (pdftoppm), каждая страница рендерится отдельно

Количество страниц известно сразу после открытия, сами страницы
декодируются лениво, строго по порядку.
"""

import io
import logging
from abc import ABC, abstractmethod
from typing import Iterator

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFPageCountError, PDFSyntaxError
from pdf2image.pdf2image import pdfinfo_from_bytes
from PIL import Image, UnidentifiedImageError

from image_ocr.config import settings
from image_ocr.errors import EngineError, InputError
from image_ocr.schemas import PageRaster

logger = logging.getLogger(__name__)

# Глубина цвета для режимов Pillow, которые Tesseract принимает напрямую.
# Остальные режимы (P, CMYK, I;16, ...) конвертируются в RGB.
BITS_PER_PIXEL = {
    "1": 1,
    "L": 8,
    "RGB": 24,
    "RGBA": 32,
}

# Что бросает Pillow на битых заголовках кадров: TIFF плагин
# сообщает о них через SyntaxError и TypeError, а не OSError
DECODE_ERRORS = (OSError, EOFError, SyntaxError, TypeError, ValueError)


def to_raster(index: int, image: Image.Image) -> PageRaster:
    """
    Преобразует изображение Pillow в сырой растр.

    Args:
        index: номер страницы (с 0)
        image: декодированная страница

    Returns:
        PageRaster: пиксели, размеры, глубина цвета и длина строки
    """
    if image.mode not in BITS_PER_PIXEL:
        image = image.convert("RGB")

    width, height = image.size
    bits_per_pixel = BITS_PER_PIXEL[image.mode]
    # Для 1-битных изображений строка выравнивается до целого байта
    row_stride = (width * bits_per_pixel + 7) // 8

    return PageRaster(
        index=index,
        data=image.tobytes(),
        width=width,
        height=height,
        bits_per_pixel=bits_per_pixel,
        row_stride=row_stride,
    )


class PageSource(ABC):
    """
    Конечная, упорядоченная последовательность страниц документа.

    Используется как контекстный менеджер: close() освобождает
    декодер независимо от исхода обработки.
    """

    page_count: int = 0

    @abstractmethod
    def pages(self) -> Iterator[PageRaster]:
        """Отдаёт страницы по порядку, декодируя каждую по запросу."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "PageSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ImagePageSource(PageSource):
    """Многокадровое изображение (TIFF, GIF, ...) через Pillow."""

    def __init__(self, image: Image.Image, page_count: int = 1):
        self._image = image
        self.page_count = page_count

    def pages(self) -> Iterator[PageRaster]:
        for index in range(self.page_count):
            try:
                self._image.seek(index)
                frame = self._image.copy()
            except DECODE_ERRORS as e:
                raise EngineError(f"Ошибка декодирования страницы {index + 1}: {e}") from e
            yield to_raster(index, frame)

    def close(self) -> None:
        self._image.close()


class PdfPageSource(PageSource):
    """
    PDF документ через pdf2image.

    Количество страниц берётся из pdfinfo без рендеринга,
    каждая страница рендерится отдельным вызовом pdftoppm.
    """

    def __init__(self, pdf_bytes: bytes, dpi: int):
        self._pdf_bytes = pdf_bytes
        self._dpi = dpi
        try:
            info = pdfinfo_from_bytes(pdf_bytes)
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise InputError(f"Не удалось прочитать PDF: {e}") from e
        self.page_count = int(info.get("Pages", 0))

    def pages(self) -> Iterator[PageRaster]:
        for index in range(self.page_count):
            page_number = index + 1
            try:
                images = convert_from_bytes(
                    self._pdf_bytes,
                    dpi=self._dpi,
                    first_page=page_number,
                    last_page=page_number,
                )
            except (PDFPageCountError, PDFSyntaxError, OSError) as e:
                raise EngineError(f"Ошибка рендеринга страницы {page_number}: {e}") from e

            if not images:
                raise EngineError(f"pdftoppm не вернул страницу {page_number}")

            yield to_raster(index, images[0])


def open_page_source(data: bytes) -> PageSource:
    """
    Открывает документ и подбирает подходящий декодер.

    Приоритет выбора:
        1. Сигнатура %PDF - PdfPageSource
        2. Любой формат, который распознаёт Pillow - ImagePageSource

    Args:
        data: содержимое файла

    Returns:
        PageSource: источник страниц

    Raises:
        InputError: пустой поток или нет подходящего декодера
    """
    if not data:
        raise InputError("Пустой входной поток изображения")

    if data.startswith(b"%PDF"):
        return PdfPageSource(data, dpi=settings.render_dpi)

    try:
        image = Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, OSError) as e:
        raise InputError("Не найден декодер для содержимого файла") from e

    # n_frames проходит по заголовкам всех кадров, битый заголовок
    # в середине файла обнаруживается уже здесь
    try:
        page_count = getattr(image, "n_frames", 1)
    except DECODE_ERRORS as e:
        image.close()
        raise InputError(f"Повреждённый контейнер {image.format}: {e}") from e

    logger.debug(f"Декодер: {image.format}, кадров: {page_count}")
    return ImagePageSource(image, page_count)
