"""Тесты источника страниц: TIFF через Pillow и PDF через pdf2image."""

import pytest
from PIL import Image

from fakes import ScriptedEngine, make_tiff
from image_ocr.errors import EngineError, InputError
from image_ocr.schemas import ConversionFailure, ConversionRequest, FailureKind
from image_ocr.services import page_source
from image_ocr.services.conversion_task import ConversionTask
from image_ocr.services.page_source import (
    ImagePageSource,
    PdfPageSource,
    open_page_source,
    to_raster,
)


def test_multipage_tiff_pages_in_order():
    data = make_tiff([(30, 10), (40, 20), (50, 30)])

    with open_page_source(data) as source:
        assert isinstance(source, ImagePageSource)
        assert source.page_count == 3
        rasters = list(source.pages())

    assert [r.index for r in rasters] == [0, 1, 2]
    assert [(r.width, r.height) for r in rasters] == [(30, 10), (40, 20), (50, 30)]
    for raster in rasters:
        assert raster.bits_per_pixel == 8
        assert raster.row_stride == raster.width
        assert len(raster.data) == raster.row_stride * raster.height


def test_pages_are_lazy():
    data = make_tiff([(10, 10), (10, 10)])

    with open_page_source(data) as source:
        pages = source.pages()
        first = next(pages)

    assert first.index == 0


def test_rgb_tiff_raster():
    data = make_tiff([(7, 3)], mode="RGB")

    with open_page_source(data) as source:
        (raster,) = list(source.pages())

    assert raster.bits_per_pixel == 24
    assert raster.row_stride == 21
    assert len(raster.data) == 21 * 3


def test_bilevel_raster_stride_rounded_up():
    raster = to_raster(0, Image.new("1", (10, 4), color="white"))

    assert raster.bits_per_pixel == 1
    assert raster.row_stride == 2
    assert len(raster.data) == 2 * 4


def test_palette_image_converted_to_rgb():
    raster = to_raster(0, Image.new("P", (5, 5)))

    assert raster.bits_per_pixel == 24
    assert raster.row_stride == 15


def test_empty_input_rejected():
    with pytest.raises(InputError):
        open_page_source(b"")


def test_unknown_format_rejected():
    with pytest.raises(InputError):
        open_page_source(b"definitely not an image")


def test_pdf_pages_rendered_one_by_one(monkeypatch):
    rendered = []

    def fake_convert(pdf_bytes, dpi, first_page, last_page):
        rendered.append((first_page, last_page, dpi))
        return [Image.new("RGB", (8, 6), color="white")]

    monkeypatch.setattr(page_source, "pdfinfo_from_bytes", lambda data: {"Pages": 2})
    monkeypatch.setattr(page_source, "convert_from_bytes", fake_convert)

    with open_page_source(b"%PDF-1.7 fake") as source:
        assert isinstance(source, PdfPageSource)
        assert source.page_count == 2
        rasters = list(source.pages())

    assert [r.index for r in rasters] == [0, 1]
    assert [(first, last) for first, last, _ in rendered] == [(1, 1), (2, 2)]
    assert all(dpi == page_source.settings.render_dpi for _, _, dpi in rendered)


def test_pdf_without_pages(monkeypatch):
    monkeypatch.setattr(page_source, "pdfinfo_from_bytes", lambda data: {"Pages": 0})

    with open_page_source(b"%PDF-1.7 empty") as source:
        assert list(source.pages()) == []


def test_pdf_render_failure_is_engine_error(monkeypatch):
    monkeypatch.setattr(page_source, "pdfinfo_from_bytes", lambda data: {"Pages": 1})
    monkeypatch.setattr(page_source, "convert_from_bytes", lambda *a, **kw: [])

    with open_page_source(b"%PDF-1.7 broken") as source:
        with pytest.raises(EngineError):
            list(source.pages())


class BrokenTiff:
    """Заголовок первого кадра читается, следующие кадры повреждены."""

    format = "TIFF"

    def __init__(self, frames_error: Exception = None, seek_error_at: int = None):
        self.frames_error = frames_error
        self.seek_error_at = seek_error_at
        self.closed = False

    @property
    def n_frames(self) -> int:
        if self.frames_error is not None:
            raise self.frames_error
        return 3

    def seek(self, index: int) -> None:
        if index == self.seek_error_at:
            raise SyntaxError("unknown data organization")

    def copy(self) -> Image.Image:
        return Image.new("L", (4, 2))

    def close(self) -> None:
        self.closed = True


@pytest.mark.parametrize(
    "error",
    [SyntaxError("unknown data organization"), TypeError("Missing dimensions")],
)
def test_corrupt_frame_headers_are_input_error(monkeypatch, error):
    image = BrokenTiff(frames_error=error)
    monkeypatch.setattr(page_source.Image, "open", lambda fp: image)

    with pytest.raises(InputError):
        open_page_source(b"II*\x00broken")

    assert image.closed


def test_corrupt_frame_mid_document_is_engine_error(monkeypatch):
    monkeypatch.setattr(page_source.Image, "open", lambda fp: BrokenTiff(seek_error_at=1))

    with open_page_source(b"II*\x00broken") as source:
        pages = source.pages()
        assert next(pages).index == 0
        with pytest.raises(EngineError):
            next(pages)


@pytest.mark.parametrize("cut", [210, 40174])
def test_truncated_tiff_is_conversion_failure(cut):
    data = make_tiff([(200, 200)] * 4)[:cut]
    request = ConversionRequest(context_id="ctx", response_id="resp", image_bytes=data)
    task = ConversionTask(request, engine=ScriptedEngine(), language="eng")

    outcome = task.run(queue_wait_ms=0)

    assert isinstance(outcome, ConversionFailure)
    assert outcome.kind in (FailureKind.INPUT, FailureKind.ENGINE)
    assert outcome.response_id == "resp"
