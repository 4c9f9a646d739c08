"""
Тесты задачи конвертации: свёртка уверенности по страницам,
классификация ошибок и освобождение дескриптора на всех путях.
"""

import pytest

from fakes import ScriptedEngine, fake_source_factory
from image_ocr.errors import EngineError, InputError
from image_ocr.schemas import (
    ConversionFailure,
    ConversionRequest,
    ConversionResult,
    FailureKind,
    PageExtraction,
    TaskState,
    UnexpectedFailure,
)
from image_ocr.services.conversion_task import ConversionTask
from image_ocr.services.page_source import open_page_source


def _request(data: bytes = b"ignored") -> ConversionRequest:
    return ConversionRequest(context_id="ctx-1", response_id="resp-1", image_bytes=data)


def _task(engine, page_count: int = 0, factory=None) -> ConversionTask:
    return ConversionTask(
        _request(),
        engine=engine,
        language="eng",
        page_source_factory=factory or fake_source_factory(page_count),
    )


def test_three_pages_with_blank_page():
    engine = ScriptedEngine([
        PageExtraction(text="first\n", confidences=[62.2, 70.8]),
        PageExtraction(text="second\n", confidences=[80.0]),
        PageExtraction(text="", confidences=[], blank_lines=2),
    ])
    task = _task(engine, page_count=3)

    outcome = task.run(queue_wait_ms=12)

    assert isinstance(outcome, ConversionResult)
    assert outcome.status == TaskState.SUCCEEDED
    assert task.state == TaskState.SUCCEEDED
    assert outcome.pages_processed == 3
    assert outcome.extracted_text == "first\nsecond\n"
    assert outcome.queue_wait_ms == 12
    assert outcome.confidence.count == 3
    assert outcome.confidence.sum == pytest.approx(213.0)
    assert outcome.confidence.average() == pytest.approx(71.0)
    assert outcome.confidence.minimum() == pytest.approx(62.2)
    assert engine.initialized == engine.released == 1


def test_pages_concatenated_in_order():
    engine = ScriptedEngine([PageExtraction(text=f"p{i}|") for i in range(5)])

    outcome = _task(engine, page_count=5).run(queue_wait_ms=0)

    assert outcome.extracted_text == "p0|p1|p2|p3|p4|"


@pytest.mark.parametrize("failing_page", [0, 1, 2])
def test_page_failure_keeps_partial_page_count(failing_page):
    pages = [PageExtraction(text="ok\n", confidences=[90.0]) for _ in range(3)]
    pages[failing_page] = EngineError("tesseract упал")
    engine = ScriptedEngine(pages)
    task = _task(engine, page_count=3)

    outcome = task.run(queue_wait_ms=0)

    assert isinstance(outcome, ConversionFailure)
    assert outcome.kind == FailureKind.ENGINE
    assert outcome.pages_processed == failing_page + 1
    assert outcome.result.status == TaskState.FAILED
    assert outcome.context_id == "ctx-1"
    assert outcome.response_id == "resp-1"
    assert isinstance(outcome.cause, EngineError)
    assert task.state == TaskState.FAILED
    assert engine.initialized == engine.released == 1


def test_zero_page_document_succeeds():
    engine = ScriptedEngine()

    outcome = _task(engine, page_count=0).run(queue_wait_ms=0)

    assert isinstance(outcome, ConversionResult)
    assert outcome.status == TaskState.SUCCEEDED
    assert outcome.pages_processed == 0
    assert outcome.extracted_text == ""
    assert outcome.confidence.average() is None
    assert outcome.confidence.minimum() is None
    assert engine.initialized == engine.released == 1


def test_empty_input_never_runs():
    engine = ScriptedEngine()
    task = ConversionTask(
        ConversionRequest(context_id="ctx-1", response_id="resp-1", image_bytes=b""),
        engine=engine,
        language="eng",
        page_source_factory=open_page_source,
    )

    outcome = task.run(queue_wait_ms=0)

    assert isinstance(outcome, ConversionFailure)
    assert outcome.kind == FailureKind.INPUT
    assert isinstance(outcome.cause, InputError)
    assert outcome.pages_processed == 0
    assert task.state == TaskState.FAILED
    assert engine.initialized == engine.released == 0


def test_engine_initialization_failure():
    engine = ScriptedEngine(init_error=EngineError("нет модели языка"))

    outcome = _task(engine, page_count=2).run(queue_wait_ms=0)

    assert isinstance(outcome, ConversionFailure)
    assert outcome.kind == FailureKind.ENGINE
    assert outcome.pages_processed == 0
    assert engine.initialized == engine.released == 0


def test_unexpected_error_is_classified_and_handle_released():
    engine = ScriptedEngine([PageExtraction(text="ok"), RuntimeError("boom")])
    task = _task(engine, page_count=2)

    outcome = task.run(queue_wait_ms=0)

    assert isinstance(outcome, UnexpectedFailure)
    assert outcome.context_id == "ctx-1"
    assert outcome.response_id == "resp-1"
    assert isinstance(outcome.cause, RuntimeError)
    assert task.state == TaskState.FAILED
    assert engine.initialized == engine.released == 1


def test_page_source_closed_on_every_path():
    factory = fake_source_factory(2)
    engine = ScriptedEngine([EngineError("fail")])

    _task(engine, factory=factory).run(queue_wait_ms=0)

    assert factory.sources[0].closed is True


def test_language_passed_to_engine():
    engine = ScriptedEngine([PageExtraction(text="x")])
    seen = []
    original = engine.initialize

    def spy(language):
        seen.append(language)
        return original(language)

    engine.initialize = spy
    task = ConversionTask(
        _request(), engine=engine, language="rus+eng",
        page_source_factory=fake_source_factory(1),
    )

    task.run(queue_wait_ms=0)

    assert seen == ["rus+eng"]


def test_result_is_frozen_after_terminal_state():
    outcome = _task(ScriptedEngine(), page_count=0).run(queue_wait_ms=0)

    with pytest.raises(RuntimeError):
        outcome.add_page()
    with pytest.raises(RuntimeError):
        outcome.add_confidence(50.0)


def test_result_metadata_and_response():
    engine = ScriptedEngine([PageExtraction(text="abc\n", confidences=[40.0, 60.0])])

    outcome = _task(engine, page_count=1).run(queue_wait_ms=7)
    metadata = outcome.metadata()
    response = outcome.to_response()

    assert metadata["pages_processed"] == 1
    assert metadata["average_confidence_score"] == pytest.approx(50.0)
    assert metadata["lowest_confidence_score"] == pytest.approx(40.0)
    assert metadata["confidence_data_points"] == 2
    assert response.extracted_text == "abc\n"
    assert response.time_on_executor_queue_ms == 7
    assert response.context_id == "ctx-1"
    assert response.response_id == "resp-1"
