"""
Test 11: Tesseract secondary engine
pytesseract is patched so the tests do not need the Tesseract binary.
"""

import asyncio

import numpy as np
import pytest
import pytesseract

from conftest import FakeSecondaryEngine, make_config
from ocr_inference.config import FallbackConfig
from ocr_inference.core.secondary import SecondaryPipeline
from ocr_inference.engines import EngineStatus, TesseractEngine
from ocr_inference.exceptions import InferenceError, InitializationError
from ocr_inference.types import Backend, BoundingBox


def tesseract_data(rows):
    """Build an image_to_data DICT from (text, conf, block, par, line, left) rows."""
    data = {key: [] for key in ("text", "conf", "block_num", "par_num", "line_num",
                                "left", "top", "width", "height")}
    for text, conf, block, par, line, left in rows:
        data["text"].append(text)
        data["conf"].append(conf)
        data["block_num"].append(block)
        data["par_num"].append(par)
        data["line_num"].append(line)
        data["left"].append(left)
        data["top"].append(10 * line)
        data["width"].append(30)
        data["height"].append(12)
    return data


@pytest.fixture
def installed(monkeypatch):
    languages = ["eng", "osd"]
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": list(languages))
    return languages


def test_missing_binary_is_an_initialization_error(monkeypatch):
    def not_found():
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", not_found)
    engine = TesseractEngine()
    with pytest.raises(InitializationError):
        engine.initialize()
    assert engine.status is EngineStatus.ERROR
    assert engine.last_error


def test_no_installed_language(installed):
    engine = TesseractEngine(FallbackConfig(languages="jpn+kor"))
    with pytest.raises(InitializationError) as excinfo:
        engine.initialize()
    assert excinfo.value.reason == "missing traineddata"


def test_languages_are_narrowed_to_installed(installed):
    engine = TesseractEngine(FallbackConfig(languages="jpn+eng"))
    engine.initialize()
    assert engine.is_ready
    assert engine.languages == "eng"
    assert engine.version == "5.3.0"


def test_recognize_converts_words_and_lines(installed, monkeypatch):
    captured = {}

    def image_to_data(image, lang, config, output_type):
        captured["size"] = image.size
        captured["lang"] = lang
        return tesseract_data([
            ("", -1, 1, 0, 0, 0),
            ("Hello", 90, 1, 1, 1, 0),
            ("world", 70, 1, 1, 1, 40),
            ("   ", 50, 1, 1, 1, 80),
            ("again", "80", 1, 1, 2, 0),
        ])

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    engine = TesseractEngine(FallbackConfig(languages="eng"))
    engine.initialize()
    result = engine.recognize(np.full((40, 60, 3), 255, dtype=np.uint8))

    assert captured == {"size": (60, 40), "lang": "eng"}
    assert result.text == "Hello world\nagain"
    assert [w.text for w in result.words] == ["Hello", "world", "again"]
    assert result.words[1].bbox == BoundingBox(40, 10, 30, 12)
    assert result.confidence == pytest.approx(80.0)
    assert engine.get_performance_stats()["total_recognitions"] == 1


def test_empty_page_has_zero_confidence():
    result = TesseractEngine._convert(tesseract_data([("", -1, 1, 0, 0, 0)]))
    assert result.text == ""
    assert result.words == []
    assert result.confidence == 0.0


def test_recognize_before_initialize():
    with pytest.raises(InferenceError):
        TesseractEngine().recognize(np.zeros((4, 4, 3), dtype=np.uint8))


def test_terminate_is_idempotent():
    engine = FakeSecondaryEngine()
    engine.initialize()
    engine.terminate()
    engine.terminate()
    assert engine.status is EngineStatus.TERMINATED
    assert engine.terminated


def test_unexpected_startup_failure_is_wrapped():
    engine = FakeSecondaryEngine(fail_init=True)
    with pytest.raises(InitializationError) as excinfo:
        engine.initialize()
    assert "not installed" in excinfo.value.reason


class TestSecondaryPipeline:
    def setup_method(self):
        self.image = np.full((64, 64, 3), 255, dtype=np.uint8)

    def pipeline(self, tmp_path, engine, events=None):
        engine.initialize()
        return SecondaryPipeline(make_config(tmp_path), engine,
                                 events.append if events is not None else None)

    def test_whole_image_filters_low_confidence_words(self, tmp_path):
        events = []
        result = self.pipeline(tmp_path, FakeSecondaryEngine(), events).run_image(self.image)

        assert [r.text for r in result.regions] == ["hello", "world"]
        assert [r.confidence for r in result.regions] == [pytest.approx(0.95), pytest.approx(0.6)]
        assert all(r.source == "tesseract" for r in result.regions)
        assert result.regions[0].font_size == 8
        assert result.confidence == pytest.approx(0.9)
        assert result.engine_used == "tesseract"
        assert result.backend is Backend.SECONDARY
        assert result.fallback
        assert [e.percent for e in events] == [10, 90, 100]

    def test_region_crops_before_recognizing(self, tmp_path):
        engine = FakeSecondaryEngine(text="  hello  ", confidence=75)
        events = []
        bbox = BoundingBox(10, 20, 30, 12)
        result = self.pipeline(tmp_path, engine, events).run_region(self.image, bbox)

        assert engine.images == [(12, 30, 3)]
        assert len(result.regions) == 1
        region = result.regions[0]
        assert region.text == "hello"
        assert region.bbox == bbox
        assert region.source == "tesseract-region"
        assert region.confidence == pytest.approx(0.75)
        assert [e.percent for e in events] == [20, 50, 100]

    def test_blank_region_yields_no_regions(self, tmp_path):
        engine = FakeSecondaryEngine(text="   ", confidence=10)
        result = self.pipeline(tmp_path, engine).run_region(self.image, BoundingBox(0, 0, 8, 8))
        assert result.regions == ()
        assert result.statistics.total_regions == 1
        assert result.statistics.recognized_regions == 0

    def test_runs_off_the_event_loop(self, tmp_path):
        pipeline = self.pipeline(tmp_path, FakeSecondaryEngine())

        async def scenario():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, pipeline.run_image, self.image)

        assert len(asyncio.run(scenario()).regions) == 2
