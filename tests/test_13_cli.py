"""
Test 13: Command-line interface
"""

import argparse
import json

import pytest
from PIL import Image

import ocr_inference.cli as cli
from conftest import make_engine
from ocr_inference.types import BoundingBox


@pytest.fixture
def image_file(tmp_path, image):
    path = tmp_path / "page.png"
    Image.fromarray(image).save(path)
    return path


@pytest.fixture
def fake_engine(monkeypatch, config):
    built = []

    def factory(loaded_config):
        built.append(loaded_config)
        return make_engine(config)

    monkeypatch.setattr(cli, "OCREngine", factory)
    return built


def test_parse_region():
    assert cli.parse_region("10,20,30.5,40") == BoundingBox(10, 20, 30.5, 40)
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_region("10,20,30")


def test_parser_defaults():
    args = cli.build_parser().parse_args(["scan.png"])
    assert args.region is None
    assert args.threshold is None
    assert not args.force_fallback
    assert not args.json


def test_missing_and_unsupported_files(tmp_path):
    assert cli.main([str(tmp_path / "missing.png")]) == 1
    text_file = tmp_path / "notes.txt"
    text_file.write_text("hello")
    assert cli.main([str(text_file)]) == 1


def test_json_output(image_file, fake_engine, capsys):
    assert cli.main([str(image_file), "--json"]) == 0

    result = json.loads(capsys.readouterr().out)
    assert result["engine_used"] == "onnx"
    assert [r["text"] for r in result["regions"]] == ["AB", "AB"]


def test_backend_and_fallback_flags_reach_the_config(image_file, fake_engine, capsys):
    assert cli.main([str(image_file), "--json", "--force-fallback",
                     "--backends", "vectorized, gpu_compute"]) == 0

    loaded = fake_engine[0]
    assert loaded.fallback.force
    assert loaded.runtime.backends == ["vectorized", "gpu_compute"]


def test_region_result_is_written_to_file(image_file, fake_engine, tmp_path):
    output = tmp_path / "out" / "result.json"
    code = cli.main([str(image_file), "--region", "10,25,25,10", "--simple",
                     "--output", str(output)])

    assert code == 0
    saved = json.loads(output.read_text(encoding="utf-8"))
    assert saved["regions"][0]["source"] == "manual-selection"
    assert saved["regions"][0]["text"] == "AB"


def test_invalid_threshold_is_reported(image_file, fake_engine):
    assert cli.main([str(image_file), "--threshold", "2.0"]) == 1
