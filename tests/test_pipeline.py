"""Tests for end-to-end labeling."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from imagelabel.config import Settings
from imagelabel.errors import ImageDecodeError, InputError, NotEnoughClassesError
from imagelabel.ml.onnx_engine import OnnxEngine
from imagelabel.pipeline import label_image, read_image

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def _make_settings(model: Path, labels: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "engine": "onnx",
        "model_path": str(model),
        "labels_path": str(labels),
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


class TestReadImage:
    def test_reads_whole_file(self, tmp_path: Path) -> None:
        path = tmp_path / "img.jpg"
        path.write_bytes(b"abc")
        assert read_image(path, max_file_size=10) == b"abc"

    def test_missing_file_raises_input_error(self, tmp_path: Path) -> None:
        with pytest.raises(InputError, match="Could not read image"):
            read_image(tmp_path / "missing.jpg", max_file_size=10)

    def test_oversized_file_raises_input_error(self, tmp_path: Path) -> None:
        path = tmp_path / "img.jpg"
        path.write_bytes(b"x" * 11)
        with pytest.raises(InputError, match="limit is 10"):
            read_image(path, max_file_size=10)


class TestLabelImage:
    def test_returns_top_k_results(
        self, tmp_path: Path, onnx_model: Path, labels_file: Path, make_image: Callable[..., bytes]
    ) -> None:
        image = tmp_path / "green.png"
        image.write_bytes(make_image(color=(0, 255, 0), fmt="PNG"))

        results = label_image(_make_settings(onnx_model, labels_file), image)

        assert len(results) == 5
        assert results[0].label == "green"
        assert results == sorted(results, key=lambda r: r.confidence, reverse=True)

    def test_top_k_setting_is_honored(
        self, tmp_path: Path, onnx_model: Path, labels_file: Path, make_image: Callable[..., bytes]
    ) -> None:
        image = tmp_path / "red.jpg"
        image.write_bytes(make_image())

        results = label_image(_make_settings(onnx_model, labels_file, top_k=6, display_count=1), image)

        assert len(results) == 6

    def test_too_few_labels(
        self, tmp_path: Path, onnx_model: Path, make_image: Callable[..., bytes]
    ) -> None:
        labels = tmp_path / "short.txt"
        labels.write_text("red\ngreen\nblue\n", encoding="utf-8")
        image = tmp_path / "red.jpg"
        image.write_bytes(make_image())

        with pytest.raises(NotEnoughClassesError):
            label_image(_make_settings(onnx_model, labels), image)

    def test_engine_closed_after_failure(self, tmp_path: Path, onnx_model: Path, labels_file: Path) -> None:
        image = tmp_path / "broken.jpg"
        image.write_bytes(b"not a jpeg")

        with patch.object(OnnxEngine, "close", autospec=True) as mock_close:
            with pytest.raises(ImageDecodeError):
                label_image(_make_settings(onnx_model, labels_file), image)
            mock_close.assert_called_once()

    def test_missing_image_fails_before_engine(self, tmp_path: Path, onnx_model: Path, labels_file: Path) -> None:
        with patch("imagelabel.pipeline.create_engine") as mock_create:
            with pytest.raises(InputError):
                label_image(_make_settings(onnx_model, labels_file), tmp_path / "missing.jpg")
            mock_create.assert_not_called()
