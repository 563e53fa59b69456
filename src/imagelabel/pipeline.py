"""End-to-end labeling of a single image file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from imagelabel.errors import InputError
from imagelabel.ml.engine import create_engine
from imagelabel.ml.image_classifier import ImageClassifier
from imagelabel.ml.model_manager import load_model
from imagelabel.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from imagelabel.config import Settings
    from imagelabel.ml.image_classifier import ClassificationResult

logger = logging.getLogger(__name__)


def read_image(path: Path, max_file_size: int) -> bytes:
    """Read an image file whole.

    Raises:
        InputError: If the file is missing, unreadable, or larger than ``max_file_size``.
    """
    try:
        size = path.stat().st_size
        if size > max_file_size:
            raise InputError(f"Image {path} is {size} bytes, limit is {max_file_size}")
        return path.read_bytes()
    except OSError as exc:
        raise InputError(f"Could not read image {path}: {exc}") from exc


def label_image(settings: Settings, image_path: str | Path) -> list[ClassificationResult]:
    """Classify one image and return the ``settings.top_k`` best labels.

    The engine and its sessions live only for the duration of the call.
    """
    image_bytes = read_image(Path(image_path), settings.max_file_size)

    with create_engine(settings) as engine:
        graph, labels = load_model(engine, settings)
        preprocessor = ImagePreprocessor(
            engine,
            height=settings.image_size,
            width=settings.image_size,
            mean=settings.mean_value,
        )
        classifier = ImageClassifier(
            engine,
            graph,
            labels,
            input_node=settings.input_node,
            output_node=settings.output_node,
            top_k=settings.top_k,
        )

        tensor = preprocessor.normalize(image_bytes)
        results = classifier.classify(tensor)

    logger.info("Top result for %s: %s (%.4f)", image_path, results[0].label, results[0].confidence)
    return results
