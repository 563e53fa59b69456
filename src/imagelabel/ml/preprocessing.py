"""Image preprocessing.

Turns encoded image bytes into the [1, H, W, 3] float32 tensor the
classification network expects, by running the normalization graph on the
configured engine. The graph is built once and reused for every image.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from imagelabel.errors import ImageDecodeError, InferenceError
from imagelabel.ml.graph import DEFAULT_IMAGE_SIZE, DEFAULT_MEAN, normalization_graph

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from imagelabel.ml.engine import GraphEngine

logger = logging.getLogger(__name__)


class ImagePreprocessor:
    """Normalizes encoded images with a fixed decode/resize/center graph."""

    def __init__(
        self,
        engine: GraphEngine,
        *,
        height: int = DEFAULT_IMAGE_SIZE,
        width: int = DEFAULT_IMAGE_SIZE,
        mean: float = DEFAULT_MEAN,
    ) -> None:
        self._engine = engine
        self._spec = normalization_graph(height=height, width=width, mean=mean)
        self._graph = engine.build_graph(self._spec)
        logger.info("Built normalization graph (%dx%d, mean=%s) on %s", height, width, mean, engine.name)

    def normalize(self, image_bytes: bytes) -> NDArray[np.float32]:
        """Decode, resize, and mean-center one encoded image.

        Args:
            image_bytes: Raw file bytes (JPEG, PNG, BMP, or GIF).

        Returns:
            Float32 array of shape [1, height, width, 3].

        Raises:
            ImageDecodeError: If the bytes are empty or cannot be decoded.
        """
        if not image_bytes:
            raise ImageDecodeError("Image is empty")
        try:
            (normalized,) = self._engine.run(self._graph, {self._spec.input_name: image_bytes}, [self._spec.output_name])
        except InferenceError as exc:
            raise ImageDecodeError(f"Could not decode image: {exc}") from exc
        return np.asarray(normalized, dtype=np.float32)
