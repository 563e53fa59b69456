"""Image classification and top-K label ranking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from operator import attrgetter
from typing import TYPE_CHECKING, Any

from imagelabel.errors import InferenceError, NotEnoughClassesError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    import numpy as np
    from numpy.typing import NDArray

    from imagelabel.ml.engine import GraphEngine

logger = logging.getLogger(__name__)

DEFAULT_TOP_K: int = 5


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


def rank_labels(
    probabilities: Iterable[float],
    labels: Sequence[str],
    top_k: int = DEFAULT_TOP_K,
) -> list[ClassificationResult]:
    """Pair probabilities with labels by index and return the ``top_k`` best.

    Indices present in only one of the two sequences are dropped. Ties keep
    no particular order.

    Raises:
        NotEnoughClassesError: If fewer than ``top_k`` pairs exist.
    """
    scored = [ClassificationResult(label=label, confidence=float(p)) for label, p in zip(labels, probabilities)]
    if len(scored) < top_k:
        raise NotEnoughClassesError(
            f"Need {top_k} scored labels but only {len(scored)} could be paired ({len(labels)} labels)"
        )
    scored.sort(key=attrgetter("confidence"), reverse=True)
    return scored[:top_k]


class ImageClassifier:
    """Runs a frozen classification graph and ranks its output."""

    def __init__(
        self,
        engine: GraphEngine,
        graph: Any,
        labels: Sequence[str],
        *,
        input_node: str = "input",
        output_node: str = "output",
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._engine = engine
        self._graph = graph
        self._labels = labels
        self._input_node = input_node
        self._output_node = output_node
        self._top_k = top_k

    def classify(self, tensor: NDArray[np.float32]) -> list[ClassificationResult]:
        """Classify a normalized image batch of size 1.

        Args:
            tensor: [1, H, W, 3] float32 array from ``ImagePreprocessor.normalize``.

        Returns:
            ``top_k`` results sorted by confidence (descending).
        """
        (output,) = self._engine.run(self._graph, {self._input_node: tensor}, [self._output_node])
        if output.ndim < 1 or len(output) == 0:
            raise InferenceError(f"Model returned an empty output of shape {output.shape}")
        probabilities = output[0] if output.ndim > 1 else output
        logger.info("Model produced %d scores for %d labels", len(probabilities), len(self._labels))
        return rank_labels(probabilities, self._labels, self._top_k)
