"""Tensor engine interface.

Preprocessing and classification only talk to a ``GraphEngine``: build a
graph from a ``GraphSpec``, load a frozen model file, and run a graph with
named feeds and fetches. Backends:

    tensorflow -> TensorFlowEngine (frozen GraphDef, tf.compat.v1 sessions)
    onnx       -> OnnxEngine (ONNX Runtime sessions, Pillow/numpy pipelines)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from imagelabel.errors import EngineError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    import numpy as np
    from numpy.typing import NDArray

    from imagelabel.config import Settings
    from imagelabel.ml.graph import GraphSpec

logger = logging.getLogger(__name__)


class GraphEngine(Protocol):
    """Protocol for tensor engines."""

    @property
    def name(self) -> str:
        """Return the engine identifier string."""
        ...

    def build_graph(self, spec: GraphSpec) -> Any:
        """Lower a graph description into an engine graph.

        Raises:
            GraphBuildError: If any op fails to build.
        """
        ...

    def load_graph(self, path: Path) -> Any:
        """Load a frozen model file.

        Raises:
            GraphBuildError: If the file is not a valid model for this engine.
        """
        ...

    def run(self, graph: Any, feeds: Mapping[str, object], fetches: Sequence[str]) -> list[NDArray[np.generic]]:
        """Run ``graph`` once and return one array per fetch, in order.

        Raises:
            InferenceError: If execution fails.
        """
        ...

    def close(self) -> None:
        """Release every session held by the engine."""
        ...

    def __enter__(self) -> GraphEngine: ...

    def __exit__(self, *exc_info: object) -> None: ...


def create_engine(settings: Settings) -> GraphEngine:
    """Return the engine selected by ``settings.engine``.

    Raises:
        EngineError: If the selected backend is not installed.
    """
    if settings.engine == "onnx":
        from imagelabel.ml.onnx_engine import OnnxEngine

        return OnnxEngine(settings)

    try:
        from imagelabel.ml.tf_engine import TensorFlowEngine
    except ModuleNotFoundError as exc:
        if exc.name is None or not exc.name.startswith("tensorflow"):
            raise
        raise EngineError(
            "The tensorflow engine requires TensorFlow: pip install 'imagelabel[tensorflow]'"
            " or set IMAGELABEL_ENGINE=onnx"
        ) from exc
    return TensorFlowEngine(settings)
