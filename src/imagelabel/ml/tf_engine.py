"""TensorFlow engine for frozen GraphDef models.

Graphs are built and run in graph mode through ``tf.compat.v1``, one
Session per graph. Sessions are created lazily and closed by ``close()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import tensorflow as tf
from google.protobuf.message import DecodeError

from imagelabel.errors import GraphBuildError, InferenceError
from imagelabel.ml.graph import Cast, DecodeImage, ExpandDims, ResizeBilinear, Sub

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from imagelabel.config import Settings
    from imagelabel.ml.graph import GraphSpec, Op

logger = logging.getLogger(__name__)


@dataclass
class TensorFlowGraph:
    """A tf.Graph plus the aliases used to address its tensors."""

    graph: tf.Graph
    aliases: dict[str, str] = field(default_factory=dict)

    def tensor(self, name: str) -> tf.Tensor:
        name = self.aliases.get(name, name)
        if ":" not in name:
            name = f"{name}:0"
        try:
            return self.graph.get_tensor_by_name(name)
        except (KeyError, ValueError) as exc:
            raise InferenceError(f"Graph has no tensor named '{name}'") from exc


def _lower(op: Op, value: tf.Tensor) -> tf.Tensor:
    if isinstance(op, DecodeImage):
        return tf.io.decode_image(value, channels=op.channels, expand_animations=False)
    if isinstance(op, Cast):
        return tf.cast(value, tf.dtypes.as_dtype(op.dtype))
    if isinstance(op, ExpandDims):
        return tf.expand_dims(value, axis=op.axis)
    if isinstance(op, ResizeBilinear):
        return tf.compat.v1.image.resize_bilinear(value, [op.height, op.width])
    if isinstance(op, Sub):
        return tf.subtract(value, tf.constant(op.value, dtype=value.dtype))
    raise GraphBuildError(f"Unsupported op: {op!r}")


class TensorFlowEngine:
    """Builds, loads, and runs TensorFlow graphs."""

    def __init__(self, settings: Settings) -> None:
        self._config = tf.compat.v1.ConfigProto(
            intra_op_parallelism_threads=settings.intra_op_threads,
            inter_op_parallelism_threads=settings.inter_op_threads,
        )
        self._sessions: dict[int, tf.compat.v1.Session] = {}

    @property
    def name(self) -> str:
        return "tensorflow"

    # -- Public API ---------------------------------------------------------

    def build_graph(self, spec: GraphSpec) -> TensorFlowGraph:
        """Lower ``spec`` into a new tf.Graph."""
        spec.validate()
        graph = tf.Graph()
        try:
            with graph.as_default():
                placeholder = tf.compat.v1.placeholder(tf.string, shape=[], name=spec.input_name)
                value = placeholder
                for op in spec.ops:
                    value = _lower(op, value)
                output = tf.identity(value, name=spec.output_name)
        except (TypeError, ValueError) as exc:
            raise GraphBuildError(f"Could not build graph: {exc}") from exc
        return TensorFlowGraph(
            graph=graph,
            aliases={spec.input_name: placeholder.name, spec.output_name: output.name},
        )

    def load_graph(self, path: Path) -> TensorFlowGraph:
        """Import a frozen GraphDef (.pb) file."""
        try:
            with tf.io.gfile.GFile(str(path), "rb") as f:
                serialized = f.read()
        except tf.errors.OpError as exc:
            raise GraphBuildError(f"Could not read model {path}: {exc.message}") from exc

        graph_def = tf.compat.v1.GraphDef()
        graph = tf.Graph()
        try:
            graph_def.ParseFromString(serialized)
            with graph.as_default():
                tf.import_graph_def(graph_def, name="")
        except (DecodeError, ValueError) as exc:
            raise GraphBuildError(f"Could not import frozen graph {path}: {exc}") from exc

        logger.info("Imported %s (%d ops)", path, len(graph.get_operations()))
        return TensorFlowGraph(graph=graph)

    def run(self, graph: Any, feeds: Mapping[str, object], fetches: Sequence[str]) -> list[NDArray[np.generic]]:
        """Run ``graph`` once in its session."""
        if not isinstance(graph, TensorFlowGraph):
            raise InferenceError(f"Expected a TensorFlowGraph, got {type(graph).__name__}")

        feed_dict = {graph.tensor(name): value for name, value in feeds.items()}
        fetch_tensors = [graph.tensor(name) for name in fetches]
        session = self._session_for(graph)
        try:
            outputs = session.run(fetch_tensors, feed_dict=feed_dict)
        except tf.errors.OpError as exc:
            raise InferenceError(f"TensorFlow run failed: {exc.message}") from exc
        except (TypeError, ValueError) as exc:
            raise InferenceError(f"TensorFlow run failed: {exc}") from exc
        return [np.asarray(output) for output in outputs]

    def close(self) -> None:
        """Close every session opened by this engine."""
        for session in self._sessions.values():
            session.close()
        if self._sessions:
            logger.info("Closed %d TensorFlow session(s)", len(self._sessions))
        self._sessions.clear()

    def __enter__(self) -> TensorFlowEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    def _session_for(self, graph: TensorFlowGraph) -> tf.compat.v1.Session:
        session = self._sessions.get(id(graph.graph))
        if session is None:
            session = tf.compat.v1.Session(graph=graph.graph, config=self._config)
            self._sessions[id(graph.graph)] = session
        return session
