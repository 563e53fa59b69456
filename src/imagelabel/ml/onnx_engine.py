"""ONNX Runtime engine.

Frozen models are ONNX files loaded into InferenceSessions. Graph
descriptions are lowered into an ``ArrayPipeline``: Pillow decodes, a
one-node ONNX Resize graph does the bilinear resize, and numpy casts and
does the arithmetic.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from onnx import TensorProto, helper, numpy_helper
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import (
    ExecutionMode,
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    NoSuchFile,
    RuntimeException,
)
from PIL import Image

from imagelabel.errors import GraphBuildError, InferenceError
from imagelabel.ml.graph import Cast, DecodeImage, ExpandDims, ResizeBilinear, Sub

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from imagelabel.config import Settings
    from imagelabel.ml.graph import GraphSpec, Op

logger = logging.getLogger(__name__)

_LOAD_ERRORS = (Fail, InvalidGraph, InvalidProtobuf, NoSuchFile, RuntimeException)
_RUN_ERRORS = (Fail, InvalidArgument, RuntimeException, ValueError)


# ---------------------------------------------------------------------------
# Array pipeline (lowered GraphSpec)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArrayPipeline:
    """A lowered linear graph: each step consumes the previous step's output."""

    input_name: str
    output_name: str
    steps: tuple[Callable[[Any], Any], ...]

    def run(self, feeds: Mapping[str, object], fetches: Sequence[str]) -> list[NDArray[np.generic]]:
        if self.input_name not in feeds:
            raise InferenceError(f"Missing feed for '{self.input_name}'")
        unknown = [name for name in fetches if name != self.output_name]
        if unknown:
            raise InferenceError(f"Unknown fetch node(s): {', '.join(unknown)}")

        value: Any = feeds[self.input_name]
        for step in self.steps:
            value = step(value)
        return [value for _ in fetches]


def _decode(channels: int) -> Callable[[Any], Any]:
    mode = "RGB" if channels == 3 else "L"

    def decode(data: Any) -> NDArray[np.uint8]:
        if not isinstance(data, (bytes, bytearray)):
            raise InferenceError(f"DecodeImage expects bytes, got {type(data).__name__}")
        try:
            with Image.open(io.BytesIO(data)) as img:
                pixels = np.asarray(img.convert(mode), dtype=np.uint8)
        except (OSError, Image.DecompressionBombError) as exc:
            raise InferenceError(f"DecodeImage failed: {exc}") from exc
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        return pixels

    return decode


def _cast(dtype: str) -> Callable[[Any], Any]:
    try:
        target = np.dtype(dtype)
    except TypeError as exc:
        raise GraphBuildError(f"Cast to unknown dtype '{dtype}'") from exc
    return lambda array: np.asarray(array).astype(target)


def _expand_dims(axis: int) -> Callable[[Any], Any]:
    def expand(array: Any) -> NDArray[np.generic]:
        try:
            return np.expand_dims(array, axis)
        except np.exceptions.AxisError as exc:
            raise InferenceError(f"ExpandDims failed: {exc}") from exc

    return expand


RESIZE_OPSET: int = 13


def resize_model(height: int, width: int) -> bytes:
    """Serialize an ONNX graph that resizes an NHWC float batch to ``height`` x ``width``.

    Four-tap linear interpolation with asymmetric coordinates (source =
    destination * in / out), the same mapping as TensorFlow's legacy
    ``resize_bilinear``. Batch and channel sizes are taken from the input.
    """
    nodes = [
        helper.make_node("Transpose", ["images"], ["nchw"], perm=[0, 3, 1, 2]),
        helper.make_node("Shape", ["nchw"], ["shape"]),
        helper.make_node("Slice", ["shape", "zero", "two"], ["batch_channels"]),
        helper.make_node("Concat", ["batch_channels", "target"], ["sizes"], axis=0),
        helper.make_node(
            "Resize",
            ["nchw", "", "", "sizes"],
            ["resized_nchw"],
            mode="linear",
            coordinate_transformation_mode="asymmetric",
        ),
        helper.make_node("Transpose", ["resized_nchw"], ["resized"], perm=[0, 2, 3, 1]),
    ]
    graph = helper.make_graph(
        nodes,
        name="resize_bilinear",
        inputs=[helper.make_tensor_value_info("images", TensorProto.FLOAT, ["N", "H", "W", "C"])],
        outputs=[helper.make_tensor_value_info("resized", TensorProto.FLOAT, ["N", height, width, "C"])],
        initializer=[
            numpy_helper.from_array(np.array([0], dtype=np.int64), name="zero"),
            numpy_helper.from_array(np.array([2], dtype=np.int64), name="two"),
            numpy_helper.from_array(np.array([height, width], dtype=np.int64), name="target"),
        ],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", RESIZE_OPSET)])
    model.ir_version = 7
    return model.SerializeToString()


def _resize_bilinear(session: InferenceSession) -> Callable[[Any], Any]:
    def resize(batch: Any) -> NDArray[np.float32]:
        batch = np.asarray(batch, dtype=np.float32)
        if batch.ndim != 4:
            raise InferenceError(f"ResizeBilinear expects a 4-D batch, got shape {batch.shape}")
        try:
            (resized,) = session.run(["resized"], {"images": batch})
        except _RUN_ERRORS as exc:
            raise InferenceError(f"ResizeBilinear failed: {exc}") from exc
        return np.asarray(resized, dtype=np.float32)

    return resize


def _sub(value: float) -> Callable[[Any], Any]:
    def subtract(array: Any) -> NDArray[np.generic]:
        array = np.asarray(array)
        return array - np.asarray(value, dtype=array.dtype)

    return subtract


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class OnnxEngine:
    """Loads ONNX models into InferenceSessions and runs lowered graphs."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._sessions: list[InferenceSession] = []
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def name(self) -> str:
        return "onnx"

    # -- Public API ---------------------------------------------------------

    def build_graph(self, spec: GraphSpec) -> ArrayPipeline:
        """Lower ``spec`` into an array pipeline."""
        spec.validate()
        steps = tuple(self._lower(op) for op in spec.ops)
        return ArrayPipeline(input_name=spec.input_name, output_name=spec.output_name, steps=steps)

    def load_graph(self, path: Path) -> InferenceSession:
        """Create an InferenceSession for an ONNX model file."""
        try:
            session = InferenceSession(
                str(path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except _LOAD_ERRORS as exc:
            raise GraphBuildError(f"Could not load ONNX model {path}: {exc}") from exc
        self._sessions.append(session)
        logger.info("Loaded session for %s (providers=%s)", path, session.get_providers())
        return session

    def run(self, graph: Any, feeds: Mapping[str, object], fetches: Sequence[str]) -> list[NDArray[np.generic]]:
        """Run a pipeline or an InferenceSession once."""
        if isinstance(graph, ArrayPipeline):
            return graph.run(feeds, fetches)
        try:
            outputs = graph.run(list(fetches), dict(feeds))
        except _RUN_ERRORS as exc:
            raise InferenceError(f"ONNX Runtime inference failed: {exc}") from exc
        return [np.asarray(output) for output in outputs]

    def close(self) -> None:
        """Drop every session created by this engine."""
        if self._sessions:
            logger.info("Releasing %d ONNX session(s)", len(self._sessions))
        self._sessions.clear()

    def __enter__(self) -> OnnxEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    def _lower(self, op: Op) -> Callable[[Any], Any]:
        if isinstance(op, DecodeImage):
            return _decode(op.channels)
        if isinstance(op, Cast):
            return _cast(op.dtype)
        if isinstance(op, ExpandDims):
            return _expand_dims(op.axis)
        if isinstance(op, ResizeBilinear):
            return _resize_bilinear(self._create_session(resize_model(op.height, op.width)))
        if isinstance(op, Sub):
            return _sub(op.value)
        raise GraphBuildError(f"Unsupported op: {op!r}")

    def _create_session(self, model: bytes) -> InferenceSession:
        try:
            session = InferenceSession(model, sess_options=self._session_options, providers=self._providers)
        except _LOAD_ERRORS as exc:
            raise GraphBuildError(f"Could not build ONNX graph: {exc}") from exc
        self._sessions.append(session)
        return session

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0, "arena_extend_strategy": "kSameAsRequested"}),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
