"""Shared fixtures: synthetic images, tiny frozen models, and label files."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

# Six classes; the first three respond to the mean of one RGB channel.
LABELS = ["red", "green", "blue", "cyan", "magenta", "yellow"]
WEIGHTS = np.zeros((3, len(LABELS)), dtype=np.float32)
WEIGHTS[0, 0] = WEIGHTS[1, 1] = WEIGHTS[2, 2] = 0.05


def encode_image(
    size: tuple[int, int] = (32, 32),
    color: int | tuple[int, ...] = (255, 0, 0),
    mode: str = "RGB",
    fmt: str = "JPEG",
) -> bytes:
    """Encode a solid-color image of ``size`` (width, height)."""
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def make_image() -> Callable[..., bytes]:
    return encode_image


@pytest.fixture()
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("\n".join(LABELS) + "\n", encoding="utf-8")
    return path


@pytest.fixture()
def onnx_model(tmp_path: Path) -> Path:
    """ONNX classifier: mean over H and W, a 3x6 projection, then softmax."""
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper, numpy_helper

    graph = helper.make_graph(
        nodes=[
            helper.make_node("ReduceMean", ["input"], ["pooled"], axes=[1, 2], keepdims=0),
            helper.make_node("MatMul", ["pooled", "weights"], ["logits"]),
            helper.make_node("Softmax", ["logits"], ["output"], axis=-1),
        ],
        name="toy_classifier",
        inputs=[helper.make_tensor_value_info("input", TensorProto.FLOAT, ["N", 224, 224, 3])],
        outputs=[helper.make_tensor_value_info("output", TensorProto.FLOAT, ["N", len(LABELS)])],
        initializer=[numpy_helper.from_array(WEIGHTS, name="weights")],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 7
    onnx.checker.check_model(model)

    path = tmp_path / "toy.onnx"
    path.write_bytes(model.SerializeToString())
    return path


@pytest.fixture()
def tf_model(tmp_path: Path) -> Path:
    """Frozen TensorFlow GraphDef with the same layout as ``onnx_model``."""
    tf = pytest.importorskip("tensorflow")

    graph = tf.Graph()
    with graph.as_default():
        images = tf.compat.v1.placeholder(tf.float32, shape=[None, 224, 224, 3], name="input")
        pooled = tf.reduce_mean(images, axis=[1, 2])
        logits = tf.matmul(pooled, tf.constant(WEIGHTS))
        tf.nn.softmax(logits, name="output")

    path = tmp_path / "toy.pb"
    path.write_bytes(graph.as_graph_def().SerializeToString())
    return path
