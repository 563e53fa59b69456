"""Engine-neutral description of a linear computation graph.

A ``GraphSpec`` is an input placeholder followed by a chain of ops, each
consuming the output of the previous one. Engines lower the chain into
their own graph representation in ``GraphEngine.build_graph``.
"""

from __future__ import annotations

from dataclasses import dataclass

from imagelabel.errors import GraphBuildError

DEFAULT_IMAGE_SIZE: int = 224
DEFAULT_MEAN: float = 117.0


@dataclass(frozen=True)
class DecodeImage:
    """Decode an encoded image string into an HxWxC uint8 grid."""

    channels: int = 3


@dataclass(frozen=True)
class Cast:
    """Convert every element to ``dtype``."""

    dtype: str = "float32"


@dataclass(frozen=True)
class ExpandDims:
    """Insert a length-1 axis at ``axis``."""

    axis: int = 0


@dataclass(frozen=True)
class ResizeBilinear:
    """Stretch a [N, H, W, C] batch to [N, height, width, C]."""

    height: int
    width: int


@dataclass(frozen=True)
class Sub:
    """Subtract a scalar from every element."""

    value: float


Op = DecodeImage | Cast | ExpandDims | ResizeBilinear | Sub


@dataclass(frozen=True)
class GraphSpec:
    """A placeholder named ``input_name`` feeding ``ops`` in order.

    The result of the last op is exposed as ``output_name``.
    """

    input_name: str
    output_name: str
    ops: tuple[Op, ...]

    def validate(self) -> None:
        """Check op parameters before an engine lowers the graph.

        Raises:
            GraphBuildError: If the graph is empty or an op is malformed.
        """
        if not self.ops:
            raise GraphBuildError("Graph has no ops")
        if self.input_name == self.output_name:
            raise GraphBuildError(f"Input and output share the name '{self.input_name}'")
        for op in self.ops:
            if isinstance(op, DecodeImage) and op.channels not in (1, 3):
                raise GraphBuildError(f"DecodeImage supports 1 or 3 channels, got {op.channels}")
            if isinstance(op, ResizeBilinear) and (op.height < 1 or op.width < 1):
                raise GraphBuildError(f"Invalid resize target {op.height}x{op.width}")
            if not isinstance(op, (DecodeImage, Cast, ExpandDims, ResizeBilinear, Sub)):
                raise GraphBuildError(f"Unsupported op: {op!r}")


def normalization_graph(
    height: int = DEFAULT_IMAGE_SIZE,
    width: int = DEFAULT_IMAGE_SIZE,
    mean: float = DEFAULT_MEAN,
    channels: int = 3,
) -> GraphSpec:
    """Build the graph that turns encoded image bytes into network input.

    decode (forced to ``channels``) -> float32 -> batch axis -> bilinear
    resize to ``height`` x ``width`` -> subtract ``mean``.
    """
    spec = GraphSpec(
        input_name="image_bytes",
        output_name="normalized",
        ops=(
            DecodeImage(channels=channels),
            Cast("float32"),
            ExpandDims(axis=0),
            ResizeBilinear(height=height, width=width),
            Sub(mean),
        ),
    )
    spec.validate()
    return spec
