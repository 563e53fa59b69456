"""Command-line entry point: ``imagelabel <image>``."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING

from pydantic import ValidationError

from imagelabel import __version__
from imagelabel.config import get_settings
from imagelabel.errors import ImageLabelError
from imagelabel.pipeline import label_image

if TYPE_CHECKING:
    from collections.abc import Sequence

    from imagelabel.ml.image_classifier import ClassificationResult

logger = logging.getLogger(__name__)


def format_result(result: ClassificationResult) -> str:
    """Render a result as ``label (NN.N%)``."""
    return f"{result.label} ({result.confidence * 100:.1f}%)"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagelabel",
        description="Classify an image with a pretrained network and print the top labels.",
    )
    parser.add_argument("image", help="path to the image file to classify")
    parser.add_argument("--model", dest="model_path", help="frozen model graph (.pb or .onnx)")
    parser.add_argument("--labels", dest="labels_path", help="label file, one label per line")
    parser.add_argument("--engine", choices=["tensorflow", "onnx"], help="tensor engine backend")
    parser.add_argument("--top-k", dest="top_k", type=int, help="number of labels to rank (default 5)")
    parser.add_argument("--show", dest="display_count", type=int, help="number of labels to print (default 3)")
    parser.add_argument("-v", "--verbose", action="store_true", help="log progress to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the process exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        settings = get_settings(
            model_path=args.model_path,
            labels_path=args.labels_path,
            engine=args.engine,
            top_k=args.top_k,
            display_count=args.display_count,
        )
    except ValidationError as exc:
        parser.error(str(exc))

    try:
        results = label_image(settings, args.image)
    except ImageLabelError as exc:
        logger.error("%s failed: %s", exc.stage, exc)
        return 1

    print("\n")
    for result in results[: settings.display_count]:
        print(format_result(result))
    print("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
