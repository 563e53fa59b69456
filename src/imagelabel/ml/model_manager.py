"""Model manager: locate, download, and load the model graph and label table.

Files are read from the configured local paths. When a file is missing and
a Hugging Face repository is configured, it is downloaded next to the
configured path first.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError

from imagelabel.errors import InputError

if TYPE_CHECKING:
    from imagelabel.config import Settings
    from imagelabel.ml.engine import GraphEngine

logger = logging.getLogger(__name__)


def ensure_downloaded(path: Path, settings: Settings) -> Path:
    """Return ``path`` if it exists, downloading it from the model repo if not.

    Raises:
        InputError: If the file is missing and cannot be downloaded.
    """
    if path.is_file():
        return path

    if settings.model_repo_id is None:
        raise InputError(f"File not found: {path}")

    try:
        downloaded = Path(
            hf_hub_download(
                repo_id=settings.model_repo_id,
                filename=path.name,
                local_dir=str(path.parent),
            )
        )
    except (HfHubHTTPError, OSError, ValueError) as exc:
        raise InputError(f"File not found: {path} (download from {settings.model_repo_id} failed: {exc})") from exc
    logger.info("Downloaded %s to %s", path.name, downloaded)
    return downloaded


def load_labels(path: Path) -> list[str]:
    """Read a UTF-8 label file, one label per line; line i names class i.

    Raises:
        InputError: If the file cannot be read or is not UTF-8.
    """
    try:
        text = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"Could not read labels from {path}: {exc}") from exc
    # Only "\n" ends a line; a trailing "\r" belongs to the line ending.
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    labels = [line.removesuffix("\r") for line in lines]
    logger.info("Loaded %d labels from %s", len(labels), path)
    return labels


def load_model(engine: GraphEngine, settings: Settings) -> tuple[Any, list[str]]:
    """Load the classification graph and its label table.

    Returns:
        The engine graph for ``settings.model_path`` and the label list.
    """
    model_path = ensure_downloaded(Path(settings.model_path), settings)
    labels_path = ensure_downloaded(Path(settings.labels_path), settings)

    graph = engine.load_graph(model_path)
    labels = load_labels(labels_path)
    return graph, labels
