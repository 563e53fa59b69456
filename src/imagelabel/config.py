"""Environment-based configuration for imagelabel."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IMAGELABEL_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGELABEL_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Model files
    model_path: str = "model/tensorflow_inception_graph.pb"
    labels_path: str = "model/imagenet_comp_graph_label_strings.txt"
    model_repo_id: str | None = None

    # Engine
    engine: Literal["tensorflow", "onnx"] = "tensorflow"
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Session threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Graph nodes
    input_node: str = "input"
    output_node: str = "output"

    # Normalization
    image_size: int = Field(default=224, ge=1)
    mean_value: float = 117.0

    # Ranking
    top_k: int = Field(default=5, ge=1)
    display_count: int = Field(default=3, ge=1)

    # Input limits
    max_file_size: int = Field(default=209_715_200, ge=1)

    @model_validator(mode="after")
    def _check_display_count(self) -> Settings:
        if self.display_count > self.top_k:
            raise ValueError(f"display_count ({self.display_count}) must not exceed top_k ({self.top_k})")
        return self


def get_settings(**overrides: object) -> Settings:
    """Create settings from the environment, with explicit overrides on top.

    Overrides set to None are ignored so unset CLI flags fall back to the
    environment or the defaults.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    return Settings(**explicit)  # type: ignore[arg-type]
