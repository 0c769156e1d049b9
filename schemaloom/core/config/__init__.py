"""Configuration loading for SchemaLoom."""

from .config_loader import (
    get_config_path,
    get_config_value,
    load_config,
    reset_config_cache,
)
from .pipeline_config import PipelineConfig

__all__ = [
    "get_config_path",
    "get_config_value",
    "load_config",
    "reset_config_cache",
    "PipelineConfig",
]
