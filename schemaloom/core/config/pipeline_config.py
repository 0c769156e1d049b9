"""Tuning values for the analysis pipeline.

Thresholds and ceilings are defaults, not invariants; every field can be
overridden under ``schemaloom.pipeline`` in the YAML config.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from ..constants import (
    DEFAULT_AUTO_ACCEPT_THRESHOLD,
    DEFAULT_BATCH_SIZE,
    DEFAULT_ENUM_MAX_DISTINCT,
    DEFAULT_FAILED_BATCH_CEILING,
    DEFAULT_HIGH_CARDINALITY_RATIO,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MIN_NAME_SIMILARITY,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_REVIEW_THRESHOLD,
    DEFAULT_SAMPLE_ROWS,
    DEFAULT_TABLE_CONFIDENCE_THRESHOLD,
    DEFAULT_UNIT_RETRY_BUDGET,
    DEFAULT_UNIT_TIMEOUT_SECONDS,
)
from .config_loader import get_config_value


@dataclass
class PipelineConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    unit_retry_budget: int = DEFAULT_UNIT_RETRY_BUDGET
    failed_batch_ceiling: int = DEFAULT_FAILED_BATCH_CEILING
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    unit_timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY

    auto_accept_threshold: float = DEFAULT_AUTO_ACCEPT_THRESHOLD
    review_threshold: float = DEFAULT_REVIEW_THRESHOLD
    min_name_similarity: float = DEFAULT_MIN_NAME_SIMILARITY

    table_confidence_threshold: float = DEFAULT_TABLE_CONFIDENCE_THRESHOLD
    enum_max_distinct: int = DEFAULT_ENUM_MAX_DISTINCT
    high_cardinality_ratio: float = DEFAULT_HIGH_CARDINALITY_RATIO
    sample_rows: int = DEFAULT_SAMPLE_ROWS

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.unit_retry_budget < 0:
            raise ValueError(f"unit_retry_budget must be >= 0, got {self.unit_retry_budget}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if not 0.0 <= self.review_threshold <= self.auto_accept_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= review_threshold <= auto_accept_threshold <= 1"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PipelineConfig":
        """Build from a mapping, ignoring keys this dataclass does not know."""
        known = {f.name: f.type for f in fields(cls)}
        kwargs = {k: v for k, v in (data or {}).items() if k in known}
        return cls(**kwargs)

    @classmethod
    def from_config(cls) -> "PipelineConfig":
        return cls.from_dict(get_config_value("schemaloom", "pipeline", default={}))
