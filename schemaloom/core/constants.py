"""Shared constants for SchemaLoom.

Job types, statuses, question categories and the default pipeline tuning
values. Defaults here are overridden by config/schemaloom.yaml.
"""

# =============================================================================
# Analysis Job Types
# =============================================================================

JOB_TYPE_SCHEMA = "schema"
JOB_TYPE_STATISTICAL = "statistical"
JOB_TYPE_AI_CONTEXT = "ai_context"
JOB_TYPE_JOIN_DETECTION = "join_detection"

JOB_TYPES = (
    JOB_TYPE_SCHEMA,
    JOB_TYPE_STATISTICAL,
    JOB_TYPE_AI_CONTEXT,
    JOB_TYPE_JOIN_DETECTION,
)

# =============================================================================
# Job Status
# =============================================================================

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

# Allowed forward transitions; terminal states have none.
STATUS_TRANSITIONS = {
    STATUS_PENDING: (STATUS_RUNNING, STATUS_FAILED),
    STATUS_RUNNING: (STATUS_COMPLETED, STATUS_FAILED),
    STATUS_COMPLETED: (),
    STATUS_FAILED: (),
}

CANCELLED_ERROR = "cancelled"
INTEGRITY_ERROR_PREFIX = "data integrity"

# =============================================================================
# SME Questions
# =============================================================================

CATEGORY_TABLE = "table"
CATEGORY_COLUMN = "column"
CATEGORY_RELATIONSHIP = "relationship"
CATEGORY_AMBIGUITY = "ambiguity"

QUESTION_CATEGORIES = (
    CATEGORY_TABLE,
    CATEGORY_COLUMN,
    CATEGORY_RELATIONSHIP,
    CATEGORY_AMBIGUITY,
)

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"

PRIORITIES = (PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

RELATIONSHIP_OPTIONS = [
    "Yes, this relationship is correct",
    "No, these columns are unrelated",
    "Related, but not as a foreign key",
]

AMBIGUITY_EXTRA_OPTIONS = [
    "Multiple relationships are valid",
    "None of these relationships are correct",
]

# Columns that never get a value-set question
TEMPORAL_TYPE_MARKERS = ("timestamp", "date", "time", "interval")
TIMESTAMP_COLUMN_NAMES = (
    "created_at", "updated_at", "deleted_at", "last_updated_at",
    "last_modified_at", "date_partition_delta", "timestamp",
)


# =============================================================================
# Relationships
# =============================================================================

KIND_ONE_TO_ONE = "one-to-one"
KIND_ONE_TO_MANY = "one-to-many"
KIND_MANY_TO_MANY = "many-to-many"

SOURCE_CATALOG = "catalog"
SOURCE_HEURISTIC = "heuristic"
SOURCE_LLM = "llm"

# =============================================================================
# Pipeline Defaults
# =============================================================================

DEFAULT_BATCH_SIZE = 5
DEFAULT_UNIT_RETRY_BUDGET = 3
DEFAULT_FAILED_BATCH_CEILING = 3
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_UNIT_TIMEOUT_SECONDS = 120.0
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0

DEFAULT_AUTO_ACCEPT_THRESHOLD = 0.9
DEFAULT_REVIEW_THRESHOLD = 0.7
DEFAULT_MIN_NAME_SIMILARITY = 0.5

DEFAULT_TABLE_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_ENUM_MAX_DISTINCT = 100
DEFAULT_HIGH_CARDINALITY_RATIO = 0.2
DEFAULT_SAMPLE_ROWS = 20
