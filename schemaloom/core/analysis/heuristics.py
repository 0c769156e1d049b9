"""Semantic heuristics for relationship discovery.

Name similarity (Levenshtein plus foreign-key naming patterns), datatype
compatibility, cardinality ratio, and the confidence score built from them.
All functions are pure.
"""

import re
from typing import List, Optional, Sequence, Tuple

from ..constants import KIND_MANY_TO_MANY, KIND_ONE_TO_MANY, KIND_ONE_TO_ONE
from .models import CatalogHint, ColumnSpec, TableSpec

# Confidence weights
SIMILARITY_WEIGHT = 0.4
OVERLAP_WEIGHT = 0.3
FK_NAMING_BONUS = 0.1
PK_NAMING_BONUS = 0.1
CARDINALITY_WEIGHT = 0.1
INCOMPATIBLE_TYPE_PENALTY = 0.5
UNKNOWN_OVERLAP = 0.5

# (pattern, weight); both column names must match for the weight to apply
_NAME_PATTERNS = [
    (re.compile(r"^id$", re.I), 0.9),
    (re.compile(r"^(.+)_id$", re.I), 0.85),
    (re.compile(r"^(.+)id$", re.I), 0.8),
    (re.compile(r"^(user|customer|client)_?id$", re.I), 0.9),
    (re.compile(r"^(order|product|item|category)_?id$", re.I), 0.85),
]

_COMPATIBLE_GROUPS = [
    {"integer", "bigint", "smallint"},
    {"text", "varchar", "uuid"},
    {"decimal", "numeric", "real", "double precision", "float"},
    {"timestamp", "timestamptz", "date"},
]


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_similarity(a: str, b: str) -> float:
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein(a, b)) / longer


def _singular(name: str) -> str:
    name = name.lower()
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


def _references_table(column_name: str, table_name: str) -> bool:
    """True when the column is named ``<table>_id`` (singular or plural)."""
    col = column_name.lower()
    return col in (f"{table_name.lower()}_id", f"{_singular(table_name)}_id")


def name_similarity(table_a: str, column_a: str, table_b: str, column_b: str) -> float:
    """Similarity in [0, 1] between two columns, taking table names into account."""
    if column_a.lower() == column_b.lower():
        return 1.0

    best = 0.0
    for pattern, weight in _NAME_PATTERNS:
        if pattern.match(column_a) and pattern.match(column_b):
            best = max(best, weight)

    # orders.customer_id vs customers.id
    if (
        (_references_table(column_a, table_b) and column_b.lower() == "id")
        or (_references_table(column_b, table_a) and column_a.lower() == "id")
    ):
        best = max(best, 0.95)

    best = max(best, fuzzy_similarity(column_a.lower(), column_b.lower()))
    qualified = fuzzy_similarity(
        f"{table_a}.{column_a}".lower(), f"{table_b}.{column_b}".lower()
    )
    return max(best, qualified * 0.7)


def normalize_type(data_type: str) -> str:
    t = (data_type or "").lower().strip()
    if "char" in t or t == "text" or t == "string":
        return "text"
    if "bigint" in t or "int8" in t or "bigserial" in t:
        return "bigint"
    if "smallint" in t or "int2" in t:
        return "smallint"
    if "int" in t or "serial" in t:
        return "integer"
    if "decimal" in t or "numeric" in t:
        return "decimal"
    if "timestamp" in t:
        return "timestamp"
    return t


def types_compatible(type_a: str, type_b: str) -> bool:
    a, b = normalize_type(type_a), normalize_type(type_b)
    if a == b:
        return True
    return any(a in group and b in group for group in _COMPATIBLE_GROUPS)


def cardinality_ratio(col_a: ColumnSpec, col_b: ColumnSpec) -> Optional[float]:
    """min/max of the two cardinalities, or None when either is unknown."""
    if not col_a.cardinality or not col_b.cardinality:
        return None
    low, high = sorted((col_a.cardinality, col_b.cardinality))
    return low / high


def relationship_kind(source: ColumnSpec, target: ColumnSpec) -> str:
    """Cardinality-based guess; defaults to one-to-many when unknown."""
    if source.is_unique and target.is_unique:
        return KIND_ONE_TO_ONE
    if not source.cardinality or not target.cardinality:
        return KIND_ONE_TO_MANY
    ratio = source.cardinality / target.cardinality
    if 0.8 < ratio < 1.2:
        return KIND_ONE_TO_ONE
    if ratio > 2 or ratio < 0.5:
        return KIND_ONE_TO_MANY
    return KIND_MANY_TO_MANY


def score_confidence(
    similarity: float,
    types_ok: bool,
    source_column: str,
    target_column: str,
    ratio: Optional[float] = None,
    overlap: Optional[float] = None,
) -> float:
    """Weighted confidence in [0, 1] from the reported signals."""
    confidence = similarity * SIMILARITY_WEIGHT
    confidence += (UNKNOWN_OVERLAP if overlap is None else overlap) * OVERLAP_WEIGHT

    names = (source_column.lower(), target_column.lower())
    if any(n.endswith("_id") for n in names):
        confidence += FK_NAMING_BONUS
    if "id" in names:
        confidence += PK_NAMING_BONUS
    if ratio is not None:
        confidence += ratio * CARDINALITY_WEIGHT

    if not types_ok:
        confidence *= INCOMPATIBLE_TYPE_PENALTY
    return round(min(max(confidence, 0.0), 1.0), 4)


def build_reasoning(
    similarity: float,
    types_ok: bool,
    source_column: str,
    target_column: str,
    overlap: Optional[float] = None,
) -> str:
    reasons: List[str] = []
    if similarity >= 0.9:
        reasons.append("Very high name similarity")
    elif similarity >= 0.7:
        reasons.append("High name similarity")
    else:
        reasons.append(f"Name similarity {similarity:.2f}")

    if overlap is not None:
        if overlap >= 0.8:
            reasons.append(f"{overlap * 100:.1f}% value overlap")
        elif overlap >= 0.5:
            reasons.append(f"Moderate value overlap ({overlap * 100:.1f}%)")

    names = (source_column.lower(), target_column.lower())
    if any(n.endswith("_id") for n in names):
        reasons.append("Foreign key naming pattern")
    if "id" in names:
        reasons.append("Primary key relationship")
    if not types_ok:
        reasons.append("Datatypes differ")
    return ", ".join(reasons)


def find_hint(
    hints: Sequence[CatalogHint],
    table_a: TableSpec, col_a: ColumnSpec,
    table_b: TableSpec, col_b: ColumnSpec,
) -> Optional[CatalogHint]:
    for hint in hints:
        if hint.matches(table_a.table_id, col_a.name, table_b.table_id, col_b.name):
            return hint
    return None


def passes_prescreen(
    table_a: TableSpec, col_a: ColumnSpec,
    table_b: TableSpec, col_b: ColumnSpec,
    hints: Sequence[CatalogHint],
    min_similarity: float,
) -> bool:
    """Cheap filter applied before a column pair is sent for assessment."""
    if find_hint(hints, table_a, col_a, table_b, col_b):
        return True
    if not types_compatible(col_a.data_type, col_b.data_type):
        return False
    return name_similarity(table_a.name, col_a.name, table_b.name, col_b.name) >= min_similarity


def orient(
    table_a: TableSpec, col_a: ColumnSpec,
    table_b: TableSpec, col_b: ColumnSpec,
    hints: Sequence[CatalogHint] = (),
) -> Tuple[TableSpec, ColumnSpec, TableSpec, ColumnSpec]:
    """Decide which side of a column pair holds the foreign key.

    Declared constraint first, then ``<table>_id`` naming, then the side
    that is not a plain ``id``; otherwise first table to second.
    """
    hint = find_hint(hints, table_a, col_a, table_b, col_b)
    if hint:
        if hint.source_table_id == table_a.table_id and hint.source_column == col_a.name:
            return table_a, col_a, table_b, col_b
        return table_b, col_b, table_a, col_a

    if _references_table(col_a.name, table_b.name) and not _references_table(col_b.name, table_a.name):
        return table_a, col_a, table_b, col_b
    if _references_table(col_b.name, table_a.name) and not _references_table(col_a.name, table_b.name):
        return table_b, col_b, table_a, col_a

    a_is_id = col_a.name.lower() == "id" or col_a.is_primary_key
    b_is_id = col_b.name.lower() == "id" or col_b.is_primary_key
    if a_is_id and not b_is_id:
        return table_b, col_b, table_a, col_a
    return table_a, col_a, table_b, col_b
