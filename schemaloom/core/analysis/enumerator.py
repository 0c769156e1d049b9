"""Work unit enumeration.

The same (job type, table set) always yields the same units at the same
indices, whatever order the table ids arrive in. ``next_index`` on a
persisted job is only meaningful because of that.
"""

from itertools import combinations
from typing import Iterable, List

from ..constants import JOB_TYPE_JOIN_DETECTION, JOB_TYPES
from .models import WorkUnit

PAIR_SEPARATOR = "|"


def normalize_table_ids(table_ids: Iterable[str]) -> List[str]:
    """Sorted, de-duplicated string ids."""
    return sorted({str(t) for t in table_ids})


def pair_unit_id(table_a: str, table_b: str) -> str:
    first, second = sorted((table_a, table_b))
    return f"{first}{PAIR_SEPARATOR}{second}"


def enumerate_units(job_type: str, table_ids: Iterable[str]) -> List[WorkUnit]:
    """Ordered work units for a job.

    join_detection: one unit per unordered table pair.
    Everything else: one unit per table.
    """
    if job_type not in JOB_TYPES:
        raise ValueError(f"Unknown job type: {job_type}")

    tables = normalize_table_ids(table_ids)

    if job_type == JOB_TYPE_JOIN_DETECTION:
        return [
            WorkUnit(
                unit_id=pair_unit_id(a, b),
                index=i,
                job_type=job_type,
                table_ids=(a, b),
            )
            for i, (a, b) in enumerate(combinations(tables, 2))
        ]

    return [
        WorkUnit(unit_id=t, index=i, job_type=job_type, table_ids=(t,))
        for i, t in enumerate(tables)
    ]


def count_units(job_type: str, table_ids: Iterable[str]) -> int:
    n = len(normalize_table_ids(table_ids))
    if job_type == JOB_TYPE_JOIN_DETECTION:
        return n * (n - 1) // 2
    return n
