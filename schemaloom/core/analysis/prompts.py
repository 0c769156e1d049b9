"""Prompt templates for table description.

One template: describe_table_prompt, which asks for the table description,
per-column descriptions and enumerated-value hypotheses in a single call.
"""

import json
from typing import Any, Dict, List, Optional

from .models import TableSpec

MAX_SAMPLE_CHARS = 2000


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def _column_lines(table: TableSpec, enum_max_distinct: int) -> List[str]:
    lines = []
    for col in table.columns:
        flags = []
        if col.is_primary_key:
            flags.append("PK")
        if col.is_unique:
            flags.append("unique")
        if not col.is_nullable:
            flags.append("not null")
        stats = []
        if col.cardinality is not None:
            stats.append(f"distinct={col.cardinality}")
        if col.null_percentage is not None:
            stats.append(f"nulls={col.null_percentage:.1f}%")
        line = f"- {col.name} ({col.data_type})"
        if flags:
            line += f" [{', '.join(flags)}]"
        if stats:
            line += f" {' '.join(stats)}"
        if col.distinct_values and len(col.distinct_values) <= enum_max_distinct:
            values = ", ".join(str(v) for v in col.distinct_values[:25])
            line += f"\n    values: {values}"
        lines.append(line)
    return lines


def describe_table_prompt(
    table: TableSpec,
    sample_rows: Optional[List[Dict[str, Any]]] = None,
    enum_max_distinct: int = 100,
) -> str:
    """Build the AI context prompt for one table."""
    columns = "\n".join(_column_lines(table, enum_max_distinct)) or "(no columns)"
    sample_section = ""
    if sample_rows:
        sample = _truncate(json.dumps(sample_rows, indent=2, default=str), MAX_SAMPLE_CHARS)
        sample_section = f"\n## SAMPLE ROWS\n{sample}\n"

    return f"""You are an expert data analyst documenting a relational database for business users.

## TABLE
- Name: {table.qualified_name}
- Rows: {table.row_count if table.row_count is not None else "unknown"}

## COLUMNS
{columns}
{sample_section}
## INSTRUCTIONS
1. Describe what this table stores in business terms.
2. State the business purpose of the table.
3. Describe every column in one sentence.
4. For columns that look categorical (a small, fixed set of values), list the
   values you believe are valid in "enum_values". Only include columns with at
   most {enum_max_distinct} distinct values.
5. Give a confidence between 0 and 1 for your table description. Use a low
   value when the purpose of the table is unclear.

Respond with a single JSON object and nothing else:
{{
  "description": "what the table stores",
  "business_purpose": "why the business keeps it",
  "confidence": 0.0,
  "columns": [
    {{"column_name": "name", "description": "one sentence", "enum_values": ["a", "b"]}}
  ]
}}"""
