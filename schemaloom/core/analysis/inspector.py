"""Live inspection of the database being analyzed.

Reads structure and statistics straight from the target database through
SQLAlchemy reflection. Connection trouble is a transient failure; a table
that no longer exists is a permanent one.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import MetaData, Table, distinct, func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, OperationalError, SQLAlchemyError

from .models import (
    AnalysisFailure,
    AnalysisOutcome,
    CatalogHint,
    ColumnSpec,
    Ok,
    TableSpec,
)

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class SqlCatalogInspector:
    """Structure and statistics for tables in a target database."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def _schema(self, table: TableSpec) -> Optional[str]:
        # SQLite has no schemas beyond the attached database name
        if self._engine.dialect.name == "sqlite":
            return None
        return table.schema

    def _reflect(self, table: TableSpec) -> Table:
        try:
            return Table(table.name, MetaData(), autoload_with=self._engine, schema=self._schema(table))
        except NoSuchTableError as e:
            raise AnalysisFailure(
                f"Table {table.qualified_name} no longer exists", retryable=False, unit_id=table.table_id
            ) from e
        except OperationalError as e:
            raise AnalysisFailure(
                f"Could not reach database: {e}", retryable=True, unit_id=table.table_id
            ) from e

    def _failure(self, table: TableSpec, error: SQLAlchemyError) -> AnalysisFailure:
        retryable = isinstance(error, OperationalError)
        return AnalysisFailure(
            f"Query on {table.qualified_name} failed: {error}",
            retryable=retryable,
            unit_id=table.table_id,
        )

    # ── Schema ──────────────────────────────────────────────────────────

    def inspect_table(self, table: TableSpec) -> AnalysisOutcome:
        reflected = self._reflect(table)
        try:
            inspector = inspect(self._engine)
            schema = self._schema(table)
            indexes = inspector.get_indexes(table.name, schema=schema)
            foreign_keys = inspector.get_foreign_keys(table.name, schema=schema)
            with self._engine.connect() as conn:
                row_count = conn.execute(select(func.count()).select_from(reflected)).scalar()
        except SQLAlchemyError as e:
            raise self._failure(table, e) from e

        return Ok({
            "table_id": table.table_id,
            "table_name": table.name,
            "schema": table.schema,
            "row_count": row_count,
            "primary_key": [c.name for c in reflected.primary_key.columns],
            "columns": [
                {
                    "name": c.name,
                    "data_type": str(c.type),
                    "nullable": bool(c.nullable),
                    "unique": bool(c.unique),
                }
                for c in reflected.columns
            ],
            "foreign_keys": [
                {
                    "name": fk.get("name"),
                    "columns": fk["constrained_columns"],
                    "referred_table": fk["referred_table"],
                    "referred_columns": fk["referred_columns"],
                }
                for fk in foreign_keys
            ],
            "indexes": [
                {"name": ix.get("name"), "columns": ix["column_names"], "unique": bool(ix.get("unique"))}
                for ix in indexes
            ],
        })

    # ── Statistics ──────────────────────────────────────────────────────

    def profile_table(self, table: TableSpec, enum_max_distinct: int = 100) -> AnalysisOutcome:
        reflected = self._reflect(table)
        columns: Dict[str, Dict[str, Any]] = {}
        try:
            with self._engine.connect() as conn:
                row_count = conn.execute(select(func.count()).select_from(reflected)).scalar() or 0
                for col in reflected.columns:
                    cardinality = conn.execute(select(func.count(distinct(col)))).scalar() or 0
                    nulls = conn.execute(
                        select(func.count()).select_from(reflected).where(col.is_(None))
                    ).scalar() or 0
                    stats = {
                        "data_type": str(col.type),
                        "cardinality": cardinality,
                        "null_percentage": round(nulls * 100.0 / row_count, 2) if row_count else 0.0,
                        "distinct_values": [],
                    }
                    if 0 < cardinality <= enum_max_distinct:
                        values = conn.execute(
                            select(distinct(col)).where(col.isnot(None)).order_by(col)
                        ).scalars().all()
                        stats["distinct_values"] = [_json_safe(v) for v in values]
                    columns[col.name] = stats
        except SQLAlchemyError as e:
            raise self._failure(table, e) from e

        return Ok({
            "table_id": table.table_id,
            "table_name": table.name,
            "row_count": row_count,
            "columns": columns,
        })

    def sample_rows(self, table: TableSpec, limit: int = 20) -> List[Dict[str, Any]]:
        reflected = self._reflect(table)
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(select(reflected).limit(limit)).mappings().all()
        except SQLAlchemyError as e:
            raise self._failure(table, e) from e
        return [{k: _json_safe(v) for k, v in row.items()} for row in rows]

    def value_overlap(
        self,
        source_table: TableSpec, source_column: ColumnSpec,
        target_table: TableSpec, target_column: ColumnSpec,
    ) -> Optional[float]:
        """Share of distinct non-null source values present in the target column."""
        src = self._reflect(source_table)
        tgt = self._reflect(target_table)
        src_col = src.c[source_column.name]
        tgt_col = tgt.c[target_column.name]
        try:
            with self._engine.connect() as conn:
                total = conn.execute(
                    select(func.count(distinct(src_col))).where(src_col.isnot(None))
                ).scalar() or 0
                if total == 0:
                    return None
                matching = conn.execute(
                    select(func.count(distinct(src_col))).where(src_col.in_(select(tgt_col)))
                ).scalar() or 0
        except SQLAlchemyError as e:
            raise self._failure(source_table, e) from e
        return round(matching / total, 4)

    # ── Declared constraints ────────────────────────────────────────────

    def foreign_key_hints(self, tables: Sequence[TableSpec]) -> List[CatalogHint]:
        by_name = {t.name: t for t in tables}
        hints: List[CatalogHint] = []
        inspector = inspect(self._engine)
        for table in tables:
            try:
                foreign_keys = inspector.get_foreign_keys(table.name, schema=self._schema(table))
            except NoSuchTableError:
                continue
            except SQLAlchemyError as e:
                raise self._failure(table, e) from e
            for fk in foreign_keys:
                target = by_name.get(fk["referred_table"])
                if target is None:
                    continue
                for src_col, tgt_col in zip(fk["constrained_columns"], fk["referred_columns"]):
                    hints.append(CatalogHint(
                        source_table_id=table.table_id,
                        source_column=src_col,
                        target_table_id=target.table_id,
                        target_column=tgt_col,
                        constraint_name=fk.get("name"),
                    ))
        return hints
