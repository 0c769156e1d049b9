"""Table catalog: the tables and columns a job may analyze."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, selectinload

from ..db import DatabaseManager
from ..db.models import CatalogColumn, CatalogTable
from .models import ColumnSpec, TableSpec

logger = logging.getLogger(__name__)


class TableCatalog(ABC):
    """Read access to catalog tables."""

    @abstractmethod
    def get_tables(self, database_id: str, table_ids: Iterable[str]) -> Dict[str, TableSpec]:
        """Known tables keyed by id; unknown ids are simply absent."""

    def list_table_ids(self, database_id: str) -> List[str]:
        return []

    def apply_statistics(self, session: Session, database_id: str, profile: Dict[str, Any]):
        """Write a finished statistical result back to the catalog."""

    def apply_ai_context(self, session: Session, database_id: str, context: Dict[str, Any]):
        """Write a finished AI context result back to the catalog."""


def _to_spec(row: CatalogTable) -> TableSpec:
    return TableSpec(
        table_id=str(row.table_id),
        name=row.name,
        schema=row.schema_name,
        row_count=row.row_count,
        ai_description=row.ai_description,
        business_purpose=row.business_purpose,
        columns=[
            ColumnSpec(
                column_id=str(c.column_id),
                name=c.name,
                data_type=c.data_type,
                ordinal=c.ordinal,
                is_nullable=c.is_nullable,
                is_unique=c.is_unique,
                is_primary_key=c.is_primary_key,
                cardinality=c.cardinality,
                null_percentage=c.null_percentage,
                distinct_values=list(c.distinct_values or []),
                ai_description=c.ai_description,
            )
            for c in row.columns
        ],
    )


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


class SqlTableCatalog(TableCatalog):
    """Catalog stored in the application database."""

    def __init__(self, db_manager: DatabaseManager):
        self._db = db_manager

    def get_tables(self, database_id: str, table_ids: Iterable[str]) -> Dict[str, TableSpec]:
        ids = [u for u in (_as_uuid(t) for t in table_ids) if u is not None]
        if not ids:
            return {}
        with self._db.get_session() as session:
            rows = (
                session.query(CatalogTable)
                .options(selectinload(CatalogTable.columns))
                .filter(CatalogTable.database_id == database_id, CatalogTable.table_id.in_(ids))
                .all()
            )
            return {str(r.table_id): _to_spec(r) for r in rows}

    def list_table_ids(self, database_id: str) -> List[str]:
        with self._db.get_session() as session:
            rows = (
                session.query(CatalogTable.table_id)
                .filter(CatalogTable.database_id == database_id, CatalogTable.is_selected.is_(True))
                .all()
            )
            return sorted(str(r.table_id) for r in rows)

    def sync_from_engine(self, database_id: str, engine: Engine, schema: Optional[str] = None) -> List[str]:
        """Reflect a target database into the catalog.

        Existing tables keep their ids; new tables and columns are added.
        Returns the ids of every table seen.
        """
        inspector = sa_inspect(engine)
        schema_name = schema or ("main" if engine.dialect.name == "sqlite" else "public")
        seen: List[str] = []

        with self._db.get_session() as session:
            for table_name in inspector.get_table_names(schema=schema):
                row = (
                    session.query(CatalogTable)
                    .filter_by(database_id=database_id, schema_name=schema_name, name=table_name)
                    .first()
                )
                if row is None:
                    row = CatalogTable(database_id=database_id, schema_name=schema_name, name=table_name)
                    session.add(row)
                    session.flush()

                pk = set(inspector.get_pk_constraint(table_name, schema=schema).get("constrained_columns") or [])
                unique = {
                    cols[0]
                    for cols in (
                        uc.get("column_names") or []
                        for uc in inspector.get_unique_constraints(table_name, schema=schema)
                    )
                    if len(cols) == 1
                }
                existing = {c.name: c for c in row.columns}
                for ordinal, col in enumerate(inspector.get_columns(table_name, schema=schema)):
                    column = existing.get(col["name"])
                    if column is None:
                        column = CatalogColumn(table_id=row.table_id, name=col["name"])
                        row.columns.append(column)
                    column.data_type = str(col["type"])
                    column.ordinal = ordinal
                    column.is_nullable = bool(col.get("nullable", True))
                    column.is_primary_key = col["name"] in pk
                    column.is_unique = col["name"] in pk or col["name"] in unique

                seen.append(str(row.table_id))

        logger.info(f"Catalog sync for database {database_id}: {len(seen)} tables")
        return sorted(seen)

    def apply_statistics(self, session: Session, database_id: str, profile: Dict[str, Any]):
        tables = (profile or {}).get("tables") or {}
        for table_id, entry in tables.items():
            uid = _as_uuid(table_id)
            if uid is None:
                continue
            row = session.query(CatalogTable).filter_by(database_id=database_id, table_id=uid).first()
            if row is None:
                continue
            if entry.get("row_count") is not None:
                row.row_count = entry["row_count"]
            stats_by_column = entry.get("columns") or {}
            for column in row.columns:
                stats = stats_by_column.get(column.name)
                if not stats:
                    continue
                column.cardinality = stats.get("cardinality")
                column.null_percentage = stats.get("null_percentage")
                column.distinct_values = stats.get("distinct_values") or []

    def apply_ai_context(self, session: Session, database_id: str, context: Dict[str, Any]):
        tables = (context or {}).get("tables") or {}
        for table_id, entry in tables.items():
            uid = _as_uuid(table_id)
            if uid is None:
                continue
            row = session.query(CatalogTable).filter_by(database_id=database_id, table_id=uid).first()
            if row is None:
                continue
            if entry.get("description"):
                row.ai_description = entry["description"]
            if entry.get("business_purpose"):
                row.business_purpose = entry["business_purpose"]
            descriptions = entry.get("column_descriptions") or {}
            for column in row.columns:
                if descriptions.get(column.name):
                    column.ai_description = descriptions[column.name]
        logger.info(f"AI context written to catalog for database {database_id}: {len(tables)} tables")
