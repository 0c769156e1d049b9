"""Shared fixtures: in-memory application database, scripted adapter, fixed catalog."""

import threading
from collections import defaultdict

import pytest

from schemaloom.core.analysis.adapter import AnalysisAdapter, LLMAnalysisAdapter
from schemaloom.core.analysis.catalog import TableCatalog
from schemaloom.core.analysis.models import (
    ColumnSpec,
    Empty,
    Ok,
    TableDescription,
    TableSpec,
)
from schemaloom.core.config import PipelineConfig
from schemaloom.core.db import DatabaseManager


# ── Fakes ─────────────────────────────────────────────────────────────────


class ScriptedAdapter(AnalysisAdapter):
    """describe_table follows a per-table script, one entry per call.

    A script entry is an exception (raised), an outcome (returned) or None
    (normal description). The last entry repeats once the script runs out.
    """

    def __init__(self, scripts=None, confidence=0.9, enums=None):
        self.scripts = scripts or {}
        self.confidence = confidence
        self.enums = enums or {}
        self.calls = defaultdict(int)
        self._lock = threading.Lock()

    def describe_table(self, table):
        with self._lock:
            self.calls[table.table_id] += 1
            n = self.calls[table.table_id]
        script = self.scripts.get(table.table_id)
        if script:
            step = script[min(n, len(script)) - 1]
            if isinstance(step, BaseException):
                raise step
            if step is not None:
                return step
        return Ok(TableDescription(
            table_id=table.table_id,
            table_name=table.name,
            description=f"Holds {table.name} records",
            confidence=self.confidence,
            enum_hypotheses=dict(self.enums.get(table.table_id, {})),
        ))

    def assess_relationship(self, table_a, column_a, table_b, column_b, hints=()):
        return Empty("not scripted")


class HeuristicAdapter(LLMAnalysisAdapter):
    """Relationship assessment through the real heuristics, no LLM."""

    def __init__(self, config=None):
        super().__init__(llm=object(), inspector=None, config=config)


class StaticCatalog(TableCatalog):
    def __init__(self, tables):
        self.tables = {t.table_id: t for t in tables}
        self.applied = []
        self.ai_applied = []

    def get_tables(self, database_id, table_ids):
        return {t: self.tables[t] for t in table_ids if t in self.tables}

    def list_table_ids(self, database_id):
        return sorted(self.tables)

    def apply_statistics(self, session, database_id, profile):
        self.applied.append((database_id, profile))

    def apply_ai_context(self, session, database_id, context):
        self.ai_applied.append((database_id, context))


def _col(name, data_type="INTEGER", **kwargs):
    return ColumnSpec(column_id=f"col-{name}", name=name, data_type=data_type, **kwargs)


def simple_tables(n=5):
    """``n`` one-column tables t1..tn."""
    return [
        TableSpec(table_id=f"t{i}", name=f"table_{i}", columns=[_col("id", is_primary_key=True)])
        for i in range(1, n + 1)
    ]


def shop_tables():
    """Five tables with the usual foreign-key naming."""
    def table(table_id, name, *columns):
        return TableSpec(table_id=table_id, name=name, columns=list(columns))

    return [
        table("tbl-categories", "categories",
              _col("id", is_primary_key=True, is_unique=True), _col("name", "VARCHAR(100)")),
        table("tbl-customers", "customers",
              _col("id", is_primary_key=True, is_unique=True), _col("email", "VARCHAR(255)")),
        table("tbl-order_items", "order_items",
              _col("id", is_primary_key=True, is_unique=True), _col("order_id"), _col("product_id")),
        table("tbl-orders", "orders",
              _col("id", is_primary_key=True, is_unique=True), _col("customer_id"), _col("status", "VARCHAR(20)")),
        table("tbl-products", "products",
              _col("id", is_primary_key=True, is_unique=True), _col("category_id"), _col("name", "VARCHAR(100)")),
    ]


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.dispose()


@pytest.fixture
def config():
    return PipelineConfig(
        batch_size=2,
        unit_retry_budget=3,
        failed_batch_ceiling=3,
        max_concurrency=4,
        unit_timeout_seconds=5.0,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter


@pytest.fixture
def heuristic_adapter(config):
    return HeuristicAdapter(config=config)


@pytest.fixture
def simple_catalog():
    return StaticCatalog(simple_tables())


@pytest.fixture
def shop_catalog():
    return StaticCatalog(shop_tables())


@pytest.fixture
def make_catalog():
    return StaticCatalog
