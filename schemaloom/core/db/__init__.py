"""
Database module for SchemaLoom.

Exports:
- DatabaseManager: Database connection and session management
- get_database_manager: Factory function for DatabaseManager
- wait_for_db: Database availability checker with retry logic
- Models: CatalogTable, CatalogColumn, AnalysisJob, ForeignKeyCandidate, SmeQuestion
- Base: SQLAlchemy declarative base
"""

from .db import DatabaseManager, get_database_manager, wait_for_db
from .models import (
    Base,
    CatalogTable,
    CatalogColumn,
    AnalysisJob,
    ForeignKeyCandidate,
    SmeQuestion,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "get_database_manager",
    "wait_for_db",

    # ORM models
    "Base",
    "CatalogTable",
    "CatalogColumn",
    "AnalysisJob",
    "ForeignKeyCandidate",
    "SmeQuestion",
]
