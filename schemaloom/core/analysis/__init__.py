"""Analysis pipeline - resumable batch jobs over database tables.

Public API:
    AnalysisEngine       - orchestrator (start_job, advance, questions, progress)
    BatchProcessor       - job state machine, one batch per advance()
    AnalysisWorker       - background poll-and-advance loop
    LLMAnalysisAdapter   - llama_index + heuristics analysis backend
    SqlCatalogInspector  - live structure/statistics of the analyzed database
    SqlTableCatalog      - table catalog stored in the application database
"""

from .adapter import AnalysisAdapter, LLMAnalysisAdapter
from .catalog import SqlTableCatalog, TableCatalog
from .engine import AnalysisEngine
from .inspector import SqlCatalogInspector
from .processor import BatchProcessor
from .worker import AnalysisWorker

__all__ = [
    "AnalysisAdapter",
    "LLMAnalysisAdapter",
    "SqlTableCatalog",
    "TableCatalog",
    "AnalysisEngine",
    "SqlCatalogInspector",
    "BatchProcessor",
    "AnalysisWorker",
]
