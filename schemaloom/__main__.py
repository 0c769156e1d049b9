import argparse
import json
import logging
import sys
import time
from typing import Any, Optional

from .core.config import PipelineConfig, get_config_value
from .core.constants import JOB_TYPE_AI_CONTEXT, JOB_TYPES
from .core.db.db import get_database_manager


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.orm").setLevel(logging.WARNING)
    logging.getLogger("backoff").setLevel(logging.ERROR)


logger = logging.getLogger(__name__)


def configure_llm(provider: Optional[str] = None, model: Optional[str] = None):
    """Set llama_index Settings.llm from the ``llm`` config section."""
    from llama_index.core import Settings

    provider = provider or get_config_value("llm", "provider", default="openai")
    model = model or get_config_value("llm", "model", default="gpt-4o-mini")
    temperature = get_config_value("llm", "temperature", default=0.1)

    if provider == "openai":
        from llama_index.llms.openai import OpenAI
        Settings.llm = OpenAI(model=model, temperature=temperature)
    elif provider == "ollama":
        from llama_index.llms.ollama import Ollama
        Settings.llm = Ollama(
            model=model,
            base_url=get_config_value("llm", "ollama_host", default="http://localhost:11434"),
            temperature=temperature,
            request_timeout=get_config_value("schemaloom", "pipeline", "unit_timeout_seconds", default=120.0),
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
    logger.info(f"LLM configured: {provider}/{model}")


def _build_engine(db_manager, source_url: Optional[str], with_llm: bool):
    from sqlalchemy import create_engine

    from .core.analysis import (
        AnalysisEngine,
        LLMAnalysisAdapter,
        SqlCatalogInspector,
        SqlTableCatalog,
    )

    config = PipelineConfig.from_config()
    if with_llm:
        configure_llm()

    inspector = SqlCatalogInspector(create_engine(source_url)) if source_url else None
    adapter = LLMAnalysisAdapter(inspector=inspector, config=config)
    catalog = SqlTableCatalog(db_manager)
    return AnalysisEngine(db_manager, adapter, catalog, config=config)


def _print(data: Any):
    print(json.dumps(data, indent=2, default=str))


def _cmd_init_db(args, db_manager):
    db_manager.create_tables()
    logger.info("Database initialized")


def _cmd_discover(args, db_manager):
    from sqlalchemy import create_engine

    from .core.analysis import SqlTableCatalog

    catalog = SqlTableCatalog(db_manager)
    table_ids = catalog.sync_from_engine(args.database_id, create_engine(args.source_url), schema=args.schema)
    _print({"database_id": args.database_id, "tables": table_ids})


def _cmd_run(args, db_manager):
    if args.job_id:
        engine = _build_engine(db_manager, args.source_url, with_llm=args.with_llm)
        job_id = args.job_id
    else:
        if not args.database_id or not args.job_type:
            raise SystemExit("run needs either --job-id or both --database-id and --type")
        engine = _build_engine(
            db_manager, args.source_url, with_llm=args.with_llm or args.job_type == JOB_TYPE_AI_CONTEXT,
        )
        job = engine.start_job(args.database_id, args.job_type, args.tables or None, args.batch_size)
        job_id = job["job_id"]
    _print(engine.run_until_settled(job_id, max_batches=args.max_batches))


def _cmd_cancel(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    _print(engine.request_cancel(args.job_id))


def _cmd_status(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    if args.job_id:
        _print(engine.get_job_status(args.job_id))
    else:
        _print(engine.get_job_overview(args.database_id))


def _cmd_progress(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    _print(engine.get_progress(args.database_id))


def _cmd_questions(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    answered = None if args.all else False
    _print(engine.get_questions(args.database_id, category=args.category, answered=answered))


def _cmd_answer(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    _print(engine.answer_question(args.question_id, args.response))


def _cmd_relationships(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    _print(engine.get_relationships(args.database_id, min_confidence=args.min_confidence))


def _cmd_validate(args, db_manager):
    engine = _build_engine(db_manager, None, with_llm=False)
    _print(engine.validate_relationship(args.candidate_id, validated=not args.reject))


def _cmd_worker(args, db_manager):
    from .core.analysis import AnalysisWorker

    engine = _build_engine(db_manager, args.source_url, with_llm=True)
    worker = AnalysisWorker(
        engine,
        poll_interval=get_config_value("schemaloom", "worker", "poll_interval", default=10.0),
        max_concurrent=get_config_value("schemaloom", "worker", "max_concurrent", default=2),
    )
    worker.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down worker")
    finally:
        worker.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="schemaloom", description="Incremental schema analysis")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--database-url", default=None, help="Application database (default: $DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create application tables")
    p.set_defaults(func=_cmd_init_db)

    p = sub.add_parser("discover", help="Reflect a target database into the catalog")
    p.add_argument("--database-id", required=True)
    p.add_argument("--source-url", required=True)
    p.add_argument("--schema", default=None)
    p.set_defaults(func=_cmd_discover)

    p = sub.add_parser("run", help="Start (or resume) a job and advance it until it settles")
    p.add_argument("--job-id", default=None)
    p.add_argument("--database-id", default=None)
    p.add_argument("--type", dest="job_type", choices=JOB_TYPES, default=None)
    p.add_argument("--tables", nargs="*", default=None)
    p.add_argument("--batch-size", type=int, default=None)
    p.add_argument("--max-batches", type=int, default=None)
    p.add_argument("--source-url", default=None)
    p.add_argument("--with-llm", action="store_true")
    p.set_defaults(func=_cmd_run)

    p = sub.add_parser("cancel", help="Request cancellation of a job")
    p.add_argument("job_id")
    p.set_defaults(func=_cmd_cancel)

    p = sub.add_parser("status", help="Job status, or latest job per type for a database")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--job-id")
    group.add_argument("--database-id")
    p.set_defaults(func=_cmd_status)

    p = sub.add_parser("progress", help="SME question progress")
    p.add_argument("--database-id", required=True)
    p.set_defaults(func=_cmd_progress)

    p = sub.add_parser("questions", help="List SME questions")
    p.add_argument("--database-id", required=True)
    p.add_argument("--category", default=None)
    p.add_argument("--all", action="store_true", help="Include answered questions")
    p.set_defaults(func=_cmd_questions)

    p = sub.add_parser("answer", help="Answer an SME question")
    p.add_argument("question_id")
    p.add_argument("response")
    p.set_defaults(func=_cmd_answer)

    p = sub.add_parser("relationships", help="List relationship candidates")
    p.add_argument("--database-id", required=True)
    p.add_argument("--min-confidence", type=float, default=None)
    p.set_defaults(func=_cmd_relationships)

    p = sub.add_parser("validate", help="Confirm (or reject) a relationship candidate")
    p.add_argument("candidate_id")
    p.add_argument("--reject", action="store_true")
    p.set_defaults(func=_cmd_validate)

    p = sub.add_parser("worker", help="Run the background analysis worker")
    p.add_argument("--source-url", default=None)
    p.set_defaults(func=_cmd_worker)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    db_manager = get_database_manager(args.database_url)
    try:
        args.func(args, db_manager)
    except (LookupError, ValueError) as e:
        logger.error(str(e))
        return 1
    finally:
        db_manager.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
