"""Database initialization and schema helpers for ReceiptSearch."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from receiptsearch.config import settings

logger = logging.getLogger(__name__)


class DB:
    """Database state holder."""

    engine = None
    SessionLocal = None


def _schema_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _schema_dir() -> Path:
    return _schema_root() / "schema"


def _read_sql_file(path: Path) -> list[str]:
    sql = path.read_text(encoding="utf-8")
    statements = []
    for stmt in sql.split(";"):
        cleaned = stmt.strip()
        if not cleaned:
            continue
        upper = cleaned.upper()
        if upper == "BEGIN" or upper == "COMMIT":
            continue
        statements.append(cleaned)
    return statements


def apply_schema(engine) -> None:
    schema_dir = _schema_dir()
    if not schema_dir.exists():
        raise RuntimeError(f"Schema directory missing: {schema_dir}")

    files = sorted(schema_dir.glob("*.sql"))
    if not files:
        logger.warning("No schema files found; skipping migration")
        return

    with engine.begin() as conn:
        for path in files:
            logger.debug("Applying schema file %s", path.name)
            for statement in _read_sql_file(path):
                conn.exec_driver_sql(statement)


def _unicode_lower(value):
    if value is None:
        return None
    return str(value).lower()


def create_db_engine(database_url: str):
    is_sqlite = make_url(database_url).get_backend_name() == "sqlite"
    engine_kwargs = {"pool_pre_ping": True}
    if is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(database_url, **engine_kwargs)

    if is_sqlite:
        # SQLite's built-in LOWER() only folds ASCII.
        @event.listens_for(engine, "connect")
        def _register_functions(dbapi_conn, _record):
            dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)

    return engine


def init_db() -> None:
    """Initialize database connection and optionally apply schema files."""
    DB.engine = create_db_engine(settings.database_url)
    DB.SessionLocal = sessionmaker(bind=DB.engine)

    if settings.auto_migrate_on_startup:
        try:
            apply_schema(DB.engine)
        except SQLAlchemyError as exc:
            raise RuntimeError("Failed to apply schema migrations") from exc


def get_db_session() -> Generator:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.close()
