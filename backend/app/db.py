"""Database connection, session dependency, and startup schema guard."""
import logging
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .settings import DATABASE_URL

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

MIGRATION_MODULE = "backend.migrations.001_add_debrief_columns"

# Columns the run-history table must carry. A file DB missing any of them
# was created by an older release and needs the migration above.
REQUIRED_SCHEMA = {
    "simulation_runs": [
        "run_id", "player_id", "scenario_id", "scenario_title", "tutorial",
        "outcome", "cycles", "shocks", "epi", "amio", "lidocaine", "errors",
        "final_viability", "rosc_heart_rate", "score", "debrief_text",
        "log_json", "created_ts_utc",
    ],
}


def _get_sqlite_path() -> Path | None:
    """File path behind a sqlite:/// URL, or None for in-memory/other engines."""
    if not DATABASE_URL.startswith("sqlite:///"):
        return None
    raw = DATABASE_URL.replace("sqlite:///", "", 1)
    if raw in ("", ":memory:"):
        return None
    return Path(raw)


def check_schema(db_path: Path) -> dict[str, list[str]]:
    """Map each table that is absent or incomplete to its missing columns.

    An empty dict means the file matches REQUIRED_SCHEMA.
    """
    missing: dict[str, list[str]] = {}

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        for table, required in REQUIRED_SCHEMA.items():
            if table not in tables:
                missing[table] = list(required)
                continue
            cursor.execute(f"PRAGMA table_info({table})")
            present = {row[1] for row in cursor.fetchall()}
            absent = [column for column in required if column not in present]
            if absent:
                missing[table] = absent
    finally:
        conn.close()

    return missing


def _backup_and_recreate(db_path: Path) -> None:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    backup_path = db_path.with_suffix(f".db.bak-{stamp}")
    shutil.move(str(db_path), str(backup_path))
    logger.warning("Stale run-history schema moved to %s; recreating %s", backup_path, db_path)
    Base.metadata.create_all(bind=engine)


def _stale_schema_message(missing: dict[str, list[str]]) -> str:
    lines = ["Database schema is out of date.  Missing columns:"]
    for table, columns in sorted(missing.items()):
        lines.append(f"  {table}: {', '.join(columns)}")
    lines += [
        "",
        "To fix, run the idempotent migration:",
        f"  python -m {MIGRATION_MODULE}",
        "",
        "Or set ALLOW_DEV_DB_RESET=1 to auto-backup and recreate the DB.",
    ]
    return "\n".join(lines)


def ensure_schema():
    """Create or verify the run-history tables at startup.

    In-memory databases and new files are simply created. An existing file
    with an old schema is either backed up and recreated (when
    ALLOW_DEV_DB_RESET=1) or rejected with a RuntimeError naming the
    missing columns and the migration to run.
    """
    db_path = _get_sqlite_path()

    if db_path is None or not db_path.exists():
        Base.metadata.create_all(bind=engine)
        if db_path is not None:
            logger.info("Created new database at %s", db_path)
        return

    missing = check_schema(db_path)
    if not missing:
        Base.metadata.create_all(bind=engine)
        return

    if os.getenv("ALLOW_DEV_DB_RESET", "") == "1":
        _backup_and_recreate(db_path)
        return

    raise RuntimeError(_stale_schema_message(missing))


def get_db():
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
