"""Migration: Add debrief, score and timeline columns to simulation_runs.

Idempotent; safe to run multiple times.

Run with: python -m backend.migrations.001_add_debrief_columns
"""
import sqlite3
import sys
from pathlib import Path

# Database path at repo root
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DB_PATH = REPO_ROOT / "acls_runs.db"

# (column, SQL type) added after the first release of simulation_runs
ADDED_COLUMNS = [
    ("score", "REAL NOT NULL DEFAULT 0"),
    ("debrief_text", "TEXT"),
    ("log_json", "TEXT"),
    ("rosc_heart_rate", "INTEGER"),
]


def column_exists(cursor: sqlite3.Cursor, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    cursor.execute(f"PRAGMA table_info({table_name})")
    columns = [row[1] for row in cursor.fetchall()]
    return column_name in columns


def table_exists(cursor: sqlite3.Cursor, table_name: str) -> bool:
    """Check if a table exists."""
    cursor.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def migrate(db_path: Path | None = None):
    """Run the migration against the given DB file (defaults to DB_PATH)."""
    path = db_path or DB_PATH

    if not path.exists():
        print(f"Database not found at {path}")
        print("No migration needed; database will be created with the new schema on first run.")
        return

    conn = sqlite3.connect(str(path))
    cursor = conn.cursor()

    try:
        if not table_exists(cursor, "simulation_runs"):
            print("Table simulation_runs does not exist; it will be created on app startup.")
            return

        for column, sql_type in ADDED_COLUMNS:
            if column_exists(cursor, "simulation_runs", column):
                print(f"Column {column} already exists in simulation_runs, skipping.")
                continue
            print(f"Adding {column} column to simulation_runs...")
            cursor.execute(f"ALTER TABLE simulation_runs ADD COLUMN {column} {sql_type}")
            print("  Done.")

        conn.commit()
        print("\nMigration 001_add_debrief_columns completed successfully!")

    except Exception as e:
        conn.rollback()
        print(f"Migration failed: {e}")
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
