import sqlite3
from contextlib import closing
from pathlib import Path


def get_conn(db_path: str):
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str):
    with closing(get_conn(db_path)) as conn:
        cur = conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS backups (
              sync_id TEXT PRIMARY KEY,
              data TEXT NOT NULL,
              revision INTEGER DEFAULT 1,
              updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS trip_versions (
              id TEXT PRIMARY KEY,
              trip_id TEXT NOT NULL,
              trip_title TEXT,
              note TEXT,
              created_at TEXT NOT NULL,
              data TEXT NOT NULL
            )
            """
        )

        cur.execute("CREATE INDEX IF NOT EXISTS idx_trip_versions_trip ON trip_versions(trip_id, created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_trip_versions_created ON trip_versions(created_at)")

        conn.commit()
