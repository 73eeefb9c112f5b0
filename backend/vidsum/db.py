import sqlite3
from contextlib import contextmanager
from typing import Iterator

from .paths import db_path, ensure_dirs


def _has_column(conn: sqlite3.Connection, table: str, col: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def _migrate(conn: sqlite3.Connection) -> None:
    if not _has_column(conn, "coins_spend", "amount"):
        conn.execute(
            "ALTER TABLE coins_spend ADD COLUMN amount INTEGER NOT NULL "
            "DEFAULT 0"
        )
    if not _has_column(conn, "coins_spend", "url"):
        conn.execute("ALTER TABLE coins_spend ADD COLUMN url TEXT")


def init_db() -> None:
    ensure_dirs()
    with connect() as conn:
        conn.executescript(
            """
            PRAGMA journal_mode=WAL;
            PRAGMA foreign_keys=ON;

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                coins INTEGER NOT NULL DEFAULT 0 CHECK (coins >= 0),
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS summaries (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                url TEXT NOT NULL,
                title TEXT,
                response TEXT,
                status TEXT NOT NULL,
                error_code TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_summaries_url ON summaries(url);
            CREATE INDEX IF NOT EXISTS idx_summaries_user
                ON summaries(user_id);
            CREATE INDEX IF NOT EXISTS idx_summaries_status
                ON summaries(status);

            CREATE TABLE IF NOT EXISTS coins_spend (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                summary_id TEXT NOT NULL,
                amount INTEGER NOT NULL DEFAULT 0,
                url TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_coins_spend_user
                ON coins_spend(user_id);
            CREATE INDEX IF NOT EXISTS idx_coins_spend_summary
                ON coins_spend(summary_id);

            CREATE TABLE IF NOT EXISTS coin_transactions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                amount INTEGER NOT NULL,
                reason TEXT DEFAULT '',
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );
            """
        )
        _migrate(conn)
        conn.commit()


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    ensure_dirs()
    conn = sqlite3.connect(db_path(), timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys=ON")
        yield conn
    finally:
        conn.close()
