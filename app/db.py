# sqlite db utils
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from . import config

logger = logging.getLogger(__name__)


def _use_explicit_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement, so a SELECT that
    # precedes a write would run outside the transaction and SAVEPOINTs would
    # misbehave. Let SQLAlchemy emit BEGIN itself instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str) -> Engine:
    connect_args = {}
    parsed = make_url(url)
    is_sqlite = parsed.get_backend_name() == "sqlite"
    if is_sqlite:
        connect_args = {"check_same_thread": False}
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(exist_ok=True, parents=True)

    new_engine = create_engine(url, future=True, connect_args=connect_args)
    if is_sqlite:
        _use_explicit_transactions(new_engine)
    return new_engine


engine = create_db_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@contextmanager
def session_scope() -> Iterator[Session]:
    sess = SessionLocal()
    try:
        yield sess
        sess.commit()
    except Exception:
        sess.rollback()
        raise
    finally:
        sess.close()


# Base tables. Column layout matches app.orm_models.
TABLES = [
    """
    CREATE TABLE IF NOT EXISTS bookmarks (
      id CHAR(16) PRIMARY KEY,
      created DATE DEFAULT (datetime('now')),
      updated DATE DEFAULT (datetime('now')),
      title VARCHAR(64) NOT NULL,
      url VARCHAR(255) UNIQUE NOT NULL,
      excerpt TEXT NOT NULL DEFAULT '',
      content TEXT NOT NULL DEFAULT '',
      tags JSON NOT NULL DEFAULT '[]',
      archived BOOLEAN NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS feeds (
      id CHAR(16) PRIMARY KEY,
      created DATE NOT NULL DEFAULT (datetime('now')),
      updated DATE NOT NULL DEFAULT (datetime('now')),
      refreshed DATE NOT NULL DEFAULT (datetime('now')),
      last_authored DATE NOT NULL DEFAULT (datetime('now')),
      title VARCHAR(64) NOT NULL,
      url VARCHAR(255) UNIQUE NOT NULL,
      etag VARCHAR(200) NOT NULL DEFAULT '',
      tags JSON NOT NULL DEFAULT '[]',
      items JSON NOT NULL DEFAULT '[]'
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS thoughts (
      id CHAR(16) PRIMARY KEY,
      created DATE NOT NULL,
      updated DATE NOT NULL,
      title VARCHAR(255) UNIQUE NOT NULL,
      tags JSON NOT NULL DEFAULT '[]',
      content TEXT NOT NULL DEFAULT ''
    );
    """,
]

# Full-text shadow indexes. Each FTS5 table reads its content from the base
# table and is maintained by triggers running in the writer's transaction.
# Updates always delete the old entry and insert the new one.
SHADOW_INDEXES = [
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS bookmarks_fts
    USING fts5(title, url, content, content=bookmarks, content_rowid=rowid);
    """,
    """
    CREATE TRIGGER IF NOT EXISTS bookmarks_ai AFTER INSERT ON bookmarks BEGIN
      INSERT INTO bookmarks_fts(rowid, title, url, content)
      VALUES (new.rowid, new.title, new.url, new.content);
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS bookmarks_ad AFTER DELETE ON bookmarks BEGIN
      INSERT INTO bookmarks_fts(bookmarks_fts, rowid, title, url, content)
      VALUES ('delete', old.rowid, old.title, old.url, old.content);
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS bookmarks_au AFTER UPDATE ON bookmarks BEGIN
      INSERT INTO bookmarks_fts(bookmarks_fts, rowid, title, url, content)
      VALUES ('delete', old.rowid, old.title, old.url, old.content);
      INSERT INTO bookmarks_fts(rowid, title, url, content)
      VALUES (new.rowid, new.title, new.url, new.content);
    END;
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS thoughts_fts
    USING fts5(title, content, content=thoughts, content_rowid=rowid);
    """,
    """
    CREATE TRIGGER IF NOT EXISTS thoughts_ai AFTER INSERT ON thoughts BEGIN
      INSERT INTO thoughts_fts(rowid, title, content)
      VALUES (new.rowid, new.title, new.content);
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS thoughts_ad AFTER DELETE ON thoughts BEGIN
      INSERT INTO thoughts_fts(thoughts_fts, rowid, title, content)
      VALUES ('delete', old.rowid, old.title, old.content);
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS thoughts_au AFTER UPDATE ON thoughts BEGIN
      INSERT INTO thoughts_fts(thoughts_fts, rowid, title, content)
      VALUES ('delete', old.rowid, old.title, old.content);
      INSERT INTO thoughts_fts(rowid, title, content)
      VALUES (new.rowid, new.title, new.content);
    END;
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_feeds_last_authored ON feeds(last_authored DESC);",
    "CREATE INDEX IF NOT EXISTS idx_feeds_refreshed ON feeds(refreshed);",
]


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Create tables, shadow indexes and their triggers.

    Every statement is ``IF NOT EXISTS`` so this is safe to run on every
    startup, and it all runs in a single transaction.
    """
    bind = bind or engine
    with bind.begin() as conn:
        result = conn.exec_driver_sql(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='feeds'"
        )
        is_new = len(result.fetchall()) == 0

        for statement in TABLES + SHADOW_INDEXES + INDEXES:
            conn.exec_driver_sql(statement)

    if is_new:
        logger.info("Database schema created", extra={"url": str(bind.url)})
    else:
        logger.debug("Database schema verified", extra={"url": str(bind.url)})
