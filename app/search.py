"""
Full-text search over the FTS5 shadow indexes.

``bookmarks_fts`` and ``thoughts_fts`` mirror their base tables through the
triggers created by :func:`app.db.init_db`; queries here only read them.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import List

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import StorageError
from .orm_models import BookmarkRecord, ThoughtRecord

logger = logging.getLogger(__name__)

# base table -> shadow index
FTS_TABLES = {
    "bookmarks": "bookmarks_fts",
    "thoughts": "thoughts_fts",
}


def _matching_ids(session: Session, table: str, query: str, limit: int) -> List[str]:
    index = FTS_TABLES[table]
    try:
        rows = session.execute(
            text(
                f"""
                SELECT {table}.id
                FROM {index}
                JOIN {table} ON {table}.rowid = {index}.rowid
                WHERE {index} MATCH :query
                ORDER BY bm25({index})
                LIMIT :limit
                """
            ),
            {"query": query, "limit": limit},
        ).all()
    except SQLAlchemyError as e:
        logger.warning(f"Full-text search on {index} failed: {e}")
        raise StorageError(f"Full-text search failed: {e}") from e
    return [row[0] for row in rows]


def _load_in_order(session: Session, model, ids: List[str]) -> list:
    if not ids:
        return []
    records = {
        record.id: record
        for record in session.execute(select(model).where(model.id.in_(ids))).scalars()
    }
    return [records[record_id] for record_id in ids if record_id in records]


def search_bookmarks(session: Session, query: str, limit: int = 50) -> List[BookmarkRecord]:
    """Bookmarks whose title, url or content match an FTS5 query, best first."""
    ids = _matching_ids(session, "bookmarks", query, limit)
    return _load_in_order(session, BookmarkRecord, ids)


def search_thoughts(session: Session, query: str, limit: int = 50) -> List[ThoughtRecord]:
    """Thoughts whose title or content match an FTS5 query, best first."""
    ids = _matching_ids(session, "thoughts", query, limit)
    return _load_in_order(session, ThoughtRecord, ids)


def _is_corruption(error: SQLAlchemyError) -> bool:
    # SQLITE_CORRUPT and its extended codes such as SQLITE_CORRUPT_VTAB
    code = getattr(getattr(error, "orig", None), "sqlite_errorcode", None)
    return code is not None and code & 0xFF == sqlite3.SQLITE_CORRUPT


def verify_index(session: Session, table: str) -> bool:
    """
    Check that a shadow index matches its base table exactly.

    Runs the FTS5 integrity check in its content-comparing form; returns
    False if SQLite reports the index as out of sync.

    Raises:
        StorageError: the check could not run (locked or unreachable database)
    """
    index = FTS_TABLES[table]
    try:
        with session.begin_nested():
            session.execute(
                text(f"INSERT INTO {index}({index}, rank) VALUES ('integrity-check', 1)")
            )
    except SQLAlchemyError as e:
        if not _is_corruption(e):
            raise StorageError(f"Integrity check of {index} failed: {e}") from e
        logger.warning(f"Full-text index {index} is out of sync: {e}")
        return False
    return True


def rebuild_index(session: Session, table: str) -> None:
    """Regenerate a shadow index from its base table."""
    index = FTS_TABLES[table]
    try:
        session.execute(text(f"INSERT INTO {index}({index}) VALUES ('rebuild')"))
    except SQLAlchemyError as e:
        logger.error(f"Rebuilding full-text index {index} failed: {e}")
        raise StorageError(f"Rebuilding full-text index failed: {e}") from e
    logger.info(f"Rebuilt full-text index {index}")
