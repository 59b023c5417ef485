"""
SQLAlchemy ORM models for the feeds database.

Tables:
- FeedRecord: syndication feeds, items embedded as a JSON array
- BookmarkRecord: saved pages, shadowed by the ``bookmarks_fts`` index
- ThoughtRecord: free-form notes, shadowed by the ``thoughts_fts`` index

The FTS5 shadow tables and the triggers that keep them in sync are not
expressible as ORM models; they are created by :func:`app.db.init_db` and the
initial Alembic migration from the DDL in :mod:`app.db`.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, text
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """DateTime stored as naive UTC, returned as an aware UTC datetime."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class FeedRecord(Base):
    """Syndication feed with its merged items."""

    __tablename__ = "feeds"

    id = Column(String(16), primary_key=True)
    created = Column(UTCDateTime, nullable=False, server_default=text("(datetime('now'))"))
    updated = Column(UTCDateTime, nullable=False, server_default=text("(datetime('now'))"))
    refreshed = Column(
        UTCDateTime, nullable=False, server_default=text("(datetime('now'))")
    )
    last_authored = Column(
        UTCDateTime, nullable=False, server_default=text("(datetime('now'))")
    )
    title = Column(String(64), nullable=False)
    url = Column(String(255), unique=True, nullable=False)
    etag = Column(String(200), nullable=False, server_default="")
    tags = Column(JSON, nullable=False, server_default="[]")
    items = Column(JSON, nullable=False, server_default="[]")


class BookmarkRecord(Base):
    """Saved web page; title, url and content are full-text indexed."""

    __tablename__ = "bookmarks"

    id = Column(String(16), primary_key=True)
    created = Column(UTCDateTime, server_default=text("(datetime('now'))"))
    updated = Column(UTCDateTime, server_default=text("(datetime('now'))"))
    title = Column(String(64), nullable=False)
    url = Column(String(255), unique=True, nullable=False)
    excerpt = Column(Text, nullable=False, server_default="")
    content = Column(Text, nullable=False, server_default="")
    tags = Column(JSON, nullable=False, server_default="[]")
    archived = Column(Boolean, nullable=False, server_default=text("0"))


class ThoughtRecord(Base):
    """Free-form note; title and content are full-text indexed."""

    __tablename__ = "thoughts"

    id = Column(String(16), primary_key=True)
    created = Column(UTCDateTime, nullable=False)
    updated = Column(UTCDateTime, nullable=False)
    title = Column(String(255), unique=True, nullable=False)
    tags = Column(JSON, nullable=False, server_default="[]")
    content = Column(Text, nullable=False, server_default="")
