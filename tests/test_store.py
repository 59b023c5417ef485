#!/usr/bin/env python3
"""
Tests for the feed content store.

Tests cover:
- Defaults and URL identity on persist
- URL changes through a known ID
- Falling back to update when a concurrent insert wins
- Lookup and delete by ID or URL
- List filters, ordering and pagination
"""
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app import config, store
from app.db import create_db_engine, init_db
from app.models import (
    Feed,
    FeedItem,
    FeedListOptions,
    FeedNotFoundError,
    MissingFeedKeyError,
    MissingFeedURLError,
    StorageError,
)
from app.orm_models import FeedRecord
from app.store import delete_feed, get_feed, list_feeds, persist_feed


def setup_test_db():
    """Create an in-memory database with the full schema."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return sessionmaker(bind=engine)


def feed_count(session) -> int:
    return session.execute(select(func.count(FeedRecord.id))).scalar_one()


@pytest.fixture
def session():
    Session = setup_test_db()
    sess = Session()
    yield sess
    sess.close()


@pytest.fixture
def session_factory():
    return setup_test_db()


class TestPersistFeed:
    """Tests for persist_feed."""

    def test_requires_url(self, session):
        with pytest.raises(MissingFeedURLError):
            persist_feed(session, Feed(title="no url"))
        assert feed_count(session) == 0

    def test_new_feed_gets_defaults(self, session):
        before = datetime.now(UTC)
        feed = persist_feed(session, Feed(url="http://a/feed.xml"))
        session.commit()

        assert len(feed.id) == 16
        assert feed.title == "http://a/feed.xml"
        assert feed.tags == []
        assert feed.created >= before
        assert feed.updated == feed.created
        backfill = before - timedelta(days=config.BACKFILL_DAYS)
        assert abs(feed.refreshed - backfill) < timedelta(seconds=5)

    def test_same_url_keeps_identity(self, session_factory):
        with session_factory() as session:
            first = persist_feed(session, Feed(url="http://a/feed.xml", title="Old"))
            session.commit()
            first_id, first_created = first.id, first.created

        with session_factory() as session:
            second = persist_feed(
                session, Feed(id="ignored", url="http://a/feed.xml", title="New")
            )
            session.commit()

            assert second.id == first_id
            assert second.created == first_created
            assert feed_count(session) == 1

            stored = get_feed(session, Feed(url="http://a/feed.xml"))
            assert stored.title == "New"
            assert stored.created == first_created

    def test_persist_twice_is_idempotent(self, session):
        feed = Feed(url="http://a/feed.xml", tags=["tech"])
        persist_feed(session, feed)
        feed_id = feed.id
        persist_feed(session, feed)
        session.commit()

        assert feed.id == feed_id
        assert feed_count(session) == 1

    def test_id_with_new_url_renames(self, session):
        feed = persist_feed(session, Feed(url="http://old/feed.xml"))
        session.commit()

        persist_feed(session, Feed(id=feed.id, url="http://new/feed.xml"))
        session.commit()

        assert feed_count(session) == 1
        stored = get_feed(session, Feed(id=feed.id))
        assert stored.url == "http://new/feed.xml"

    def test_items_round_trip(self, session):
        date = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)
        feed = Feed(
            url="http://a/feed.xml",
            items=[FeedItem(id="i1", title="Item", url="http://a/1", date=date, content="x")],
        )
        persist_feed(session, feed)
        session.commit()

        stored = get_feed(session, Feed(id=feed.id))
        assert stored.items == feed.items
        assert stored.items[0].date == date

    def test_concurrent_insert_falls_back_to_update(self, session_factory):
        with session_factory() as session:
            winner = persist_feed(session, Feed(url="http://a/feed.xml", title="Winner"))
            session.commit()
            winner_id = winner.id

        real_find = store._find_by_url
        calls = []

        def stale_then_real(session, url):
            calls.append(url)
            # first lookup runs before the other writer committed
            if len(calls) == 1:
                return None
            return real_find(session, url)

        with session_factory() as session:
            with patch("app.store._find_by_url", side_effect=stale_then_real):
                loser = persist_feed(session, Feed(url="http://a/feed.xml", title="Loser"))
            session.commit()

            assert loser.id == winner_id
            assert feed_count(session) == 1
            assert get_feed(session, Feed(id=winner_id)).title == "Loser"

    def test_storage_failure_raises(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))

        with pytest.raises(StorageError):
            persist_feed(session, Feed(url="http://a/feed.xml"))

    def test_failed_write_leaves_feed_unchanged(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        feed = Feed(id="caller-id", url="http://a/feed.xml")
        before = feed.model_dump()

        with pytest.raises(StorageError):
            persist_feed(session, feed)

        assert feed.model_dump() == before
        assert feed.title == ""
        assert feed.created is None

    def test_failed_insert_keeps_caller_id(self):
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = None
        session.get.return_value = None
        session.begin_nested.return_value.__exit__.return_value = False
        session.add.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        feed = Feed(id="caller-id", url="http://b/feed.xml")

        with pytest.raises(StorageError):
            persist_feed(session, feed)

        session.add.assert_called_once()
        assert feed.id == "caller-id"
        assert feed.refreshed is None


class TestGetFeed:
    """Tests for get_feed."""

    def test_by_id_and_url(self, session):
        feed = persist_feed(session, Feed(url="http://a/feed.xml", title="A"))
        session.commit()

        assert get_feed(session, Feed(id=feed.id)).url == "http://a/feed.xml"
        assert get_feed(session, Feed(url="http://a/feed.xml")).id == feed.id

    def test_id_takes_priority(self, session):
        a = persist_feed(session, Feed(url="http://a/feed.xml", title="A"))
        persist_feed(session, Feed(url="http://b/feed.xml", title="B"))
        session.commit()

        found = get_feed(session, Feed(id=a.id, url="http://b/feed.xml"))
        assert found.title == "A"

    def test_fills_passed_feed(self, session):
        persist_feed(session, Feed(url="http://a/feed.xml", title="A", tags=["x"]))
        session.commit()

        query = Feed(url="http://a/feed.xml")
        result = get_feed(session, query)
        assert result is query
        assert query.tags == ["x"]
        assert query.refreshed is not None

    def test_missing_key(self, session):
        with pytest.raises(MissingFeedKeyError):
            get_feed(session, Feed())

    def test_not_found(self, session):
        with pytest.raises(FeedNotFoundError):
            get_feed(session, Feed(id="nope"))
        with pytest.raises(FeedNotFoundError):
            get_feed(session, Feed(url="http://nowhere/"))


class TestDeleteFeed:
    """Tests for delete_feed."""

    def test_missing_key_runs_no_sql(self):
        session = MagicMock()
        with pytest.raises(MissingFeedKeyError):
            delete_feed(session, Feed())
        session.execute.assert_not_called()

    def test_delete_by_id(self, session):
        feed = persist_feed(session, Feed(url="http://a/feed.xml"))
        persist_feed(session, Feed(url="http://b/feed.xml"))
        session.commit()

        delete_feed(session, Feed(id=feed.id))
        session.commit()

        assert feed_count(session) == 1
        with pytest.raises(FeedNotFoundError):
            get_feed(session, Feed(id=feed.id))

    def test_delete_by_url(self, session):
        persist_feed(session, Feed(url="http://a/feed.xml"))
        session.commit()

        delete_feed(session, Feed(url="http://a/feed.xml"))
        session.commit()

        assert feed_count(session) == 0

    def test_delete_missing_is_not_an_error(self, session):
        delete_feed(session, Feed(id="does-not-exist"))
        delete_feed(session, Feed(url="http://nowhere/"))


class TestListFeeds:
    """Tests for list_feeds."""

    def add(self, session, url, title="", tags=None, authored=None, refreshed=None):
        return persist_feed(
            session,
            Feed(
                url=url,
                title=title,
                tags=tags,
                last_authored=authored,
                refreshed=refreshed,
            ),
        )

    def test_empty(self, session):
        assert list_feeds(session) == ([], 0)

    def test_ordered_by_last_authored(self, session):
        now = datetime.now(UTC)
        self.add(session, "http://a/", "A", authored=now - timedelta(days=3))
        self.add(session, "http://b/", "B", authored=now - timedelta(days=1))
        self.add(session, "http://c/", "C", authored=now - timedelta(days=2))
        session.commit()

        feeds, total = list_feeds(session)
        assert total == 3
        assert [feed.title for feed in feeds] == ["B", "C", "A"]

    def test_search_title_or_url(self, session):
        self.add(session, "http://golang.example/feed", "Go news")
        self.add(session, "http://python.example/feed", "Snakes")
        self.add(session, "http://other.example/feed", "Python weekly")
        session.commit()

        feeds, total = list_feeds(session, FeedListOptions(search="python"))
        assert total == 2
        assert {feed.title for feed in feeds} == {"Snakes", "Python weekly"}

    def test_tag_include_and_exclude(self, session):
        self.add(session, "http://a/", "tech", tags=["tech"])
        self.add(session, "http://b/", "tech muted", tags=["tech", "muted"])
        self.add(session, "http://c/", "news", tags=["news"])
        self.add(session, "http://d/", "untagged")
        session.commit()

        feeds, total = list_feeds(session, FeedListOptions(tags=["-muted", "tech"]))
        assert total == 1
        assert [feed.title for feed in feeds] == ["tech"]

        feeds, total = list_feeds(session, FeedListOptions(tags=["-muted"]))
        assert total == 3

    def test_empty_tag_entries_are_ignored(self, session):
        self.add(session, "http://a/", "tech", tags=["tech"])
        self.add(session, "http://b/", "none")
        session.commit()

        _, total = list_feeds(session, FeedListOptions(tags=["", "-"]))
        assert total == 2

    def test_not_refreshed_since(self, session):
        now = datetime.now(UTC)
        self.add(session, "http://stale/", "stale", refreshed=now - timedelta(hours=5))
        self.add(session, "http://fresh/", "fresh", refreshed=now - timedelta(minutes=5))
        session.commit()

        feeds, total = list_feeds(
            session, FeedListOptions(not_refreshed_since=now - timedelta(hours=1))
        )
        assert total == 1
        assert feeds[0].title == "stale"

    def test_pagination_reports_total(self, session):
        now = datetime.now(UTC)
        for n in range(5):
            self.add(session, f"http://{n}/", f"feed {n}", authored=now - timedelta(hours=n))
        session.commit()

        feeds, total = list_feeds(session, FeedListOptions(limit=2, offset=2))
        assert total == 5
        assert [feed.title for feed in feeds] == ["feed 2", "feed 3"]

    def test_query_failure_raises(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("no such table"))

        with pytest.raises(StorageError):
            list_feeds(session)
