#!/usr/bin/env python3
"""
Tests for tag query parsing and SQL predicate generation.
"""
from sqlalchemy import select, text
from sqlalchemy.orm import sessionmaker

from app.db import create_db_engine, init_db
from app.orm_models import FeedRecord
from app.tags import parse_tag_query, tag_predicates


class TestParseTagQuery:
    """Tests for parse_tag_query."""

    def test_splits_and_strips(self):
        assert parse_tag_query("tech, -muted ,news") == ["tech", "-muted", "news"]

    def test_drops_empty_entries(self):
        assert parse_tag_query("tech,,") == ["tech"]

    def test_empty(self):
        assert parse_tag_query("") == []
        assert parse_tag_query(None) == []


class TestTagPredicates:
    """Tests for tag_predicates."""

    def setup_method(self):
        engine = create_db_engine("sqlite://")
        init_db(engine)
        self.session = sessionmaker(bind=engine)()
        rows = {
            "a": '["tech"]',
            "b": '["tech", "muted"]',
            "c": '["news"]',
            "d": "[]",
        }
        for feed_id, tags in rows.items():
            self.session.execute(
                text("INSERT INTO feeds (id, title, url, tags) VALUES (:id, :id, :url, :tags)"),
                {"id": feed_id, "url": f"http://{feed_id}/", "tags": tags},
            )
        self.session.commit()

    def teardown_method(self):
        self.session.close()

    def matching(self, tags):
        query = select(FeedRecord.id).where(*tag_predicates(FeedRecord.tags, tags))
        return sorted(self.session.execute(query).scalars())

    def test_one_predicate_per_tag(self):
        assert len(tag_predicates(FeedRecord.tags, ["a", "-b", "", "-"])) == 2

    def test_include(self):
        assert self.matching(["tech"]) == ["a", "b"]

    def test_exclude(self):
        assert self.matching(["-muted"]) == ["a", "c", "d"]

    def test_include_and_exclude(self):
        assert self.matching(["-muted", "tech"]) == ["a"]

    def test_all_includes_must_match(self):
        assert self.matching(["tech", "news"]) == []

    def test_no_tags_matches_everything(self):
        assert self.matching([]) == ["a", "b", "c", "d"]

    def test_tag_is_not_a_substring_match(self):
        assert self.matching(["tec"]) == []
