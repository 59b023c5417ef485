"""
Feed persistence using SQLAlchemy ORM.

Provides the content store operations for feeds:
- List feeds with search, tag and staleness filters
- Look up a single feed by ID or URL
- Upsert a feed keyed on its URL
- Delete a feed

Every function takes the caller's ``Session`` and runs inside its
transaction; use :func:`app.db.session_scope` to get one that commits on
success and rolls back on error. Database failures surface as
:class:`~app.models.StorageError`.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .models import (
    Feed,
    FeedItem,
    FeedListOptions,
    FeedNotFoundError,
    MissingFeedKeyError,
    MissingFeedURLError,
    StorageError,
    generate_id,
    utc_now,
)
from .orm_models import FeedRecord
from .tags import tag_predicates

logger = logging.getLogger(__name__)

# Columns written on every update; id and created never change after insert
MUTABLE_FIELDS = (
    "etag",
    "items",
    "last_authored",
    "refreshed",
    "tags",
    "title",
    "updated",
    "url",
)


def _record_to_feed(record: FeedRecord) -> Feed:
    return Feed(
        id=record.id,
        created=record.created,
        updated=record.updated,
        refreshed=record.refreshed,
        last_authored=record.last_authored,
        title=record.title,
        url=record.url,
        etag=record.etag or "",
        tags=list(record.tags or []),
        items=[FeedItem.model_validate(item) for item in record.items or []],
    )


def _column_values(feed: Feed) -> dict:
    return {
        "etag": feed.etag,
        "items": [item.model_dump(mode="json") for item in feed.items],
        "last_authored": feed.last_authored,
        "refreshed": feed.refreshed,
        "tags": list(feed.tags or []),
        "title": feed.title,
        "updated": feed.updated,
        "url": feed.url,
    }


def _assign(target: Feed, source: Feed) -> None:
    for name in Feed.model_fields:
        setattr(target, name, getattr(source, name))


def _find_by_url(session: Session, url: str) -> Optional[FeedRecord]:
    return session.execute(
        select(FeedRecord).where(FeedRecord.url == url).limit(1)
    ).scalar_one_or_none()


def list_feeds(
    session: Session, options: Optional[FeedListOptions] = None
) -> Tuple[List[Feed], int]:
    """
    List feeds matching the given filters, most recently authored first.

    Args:
        session: Database session
        options: Search substring (title or URL), tag query, staleness
            cutoff and pagination

    Returns:
        Tuple of (feeds on the requested page, total matches before paging)

    Raises:
        StorageError: the query failed; an empty result always means
            "no matches"
    """
    options = options or FeedListOptions()

    conditions = []
    if options.search:
        pattern = f"%{options.search}%"
        conditions.append(
            or_(FeedRecord.title.like(pattern), FeedRecord.url.like(pattern))
        )
    if options.not_refreshed_since is not None:
        conditions.append(FeedRecord.refreshed < options.not_refreshed_since)
    conditions.extend(tag_predicates(FeedRecord.tags, options.tags))

    try:
        total = session.execute(
            select(func.count(FeedRecord.id)).where(*conditions)
        ).scalar_one()

        records = (
            session.execute(
                select(FeedRecord)
                .where(*conditions)
                .order_by(FeedRecord.last_authored.desc())
                .limit(options.limit)
                .offset(options.offset)
            )
            .scalars()
            .all()
        )
    except SQLAlchemyError as e:
        logger.warning(f"Error fetching feeds: {e}")
        raise StorageError(f"Error fetching feeds: {e}") from e

    return [_record_to_feed(record) for record in records], total


def get_feed(session: Session, feed: Feed) -> Feed:
    """
    Load a feed by ``feed.id`` (preferred) or ``feed.url``.

    The passed feed is filled in place with the stored values and returned.

    Raises:
        MissingFeedKeyError: neither ID nor URL is set
        FeedNotFoundError: no stored feed matches
        StorageError: the query failed
    """
    if feed.id:
        condition = FeedRecord.id == feed.id
    elif feed.url:
        condition = FeedRecord.url == feed.url
    else:
        raise MissingFeedKeyError()

    try:
        record = session.execute(
            select(FeedRecord).where(condition).limit(1)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise StorageError(f"Error fetching feed: {e}") from e

    if record is None:
        raise FeedNotFoundError(f"Feed {feed.id or feed.url} does not exist")

    _assign(feed, _record_to_feed(record))
    return feed


def _upsert(session: Session, feed: Feed) -> str:
    record = _find_by_url(session, feed.url)
    if record is None and feed.id:
        record = session.get(FeedRecord, feed.id)

    if record is None:
        feed.id = generate_id()
        try:
            with session.begin_nested():
                session.add(
                    FeedRecord(id=feed.id, created=feed.created, **_column_values(feed))
                )
            return "Created"
        except IntegrityError:
            logger.info(
                "Feed inserted concurrently, updating it", extra={"url": feed.url}
            )
            record = _find_by_url(session, feed.url)
            if record is None:
                raise

    feed.id = record.id
    feed.created = record.created
    for name, value in _column_values(feed).items():
        setattr(record, name, value)
    session.flush()
    return "Updated"


def persist_feed(session: Session, feed: Feed) -> Feed:
    """
    Insert or update a feed, using its URL as identity.

    Unset fields get defaults first: title falls back to the URL, created to
    now, refreshed to now minus the backfill window (so a new feed's first
    fetch picks up about a week of history) and tags to an empty list.
    ``updated`` is always set to now. A feed that was never fetched is
    treated as last authored now, like the column's row-creation default.

    If a feed with the same URL is stored, its ID and original ``created``
    are adopted and every mutable column is updated, whatever ID the caller
    passed. If the URL is new but the caller's ID names a stored feed, that
    feed is updated (its URL changed). Otherwise a new row with a fresh ID is
    inserted. Lookup and write share the caller's transaction, and an insert
    that loses a race on the URL constraint falls back to updating the row
    that won.

    Defaults and the assigned ID are written back to ``feed`` only once the
    write succeeded; on error the caller's feed is unchanged.

    Raises:
        MissingFeedURLError: feed has no URL
        StorageError: the write failed
    """
    if not feed.url:
        raise MissingFeedURLError()

    now = utc_now()
    pending = feed.model_copy(deep=True)

    if not pending.title:
        pending.title = pending.url
    if pending.created is None:
        pending.created = now
    if pending.refreshed is None:
        pending.refreshed = now - timedelta(days=config.BACKFILL_DAYS)
    if pending.last_authored is None:
        pending.last_authored = now
    if pending.tags is None:
        pending.tags = []
    pending.updated = now

    log_extra = {"url": feed.url}

    try:
        action = _upsert(session, pending)
    except SQLAlchemyError as e:
        logger.error(f"Error persisting feed: {e}", extra=log_extra)
        raise StorageError(f"Error persisting feed: {e}") from e

    _assign(feed, pending)

    log_extra["feed_id"] = feed.id
    logger.info(f"{action} feed", extra=log_extra)
    return feed


def delete_feed(session: Session, feed: Feed) -> None:
    """
    Delete a feed by ``feed.id`` (preferred) or ``feed.url``.

    Deleting a feed that does not exist is not an error.

    Raises:
        MissingFeedKeyError: neither ID nor URL is set; nothing is executed
        StorageError: the delete failed
    """
    if not feed.id and not feed.url:
        raise MissingFeedKeyError()

    statement = delete(FeedRecord)
    if feed.id:
        statement = statement.where(FeedRecord.id == feed.id)
    else:
        statement = statement.where(FeedRecord.url == feed.url)

    log_extra = {"feed_id": feed.id, "url": feed.url}
    try:
        result = session.execute(statement)
    except SQLAlchemyError as e:
        logger.error(f"Error deleting feed: {e}", extra=log_extra)
        raise StorageError(f"Error deleting feed: {e}") from e

    logger.info(f"Deleted {result.rowcount or 0} feed(s)", extra=log_extra)
