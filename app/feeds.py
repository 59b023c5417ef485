from __future__ import annotations

import calendar
import logging
import threading
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import Optional

import certifi
import feedparser
import httpx
from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from . import config
from .logging_config import log_timing
from .models import (
    Feed,
    FeedItem,
    FeedParseError,
    FetchCancelled,
    FetchError,
    MissingFeedURLError,
    generate_id,
    utc_now,
)
from .store import persist_feed

logger = logging.getLogger(__name__)

# Elements whose body is code or styling rather than readable text
_INVISIBLE_ELEMENTS = ("script", "style")

# Fields copied back onto the caller's feed once a fetch fully succeeded
_FETCHED_FIELDS = ("items", "etag", "refreshed", "last_authored", "title")

_CHUNK_SIZE = 64 * 1024


def sanitize_text(html_content: str) -> str:
    """
    Strip every tag from feed-provided HTML, leaving plain text.

    Args:
        html_content: Raw HTML string from an RSS/Atom entry

    Returns:
        Text safe for storage and full-text indexing (no tags survive)
    """
    if not html_content:
        return ""
    soup = BeautifulSoup(html_content, "lxml")
    for element in soup(_INVISIBLE_ELEMENTS):
        element.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def _struct_to_datetime(value) -> Optional[datetime]:
    # feedparser normalizes parsed dates to UTC struct_time
    if not value:
        return None
    return datetime.fromtimestamp(calendar.timegm(value), UTC)


_EPOCH = datetime.fromtimestamp(0, UTC)


def _item_date(item: FeedItem) -> datetime:
    return item.date or _EPOCH


def _entry_content(entry) -> str:
    contents = entry.get("content") or []
    for content in contents:
        if content.get("value"):
            return content["value"]
    return entry.get("description") or ""


def merge_entries(feed: Feed, parsed, etag: str, now: datetime) -> None:
    """
    Merge parsed feed entries into ``feed``.

    Entries dated before ``feed.refreshed`` are treated as already seen and
    entries dated after ``now`` as clock skew; both are dropped. An entry
    dated exactly at ``feed.refreshed`` is kept. Afterwards the feed's
    validators and cutoff are advanced and its items are stably sorted
    newest first.

    Args:
        feed: Feed to update in place
        parsed: Result of ``feedparser.parse``
        etag: ``ETag`` response header, empty if the server sent none
        now: Wall clock time the fetch started
    """
    cutoff = feed.refreshed
    accepted = 0

    for entry in parsed.entries:
        date = (
            _struct_to_datetime(entry.get("published_parsed"))
            or _struct_to_datetime(entry.get("updated_parsed"))
            or now
        )

        if cutoff is not None and date < cutoff:
            continue
        if date > now:
            continue

        feed.items.append(
            FeedItem(
                id=generate_id(),
                created=now,
                updated=now,
                title=entry.get("title") or "",
                url=entry.get("link") or "",
                date=date,
                content=sanitize_text(_entry_content(entry)),
            )
        )
        accepted += 1

    document_updated = _struct_to_datetime(parsed.feed.get("updated_parsed"))
    if document_updated is not None:
        feed.last_authored = document_updated

    feed.etag = etag
    feed.refreshed = now

    if not feed.title:
        feed.title = parsed.feed.get("title") or ""

    feed.items = sorted(feed.items, key=_item_date, reverse=True)

    logger.debug(
        f"Merged {accepted} of {len(parsed.entries)} entries",
        extra={"feed_id": feed.id, "items_count": accepted},
    )


def _check_cancelled(cancel: Optional[threading.Event], feed: Feed) -> None:
    if cancel is not None and cancel.is_set():
        logger.info("Fetch cancelled", extra={"feed_id": feed.id, "url": feed.url})
        raise FetchCancelled(f"Fetch of {feed.url} cancelled")


def _conditional_headers(feed: Feed) -> dict:
    headers = {"User-Agent": config.USER_AGENT}
    if feed.etag:
        headers["If-None-Match"] = feed.etag
    elif feed.refreshed is not None:
        headers["If-Modified-Since"] = format_datetime(
            feed.refreshed.astimezone(UTC), usegmt=True
        )
    return headers


def fetch_feed(
    feed: Feed,
    *,
    client: Optional[httpx.Client] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Conditionally fetch a feed and merge new entries into it.

    A 304 response leaves the feed exactly as it was. On any error or
    cancellation the feed is left untouched as well: merging happens on a
    copy that is only written back once everything succeeded.

    Callers must not run two fetch/persist cycles for the same feed at once;
    nothing here serializes them.

    Args:
        feed: Feed to refresh; needs a URL
        client: Optional shared ``httpx.Client``; one is created per call if omitted
        cancel: Optional event; setting it aborts the fetch with FetchCancelled

    Raises:
        MissingFeedURLError: feed has no URL (no request is made)
        FetchError: network failure or HTTP error status
        FetchCancelled: ``cancel`` was set before the merge was applied
        FeedParseError: response body is not a feed
    """
    if not feed.url:
        raise MissingFeedURLError()

    _check_cancelled(cancel, feed)

    headers = _conditional_headers(feed)
    now = utc_now()
    log_extra = {"feed_id": feed.id, "url": feed.url}

    logger.info("Fetching feed", extra=log_extra)

    owns_client = client is None
    if owns_client:
        client = httpx.Client(
            timeout=config.HTTP_TIMEOUT,
            follow_redirects=True,
            verify=certifi.where(),  # Use bundled SSL certificates
        )

    try:
        with client.stream("GET", feed.url, headers=headers) as response:
            log_extra["status_code"] = response.status_code

            # Not modified: keep etag, cutoff and items as they are
            if response.status_code == 304:
                logger.info("Feed not modified", extra=log_extra)
                return

            if response.status_code >= 400:
                logger.warning("Error fetching feed", extra=log_extra)
                raise FetchError(
                    f"HTTP {response.status_code}: {response.reason_phrase}",
                    status_code=response.status_code,
                )

            chunks = []
            for chunk in response.iter_bytes(_CHUNK_SIZE):
                _check_cancelled(cancel, feed)
                chunks.append(chunk)
            body = b"".join(chunks)
            etag = response.headers.get("ETag", "")
    except httpx.HTTPError as e:
        logger.warning(f"Error fetching feed: {e}", extra=log_extra)
        raise FetchError(f"Connection error: {e}") from e
    finally:
        if owns_client:
            client.close()

    logger.info("Successfully fetched feed", extra=log_extra)

    parsed = feedparser.parse(body)
    # An HTML page or an empty body parses cleanly but has no feed type
    if not parsed.get("version"):
        reason = parsed.get("bozo_exception") or "unknown feed type"
        logger.warning(f"Unable to parse feed: {reason}", extra=log_extra)
        raise FeedParseError(f"Failed to detect feed type of {feed.url}")

    logger.info(
        f"Found {len(parsed.entries)} items in feed",
        extra={**log_extra, "items_count": len(parsed.entries)},
    )

    merged = feed.model_copy(deep=True)
    merge_entries(merged, parsed, etag, now)

    _check_cancelled(cancel, feed)

    for name in _FETCHED_FIELDS:
        setattr(feed, name, getattr(merged, name))


@log_timing(operation="Feed refresh")
def refresh_feed(
    session: Session,
    feed: Feed,
    *,
    client: Optional[httpx.Client] = None,
    cancel: Optional[threading.Event] = None,
) -> Feed:
    """
    Fetch new items for a feed and persist the result.

    The caller loads the feed beforehand (see :func:`app.store.get_feed`) and
    decides cadence and retries. A failed fetch raises before anything is
    written.
    """
    fetch_feed(feed, client=client, cancel=cancel)
    persist_feed(session, feed)

    logger.info("Feed refreshed", extra={"feed_id": feed.id, "url": feed.url})
    return feed
