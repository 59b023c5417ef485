from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from . import config


# =============================================================================
# Errors
# =============================================================================


class FeedStoreError(Exception):
    """Base class for every error raised by the feed pipeline and store."""


class FeedValidationError(FeedStoreError):
    """Caller supplied an unusable feed; never worth retrying."""


class MissingFeedURLError(FeedValidationError):
    def __init__(self, message: str = "Missing Feed.URL"):
        super().__init__(message)


class MissingFeedKeyError(FeedValidationError):
    def __init__(self, message: str = "Missing Feed.ID or Feed.URL"):
        super().__init__(message)


class ItemNotFoundError(FeedValidationError):
    def __init__(self, message: str = "Item does not exist in Feed"):
        super().__init__(message)


class FeedNotFoundError(FeedValidationError):
    def __init__(self, message: str = "Feed does not exist"):
        super().__init__(message)


class FetchError(FeedStoreError):
    """Feed could not be retrieved (network failure or HTTP error status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchCancelled(FetchError):
    """Fetch was aborted through its cancel event."""


class FeedParseError(FeedStoreError):
    """Response body is not a feed feedparser can understand."""


class StorageError(FeedStoreError):
    """Database operation failed."""


# =============================================================================
# Helpers
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def generate_id() -> str:
    """Opaque 16 character identifier used for feeds and feed items."""
    return uuid.uuid4().hex[:16]


# =============================================================================
# Feed models
# =============================================================================


class FeedItem(BaseModel):
    """Single entry of a feed, stored embedded in the feed row."""

    id: str = ""
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    title: str = ""
    url: str = ""
    date: Optional[datetime] = None
    content: str = Field("", description="Sanitized plain text body")

    @field_validator("created", "updated", "date", mode="after")
    @classmethod
    def validate_utc(cls, v):
        return as_utc(v)


class Feed(BaseModel):
    """
    A syndication feed and the items merged from it so far.

    ``url`` is the identity of a feed; ``id`` is assigned by the store on
    first persist. Datetimes left as ``None`` are unset and receive defaults
    from :func:`app.store.persist_feed`. ``refreshed`` is the cutoff below
    which fetched entries are treated as already seen.
    """

    id: str = ""
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    refreshed: Optional[datetime] = None
    last_authored: Optional[datetime] = None
    title: str = ""
    url: str = ""
    etag: str = ""
    tags: Optional[List[str]] = None
    items: List[FeedItem] = Field(default_factory=list)

    @field_validator("created", "updated", "refreshed", "last_authored", mode="after")
    @classmethod
    def validate_utc(cls, v):
        return as_utc(v)

    def get_item(self, item_id: str) -> Optional[FeedItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def delete_item(self, item_id: str) -> None:
        """Remove an item by ID; raises ItemNotFoundError if it is not present."""
        for index, item in enumerate(self.items):
            if item.id == item_id:
                del self.items[index]
                return
        raise ItemNotFoundError()


@dataclass
class FeedListOptions:
    """Filters accepted by :func:`app.store.list_feeds`."""

    search: str = ""
    tags: List[str] = field(default_factory=list)
    not_refreshed_since: Optional[datetime] = None
    limit: int = config.LIST_LIMIT
    offset: int = 0
