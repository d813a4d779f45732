"""API-facing records and their JSON-ready representations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from rssagg import database

__all__ = [
    "User",
    "Feed",
    "FeedFollow",
    "Post",
    "user_from_db",
    "feed_from_db",
    "feeds_from_db",
    "feed_follow_from_db",
    "feed_follows_from_db",
    "post_from_db",
    "posts_from_db",
]


def _format_offset(offset: timedelta) -> str:
    if not offset:
        return "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _format_time(value: datetime) -> str:
    """Render a timestamp as RFC 3339 with trailing fractional zeros dropped."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.replace(tzinfo=None, microsecond=0).isoformat()
    fraction = f"{value.microsecond:06d}".rstrip("0")
    if fraction:
        text += "." + fraction
    return text + _format_offset(value.utcoffset() or timedelta(0))


@dataclass(frozen=True)
class User:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    api_key: str

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "name": self.name,
            "api_key": self.api_key,
        }


@dataclass(frozen=True)
class Feed:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: uuid.UUID

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "name": self.name,
            "url": self.url,
            "user_id": str(self.user_id),
        }


@dataclass(frozen=True)
class FeedFollow:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID
    feed_id: uuid.UUID

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "user_id": str(self.user_id),
            "feed_id": str(self.feed_id),
        }


@dataclass(frozen=True)
class Post:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    title: str
    description: str | None
    published_at: datetime
    url: str
    feed_id: uuid.UUID

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "title": self.title,
            "description": self.description,
            "published_at": _format_time(self.published_at),
            "url": self.url,
            "feed_id": str(self.feed_id),
        }


def user_from_db(db_user: database.User) -> User:
    return User(
        id=db_user.id,
        created_at=db_user.created_at,
        updated_at=db_user.updated_at,
        name=db_user.name,
        api_key=db_user.api_key,
    )


def feed_from_db(db_feed: database.Feed) -> Feed:
    return Feed(
        id=db_feed.id,
        created_at=db_feed.created_at,
        updated_at=db_feed.updated_at,
        name=db_feed.name,
        url=db_feed.url,
        user_id=db_feed.user_id,
    )


def feeds_from_db(db_feeds: Iterable[database.Feed]) -> list[Feed]:
    return [feed_from_db(db_feed) for db_feed in db_feeds]


def feed_follow_from_db(db_feed_follow: database.FeedFollow) -> FeedFollow:
    return FeedFollow(
        id=db_feed_follow.id,
        created_at=db_feed_follow.created_at,
        updated_at=db_feed_follow.updated_at,
        user_id=db_feed_follow.user_id,
        feed_id=db_feed_follow.feed_id,
    )


def feed_follows_from_db(db_feed_follows: Iterable[database.FeedFollow]) -> list[FeedFollow]:
    return [feed_follow_from_db(follow) for follow in db_feed_follows]


def post_from_db(db_post: database.Post) -> Post:
    return Post(
        id=db_post.id,
        created_at=db_post.created_at,
        updated_at=db_post.updated_at,
        title=db_post.title,
        description=db_post.description,
        published_at=db_post.published_at,
        url=db_post.url,
        feed_id=db_post.feed_id,
    )


def posts_from_db(db_posts: Iterable[database.Post]) -> list[Post]:
    return [post_from_db(db_post) for db_post in db_posts]