"""SQLite-backed storage for users, feeds, follows and posts."""

from __future__ import annotations

import secrets
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

__all__ = [
    "DatabaseError",
    "NotFoundError",
    "DuplicateKeyError",
    "User",
    "Feed",
    "FeedFollow",
    "Post",
    "Queries",
    "connect",
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    api_key TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    published_at TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""

_USER_COLUMNS = "id, created_at, updated_at, name, api_key"
_FEED_COLUMNS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_FOLLOW_COLUMNS = "id, created_at, updated_at, user_id, feed_id"
_POST_COLUMNS = "id, created_at, updated_at, title, description, published_at, url, feed_id"


class DatabaseError(Exception):
    """A query failed."""


class NotFoundError(DatabaseError):
    """A query that must return a row returned none."""


class DuplicateKeyError(DatabaseError):
    """An insert violated a unique constraint."""


@dataclass(frozen=True)
class User:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    api_key: str


@dataclass(frozen=True)
class Feed:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: uuid.UUID
    last_fetched_at: datetime | None


@dataclass(frozen=True)
class FeedFollow:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID
    feed_id: uuid.UUID


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


def _dump_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    # Fixed width keeps lexical order equal to chronological order.
    return value.isoformat(timespec="microseconds")


def _load_time(text: str | None) -> datetime | None:
    return datetime.fromisoformat(text) if text is not None else None


def _user(row) -> User:
    return User(
        id=uuid.UUID(row[0]),
        created_at=_load_time(row[1]),
        updated_at=_load_time(row[2]),
        name=row[3],
        api_key=row[4],
    )


def _feed(row) -> Feed:
    return Feed(
        id=uuid.UUID(row[0]),
        created_at=_load_time(row[1]),
        updated_at=_load_time(row[2]),
        name=row[3],
        url=row[4],
        user_id=uuid.UUID(row[5]),
        last_fetched_at=_load_time(row[6]),
    )


def _feed_follow(row) -> FeedFollow:
    return FeedFollow(
        id=uuid.UUID(row[0]),
        created_at=_load_time(row[1]),
        updated_at=_load_time(row[2]),
        user_id=uuid.UUID(row[3]),
        feed_id=uuid.UUID(row[4]),
    )


def _post(row) -> Post:
    return Post(
        id=uuid.UUID(row[0]),
        created_at=_load_time(row[1]),
        updated_at=_load_time(row[2]),
        title=row[3],
        description=row[4],
        published_at=_load_time(row[5]),
        url=row[6],
        feed_id=uuid.UUID(row[7]),
    )


class Queries:
    """Typed queries over one SQLite connection, safe to share between threads."""

    def __init__(self, connection: sqlite3.Connection):
        self._conn = connection
        self._lock = threading.RLock()

    def __enter__(self) -> "Queries":
        return self

    def __exit__(self, *exc_info) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc):
                    raise DuplicateKeyError(
                        f"duplicate key value violates unique constraint: {exc}"
                    ) from exc
                raise DatabaseError(str(exc)) from exc
            except sqlite3.Error as exc:
                raise DatabaseError(str(exc)) from exc

    def _one(self, sql: str, params: tuple = ()):
        rows = self._execute(sql, params)
        if not rows:
            raise NotFoundError("no rows in result set")
        return rows[0]

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        with self._lock:
            try:
                self._conn.executescript(_SCHEMA)
            except sqlite3.Error as exc:
                raise DatabaseError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator["Queries"]:
        """Run the enclosed queries atomically; roll back on any exception."""
        with self._lock:
            self._execute("BEGIN")
            try:
                yield self
            except BaseException:
                self._execute("ROLLBACK")
                raise
            self._execute("COMMIT")

    # users

    def create_user(self, id, created_at, updated_at, name) -> User:
        """Insert a user with a freshly generated API key."""
        api_key = secrets.token_hex(32)
        with self._lock:
            self._execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (str(id), _dump_time(created_at), _dump_time(updated_at), name, api_key),
            )
            return _user(self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (str(id),)))

    def get_user_by_api_key(self, api_key) -> User:
        return _user(
            self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE api_key = ?", (api_key,))
        )

    # feeds

    def _get_feed(self, id) -> Feed:
        return _feed(self._one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(id),)))

    def create_feed(self, id, created_at, updated_at, name, url, user_id) -> Feed:
        with self._lock:
            self._execute(
                "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    str(id),
                    _dump_time(created_at),
                    _dump_time(updated_at),
                    name,
                    url,
                    str(user_id),
                ),
            )
            return self._get_feed(id)

    def get_feeds(self) -> list[Feed]:
        return [_feed(row) for row in self._execute(f"SELECT {_FEED_COLUMNS} FROM feeds")]

    def get_next_feeds_to_fetch(self, limit) -> list[Feed]:
        """Feeds never fetched first, then the least recently fetched."""
        rows = self._execute(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC LIMIT ?",
            (int(limit),),
        )
        return [_feed(row) for row in rows]

    def mark_feed_as_fetched(self, id) -> Feed:
        now = _dump_time(datetime.now(timezone.utc))
        with self._lock:
            self._execute(
                "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
                (now, now, str(id)),
            )
            return self._get_feed(id)

    # feed follows

    def create_feed_follow(self, id, created_at, updated_at, user_id, feed_id) -> FeedFollow:
        with self._lock:
            self._execute(
                f"INSERT INTO feed_follows ({_FOLLOW_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (
                    str(id),
                    _dump_time(created_at),
                    _dump_time(updated_at),
                    str(user_id),
                    str(feed_id),
                ),
            )
            return _feed_follow(
                self._one(
                    f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows WHERE id = ?", (str(id),)
                )
            )

    def delete_feed_follow(self, id, user_id) -> None:
        """Delete a follow owned by ``user_id``; a missing follow is not an error."""
        self._execute(
            "DELETE FROM feed_follows WHERE id = ? AND user_id = ?", (str(id), str(user_id))
        )

    def get_feed_follows(self, user_id) -> list[FeedFollow]:
        rows = self._execute(
            f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows WHERE user_id = ?", (str(user_id),)
        )
        return [_feed_follow(row) for row in rows]

    # posts

    def create_post(
        self, id, created_at, updated_at, title, description, published_at, url, feed_id
    ) -> Post:
        with self._lock:
            self._execute(
                f"INSERT INTO posts ({_POST_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(id),
                    _dump_time(created_at),
                    _dump_time(updated_at),
                    title,
                    description,
                    _dump_time(published_at),
                    url,
                    str(feed_id),
                ),
            )
            return _post(
                self._one(f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?", (str(id),))
            )

    def get_posts_for_user(self, user_id, limit) -> list[Post]:
        """Newest posts from the feeds the user follows."""
        columns = ", ".join(f"posts.{name.strip()}" for name in _POST_COLUMNS.split(","))
        rows = self._execute(
            f"SELECT {columns} FROM posts "
            "JOIN feed_follows ON posts.feed_id = feed_follows.feed_id "
            "WHERE feed_follows.user_id = ? "
            "ORDER BY posts.published_at DESC LIMIT ?",
            (str(user_id), int(limit)),
        )
        return [_post(row) for row in rows]


def connect(path=":memory:") -> Queries:
    """Open a SQLite database, ensure the schema exists and return its queries."""
    try:
        connection = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        connection.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    queries = Queries(connection)
    queries.create_schema()
    return queries