"""SQLite storage for users, feeds, follows and posts."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL UNIQUE
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
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    UNIQUE (feed_id, user_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    description TEXT,
    published_at TEXT,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""


class NoRowsError(LookupError):
    """Raised when a query that expects one row finds none."""


class DuplicateKeyError(sqlite3.IntegrityError):
    """Raised when an insert violates a unique constraint."""


@dataclass(frozen=True)
class User:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str


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
class FeedListing:
    """A feed together with the name of the user who added it."""

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_name: str


@dataclass(frozen=True)
class FeedFollow:
    """A newly created follow, with the feed and user names."""

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    feed_id: uuid.UUID
    user_id: uuid.UUID
    feed_name: str
    user_name: str


@dataclass(frozen=True)
class FollowedFeed:
    """A follow of a user, with the feed's details."""

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    feed_id: uuid.UUID
    feed_name: str
    feed_url: str
    user_id: uuid.UUID
    user_name: str


@dataclass(frozen=True)
class Post:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    title: str
    url: str
    description: str | None
    published_at: datetime | None
    feed_id: uuid.UUID


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _load_time(text: str | None) -> datetime | None:
    return None if text is None else datetime.fromisoformat(text)


def _database_path(url: str) -> str:
    if not url:
        raise ValueError("database URL is empty")
    prefix = "sqlite://"
    if url.startswith(prefix):
        rest = url[len(prefix):]
        if rest in ("", "/"):
            return ":memory:"
        return rest[1:] if rest.startswith("/") else rest
    return url


def _user(row: sqlite3.Row) -> User:
    return User(
        id=uuid.UUID(row["id"]),
        created_at=_load_time(row["created_at"]),
        updated_at=_load_time(row["updated_at"]),
        name=row["name"],
    )


def _feed(row: sqlite3.Row) -> Feed:
    return Feed(
        id=uuid.UUID(row["id"]),
        created_at=_load_time(row["created_at"]),
        updated_at=_load_time(row["updated_at"]),
        name=row["name"],
        url=row["url"],
        user_id=uuid.UUID(row["user_id"]),
        last_fetched_at=_load_time(row["last_fetched_at"]),
    )


def _post(row: sqlite3.Row) -> Post:
    return Post(
        id=uuid.UUID(row["id"]),
        created_at=_load_time(row["created_at"]),
        updated_at=_load_time(row["updated_at"]),
        title=row["title"],
        url=row["url"],
        description=row["description"],
        published_at=_load_time(row["published_at"]),
        feed_id=uuid.UUID(row["feed_id"]),
    )


_FEED_COLUMNS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_POST_COLUMNS = "id, created_at, updated_at, title, url, description, published_at, feed_id"


class Queries:
    """The application's queries over one SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

    def __enter__(self) -> Queries:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint ({exc})"
                ) from exc
            raise

    def _one(self, sql: str, params: Iterable[Any], what: str) -> sqlite3.Row:
        row = self._execute(sql, params).fetchone()
        if row is None:
            raise NoRowsError(f"no rows in result set: {what}")
        return row

    # users

    def create_user(
        self, user_id: uuid.UUID, created_at: datetime, updated_at: datetime, name: str
    ) -> User:
        self._execute(
            "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
            (str(user_id), _dump_time(created_at), _dump_time(updated_at), name),
        )
        row = self._one(
            "SELECT id, created_at, updated_at, name FROM users WHERE id = ?",
            (str(user_id),),
            f"user {user_id}",
        )
        return _user(row)

    def delete_all_users(self) -> None:
        self._execute("DELETE FROM users")

    def get_all_users(self) -> list[User]:
        rows = self._execute("SELECT id, created_at, updated_at, name FROM users ORDER BY rowid")
        return [_user(row) for row in rows]

    def get_user(self, name: str) -> User:
        row = self._one(
            "SELECT id, created_at, updated_at, name FROM users WHERE name = ?",
            (name,),
            f"user {name!r}",
        )
        return _user(row)

    # feeds

    def _feed_by_id(self, feed_id: uuid.UUID) -> Feed:
        row = self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(feed_id),), f"feed {feed_id}"
        )
        return _feed(row)

    def create_feed(self, name: str, url: str, user_id: uuid.UUID) -> Feed:
        feed_id = uuid.uuid4()
        now = _dump_time(_now())
        self._execute(
            "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (str(feed_id), now, now, name, url, str(user_id)),
        )
        return self._feed_by_id(feed_id)

    def get_all_feeds(self) -> list[FeedListing]:
        rows = self._execute(
            "SELECT feeds.id, feeds.created_at, feeds.updated_at, feeds.name, feeds.url,"
            " users.name AS user_name"
            " FROM feeds JOIN users ON feeds.user_id = users.id"
            " ORDER BY feeds.created_at DESC, feeds.rowid DESC"
        )
        return [
            FeedListing(
                id=uuid.UUID(row["id"]),
                created_at=_load_time(row["created_at"]),
                updated_at=_load_time(row["updated_at"]),
                name=row["name"],
                url=row["url"],
                user_name=row["user_name"],
            )
            for row in rows
        ]

    def get_feed_by_url(self, url: str) -> Feed:
        row = self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE url = ?", (url,), f"feed {url!r}"
        )
        return _feed(row)

    def get_next_feed_to_fetch(self) -> Feed:
        """Return the feed fetched longest ago, never-fetched feeds first."""
        row = self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds"
            " ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC, rowid ASC LIMIT 1",
            (),
            "next feed to fetch",
        )
        return _feed(row)

    def mark_feed_fetched(self, feed_id: uuid.UUID) -> None:
        self._execute(
            "UPDATE feeds SET last_fetched_at = ? WHERE id = ?",
            (_dump_time(_now()), str(feed_id)),
        )

    # feed follows

    def create_feed_follow(self, feed_id: uuid.UUID, user_id: uuid.UUID) -> FeedFollow:
        follow_id = uuid.uuid4()
        now = _dump_time(_now())
        self._execute(
            "INSERT INTO feed_follows (id, created_at, updated_at, feed_id, user_id)"
            " VALUES (?, ?, ?, ?, ?)",
            (str(follow_id), now, now, str(feed_id), str(user_id)),
        )
        row = self._one(
            "SELECT ff.id, ff.created_at, ff.updated_at, ff.feed_id, ff.user_id,"
            " feeds.name AS feed_name, users.name AS user_name"
            " FROM feed_follows ff"
            " JOIN feeds ON ff.feed_id = feeds.id"
            " JOIN users ON ff.user_id = users.id"
            " WHERE ff.id = ?",
            (str(follow_id),),
            f"feed follow {follow_id}",
        )
        return FeedFollow(
            id=uuid.UUID(row["id"]),
            created_at=_load_time(row["created_at"]),
            updated_at=_load_time(row["updated_at"]),
            feed_id=uuid.UUID(row["feed_id"]),
            user_id=uuid.UUID(row["user_id"]),
            feed_name=row["feed_name"],
            user_name=row["user_name"],
        )

    def delete_feed_follow(self, feed_id: uuid.UUID, user_id: uuid.UUID) -> None:
        self._execute(
            "DELETE FROM feed_follows WHERE feed_id = ? AND user_id = ?",
            (str(feed_id), str(user_id)),
        )

    def get_feed_follows_for_user(self, user_id: uuid.UUID) -> list[FollowedFeed]:
        rows = self._execute(
            "SELECT ff.id, ff.created_at, ff.updated_at,"
            " feeds.id AS feed_id, feeds.name AS feed_name, feeds.url AS feed_url,"
            " users.id AS user_id, users.name AS user_name"
            " FROM feed_follows ff"
            " JOIN feeds ON ff.feed_id = feeds.id"
            " JOIN users ON ff.user_id = users.id"
            " WHERE ff.user_id = ?"
            " ORDER BY ff.created_at DESC, ff.rowid DESC",
            (str(user_id),),
        )
        return [
            FollowedFeed(
                id=uuid.UUID(row["id"]),
                created_at=_load_time(row["created_at"]),
                updated_at=_load_time(row["updated_at"]),
                feed_id=uuid.UUID(row["feed_id"]),
                feed_name=row["feed_name"],
                feed_url=row["feed_url"],
                user_id=uuid.UUID(row["user_id"]),
                user_name=row["user_name"],
            )
            for row in rows
        ]

    # posts

    def create_post(
        self,
        title: str,
        url: str,
        description: str | None,
        published_at: datetime | None,
        feed_id: uuid.UUID,
    ) -> Post:
        post_id = uuid.uuid4()
        now = _dump_time(_now())
        self._execute(
            f"INSERT INTO posts ({_POST_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(post_id),
                now,
                now,
                title,
                url,
                description,
                _dump_time(published_at),
                str(feed_id),
            ),
        )
        row = self._one(
            f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?", (str(post_id),), f"post {post_id}"
        )
        return _post(row)

    def get_posts_for_user(self, user_id: uuid.UUID, limit: int) -> list[Post]:
        """Return the newest posts of feeds added by the user, undated posts first."""
        if limit < 0:
            raise ValueError("limit must not be negative")
        columns = ", ".join(f"p.{name.strip()}" for name in _POST_COLUMNS.split(","))
        rows = self._execute(
            f"SELECT {columns} FROM posts p"
            " JOIN feeds f ON p.feed_id = f.id"
            " WHERE f.user_id = ?"
            " ORDER BY p.published_at IS NULL DESC, p.published_at DESC"
            " LIMIT ?",
            (str(user_id), limit),
        )
        return [_post(row) for row in rows]


def connect(url: str) -> Queries:
    """Open the database named by ``url`` (a path or sqlite:// URL) and ensure its schema."""
    connection = sqlite3.connect(_database_path(url), isolation_level=None)
    queries = Queries(connection)
    queries.init_schema()
    return queries