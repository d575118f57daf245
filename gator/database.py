"""Storage of users, feeds, follows and posts in SQLite."""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Sequence

from gator.models import (
    Feed,
    FeedFollow,
    FeedFollowRow,
    FollowsByUserRow,
    Post,
    PostForUserRow,
    User,
)

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
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL,
    published_at TEXT NOT NULL,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""

_USER_COLS = "id, created_at, updated_at, name"
_FEED_COLS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_FOLLOW_COLS = "id, created_at, updated_at, user_id, feed_id"
_POST_COLS = "id, created_at, updated_at, title, url, description, published_at, feed_id"


class DatabaseError(Exception):
    """A query failed."""


class NotFoundError(DatabaseError):
    """A query that must return a row returned none."""


class DuplicateKeyError(DatabaseError):
    """An insert violated a uniqueness constraint."""


def _ts(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _dt(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _user(row: Sequence[Any]) -> User:
    return User(uuid.UUID(row[0]), _dt(row[1]), _dt(row[2]), row[3])


def _feed(row: Sequence[Any]) -> Feed:
    return Feed(
        id=uuid.UUID(row[0]),
        created_at=_dt(row[1]),
        updated_at=_dt(row[2]),
        name=row[3],
        url=row[4],
        user_id=uuid.UUID(row[5]),
        last_fetched_at=_dt(row[6]),
    )


def _post(row: Sequence[Any]) -> Post:
    return Post(
        id=uuid.UUID(row[0]),
        created_at=_dt(row[1]),
        updated_at=_dt(row[2]),
        title=row[3],
        url=row[4],
        description=row[5],
        published_at=_dt(row[6]),
        feed_id=uuid.UUID(row[7]),
    )


class Queries:
    """The application's queries over one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._in_tx = False
        self._conn.execute("PRAGMA foreign_keys = ON")

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        try:
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[Queries]:
        """Run the enclosed queries as one transaction."""
        if self._in_tx:
            raise DatabaseError("transaction already in progress")
        self._in_tx = True
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()
        finally:
            self._in_tx = False

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise DuplicateKeyError(str(exc)) from exc
            raise DatabaseError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

    def _write(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        cursor = self._execute(sql, params)
        if not self._in_tx:
            self._conn.commit()
        return cursor

    def _one(self, sql: str, params: Sequence[Any] = ()) -> Sequence[Any]:
        row = self._execute(sql, params).fetchone()
        if row is None:
            raise NotFoundError("no rows in result set")
        return row

    def _all(self, sql: str, params: Sequence[Any] = ()) -> list[Sequence[Any]]:
        return self._execute(sql, params).fetchall()

    def create_feed(self, id, created_at, updated_at, name, url, user_id) -> Feed:
        self._write(
            "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (str(id), _ts(created_at), _ts(updated_at), name, url, str(user_id)),
        )
        return _feed(self._one(f"SELECT {_FEED_COLS} FROM feeds WHERE id = ?", (str(id),)))

    def create_feed_follow(self, id, created_at, updated_at, user_id, feed_id) -> list[FeedFollowRow]:
        self._write(
            "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (str(id), _ts(created_at), _ts(updated_at), str(user_id), str(feed_id)),
        )
        rows = self._all(
            "SELECT ff.id, ff.created_at, ff.updated_at, ff.user_id, ff.feed_id, "
            "f.name, u.name FROM feed_follows ff "
            "INNER JOIN feeds f ON ff.feed_id = f.id "
            "INNER JOIN users u ON ff.user_id = u.id WHERE ff.id = ?",
            (str(id),),
        )
        return [
            FeedFollowRow(
                id=uuid.UUID(r[0]),
                created_at=_dt(r[1]),
                updated_at=_dt(r[2]),
                user_id=uuid.UUID(r[3]),
                feed_id=uuid.UUID(r[4]),
                feed_name=r[5],
                user_name=r[6],
            )
            for r in rows
        ]

    def create_post(self, title, url, description, published_at, feed_id) -> Post:
        post_id = str(uuid.uuid4())
        now = _ts(_now())
        self._write(
            f"INSERT INTO posts ({_POST_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (post_id, now, now, title, url, description, _ts(published_at), str(feed_id)),
        )
        return _post(self._one(f"SELECT {_POST_COLS} FROM posts WHERE id = ?", (post_id,)))

    def create_user(self, id, created_at, updated_at, name) -> User:
        self._write(
            f"INSERT INTO users ({_USER_COLS}) VALUES (?, ?, ?, ?)",
            (str(id), _ts(created_at), _ts(updated_at), name),
        )
        return _user(self._one(f"SELECT {_USER_COLS} FROM users WHERE id = ?", (str(id),)))

    def delete_all_feeds(self) -> None:
        self._write("DELETE FROM feeds")

    def delete_all_users(self) -> None:
        """Delete every user; feeds, follows and posts go with them."""
        self._write("DELETE FROM users")

    def delete_feed_follows(self, user_id, feed_id) -> int:
        """Remove a follow and return the number of rows deleted."""
        cursor = self._write(
            "DELETE FROM feed_follows WHERE user_id = ? AND feed_id = ?",
            (str(user_id), str(feed_id)),
        )
        return cursor.rowcount

    def get_all_feed_follows(self) -> list[FeedFollow]:
        return [
            FeedFollow(uuid.UUID(r[0]), _dt(r[1]), _dt(r[2]), uuid.UUID(r[3]), uuid.UUID(r[4]))
            for r in self._all(f"SELECT {_FOLLOW_COLS} FROM feed_follows")
        ]

    def get_all_feeds(self) -> list[Feed]:
        return [_feed(r) for r in self._all(f"SELECT {_FEED_COLS} FROM feeds")]

    def get_feed(self, url) -> Feed:
        return _feed(self._one(f"SELECT {_FEED_COLS} FROM feeds WHERE url = ? LIMIT 1", (url,)))

    def get_feeds_by_user(self, user_id) -> list[Feed]:
        return [
            _feed(r)
            for r in self._all(f"SELECT {_FEED_COLS} FROM feeds WHERE user_id = ?", (str(user_id),))
        ]

    def get_follows_by_user(self, user_id) -> list[FollowsByUserRow]:
        rows = self._all(
            "SELECT ff.id, ff.user_id, ff.feed_id, f.name, u.name FROM feed_follows ff "
            "INNER JOIN feeds f ON ff.feed_id = f.id "
            "INNER JOIN users u ON ff.user_id = u.id WHERE ff.user_id = ?",
            (str(user_id),),
        )
        return [
            FollowsByUserRow(uuid.UUID(r[0]), uuid.UUID(r[1]), uuid.UUID(r[2]), r[3], r[4])
            for r in rows
        ]

    def get_next_feed_to_fetch(self) -> Feed:
        """Return the feed fetched longest ago, never-fetched feeds first."""
        return _feed(
            self._one(
                f"SELECT {_FEED_COLS} FROM feeds ORDER BY "
                "CASE WHEN last_fetched_at IS NULL THEN 0 ELSE 1 END, "
                "last_fetched_at ASC, id LIMIT 1"
            )
        )

    def get_posts_for_user(self, user_id, limit) -> list[PostForUserRow]:
        """Return the newest posts from the feeds ``user_id`` follows."""
        if limit < 0:
            raise DatabaseError("LIMIT must not be negative")
        rows = self._all(
            "SELECT posts.id, posts.created_at, posts.updated_at, posts.title, posts.url, "
            "posts.description, posts.published_at, posts.feed_id, feeds.name FROM posts "
            "INNER JOIN feed_follows ON posts.feed_id = feed_follows.feed_id "
            "INNER JOIN feeds ON posts.feed_id = feeds.id "
            "WHERE feed_follows.user_id = ? ORDER BY posts.published_at DESC LIMIT ?",
            (str(user_id), limit),
        )
        return [
            PostForUserRow(
                id=uuid.UUID(r[0]),
                created_at=_dt(r[1]),
                updated_at=_dt(r[2]),
                title=r[3],
                url=r[4],
                description=r[5],
                published_at=_dt(r[6]),
                feed_id=uuid.UUID(r[7]),
                feed_name=r[8],
            )
            for r in rows
        ]

    def get_user(self, name) -> User:
        return _user(self._one(f"SELECT {_USER_COLS} FROM users WHERE name = ? LIMIT 1", (name,)))

    def get_user_by_id(self, id) -> User:
        return _user(self._one(f"SELECT {_USER_COLS} FROM users WHERE id = ? LIMIT 1", (str(id),)))

    def get_users(self) -> list[User]:
        return [_user(r) for r in self._all(f"SELECT {_USER_COLS} FROM users")]

    def update_feed_fetch_time(self, id) -> None:
        now = _ts(_now())
        self._write(
            "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
            (now, now, str(id)),
        )


def connect(url: str) -> Queries:
    """Open the database at ``url`` (a path or ``sqlite:///path``) with its schema in place."""
    if url.startswith("sqlite:///"):
        target = url[len("sqlite:///"):] or ":memory:"
    elif url in ("sqlite://", ""):
        target = ":memory:"
    else:
        target = url
    try:
        conn = sqlite3.connect(target)
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    queries = Queries(conn)
    queries.create_schema()
    return queries