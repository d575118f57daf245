"""Records stored in and read from the database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class User:
    id: UUID
    created_at: datetime
    updated_at: datetime
    name: str


@dataclass(frozen=True)
class Feed:
    id: UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: UUID
    last_fetched_at: datetime | None = None


@dataclass(frozen=True)
class FeedFollow:
    id: UUID
    created_at: datetime
    updated_at: datetime
    user_id: UUID
    feed_id: UUID


@dataclass(frozen=True)
class Post:
    id: UUID
    created_at: datetime
    updated_at: datetime
    title: str
    url: str
    description: str
    published_at: datetime
    feed_id: UUID


@dataclass(frozen=True)
class FeedFollowRow:
    """A newly created follow together with the feed and user names."""

    id: UUID
    created_at: datetime
    updated_at: datetime
    user_id: UUID
    feed_id: UUID
    feed_name: str
    user_name: str


@dataclass(frozen=True)
class FollowsByUserRow:
    id: UUID
    user_id: UUID
    feed_id: UUID
    feed_name: str
    user_name: str


@dataclass(frozen=True)
class PostForUserRow:
    """A post from a followed feed, with the feed's name."""

    id: UUID
    created_at: datetime
    updated_at: datetime
    title: str
    url: str
    description: str
    published_at: datetime
    feed_id: UUID
    feed_name: str

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this row."""
        return {
            "ID": str(self.id),
            "CreatedAt": self.created_at.isoformat(),
            "UpdatedAt": self.updated_at.isoformat(),
            "Title": self.title,
            "Url": self.url,
            "Description": self.description,
            "PublishedAt": self.published_at.isoformat(),
            "FeedID": str(self.feed_id),
            "FeedName": self.feed_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostForUserRow:
        """Build a row from a mapping produced by :meth:`to_dict`."""
        try:
            return cls(
                id=UUID(data["ID"]),
                created_at=datetime.fromisoformat(data["CreatedAt"]),
                updated_at=datetime.fromisoformat(data["UpdatedAt"]),
                title=data["Title"],
                url=data["Url"],
                description=data["Description"],
                published_at=datetime.fromisoformat(data["PublishedAt"]),
                feed_id=UUID(data["FeedID"]),
                feed_name=data["FeedName"],
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from exc
        except (TypeError, AttributeError) as exc:
            raise ValueError(f"malformed post record: {exc}") from exc