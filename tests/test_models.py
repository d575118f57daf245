import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from gator.models import Feed, PostForUserRow


def _row():
    stamp = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    return PostForUserRow(
        id=uuid4(),
        created_at=stamp,
        updated_at=stamp,
        title="Hello",
        url="https://example.com/post",
        description="A post",
        published_at=stamp,
        feed_id=uuid4(),
        feed_name="Example",
    )


def test_round_trip_through_dict():
    row = _row()
    assert PostForUserRow.from_dict(row.to_dict()) == row


def test_round_trip_through_json():
    row = _row()
    text = json.dumps([row.to_dict()])
    restored = [PostForUserRow.from_dict(item) for item in json.loads(text)]
    assert restored == [row]


def test_to_dict_keys():
    assert set(_row().to_dict()) == {
        "ID", "CreatedAt", "UpdatedAt", "Title", "Url",
        "Description", "PublishedAt", "FeedID", "FeedName",
    }


def test_to_dict_values():
    row = _row()
    data = row.to_dict()
    assert data["ID"] == str(row.id)
    assert data["Url"] == row.url


def test_from_dict_missing_field():
    data = _row().to_dict()
    del data["Url"]
    with pytest.raises(ValueError):
        PostForUserRow.from_dict(data)


def test_from_dict_bad_uuid():
    data = _row().to_dict()
    data["ID"] = "nope"
    with pytest.raises(ValueError):
        PostForUserRow.from_dict(data)


def test_feed_default_last_fetched():
    now = datetime.now(timezone.utc)
    feed = Feed(id=uuid4(), created_at=now, updated_at=now, name="n", url="u", user_id=uuid4())
    assert feed.last_fetched_at is None