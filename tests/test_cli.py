import json
from datetime import timedelta

import pytest

from gator.cli import (
    Command,
    CommandError,
    CommandMap,
    State,
    build_command_map,
    handle_add_feed,
    handle_agg,
    handle_browse,
    handle_follow,
    handle_following,
    handle_help,
    handle_login,
    handle_open_post,
    handle_register,
    handle_reset,
    handle_unfollow,
    handle_users,
    load_cached_posts,
    logged_in,
    main,
    parse_rss_date,
    save_cached_posts,
    scrape_feeds,
)
from gator.config import Config
from gator.database import connect
from gator.rss import RSSFeed, RSSItem

FEED_URL = "https://example.com/feed.xml"


def _sample_feed():
    return RSSFeed(
        title="Example Channel",
        link="https://example.com",
        description="news",
        items=[
            RSSItem("A &amp; B", "https://example.com/a", "first", "Mon, 02 Jan 2006 15:04:05 -0700"),
            RSSItem("Second", "https://example.com/b", "second", "Tue, 03 Jan 2006 15:04:05 -0700"),
            RSSItem("Third", "https://example.com/c", "third", "Wed, 04 Jan 2006 15:04:05 -0700"),
            RSSItem("", "https://example.com/blank", "no title", ""),
            RSSItem("No description", "https://example.com/d", "   ", ""),
        ],
    )


class _Stop(Exception):
    pass


@pytest.fixture
def state(tmp_path):
    opened = []
    fetched = []

    def fake_fetch(url):
        fetched.append(url)
        return _sample_feed()

    st = State(
        config=Config(db_url="", user_name="", path=tmp_path / "config.json"),
        db=connect(":memory:"),
        cache_path=tmp_path / "cache.json",
        fetch=fake_fetch,
        opener=opened.append,
    )
    st.opened = opened
    st.fetched = fetched
    return st


def _register(state, name="alice"):
    state.commands.run(state, Command("register", (name,)))
    return state.db.get_user(name)


def _add_feed(state):
    state.commands.run(state, Command("addfeed", ("Example", FEED_URL)))


def test_parse_rss_date_numeric_zone():
    parsed = parse_rss_date("Mon, 02 Jan 2006 15:04:05 -0700")
    assert (parsed.year, parsed.month, parsed.day, parsed.hour) == (2006, 1, 2, 15)
    assert parsed.utcoffset() == -timedelta(hours=7)


def test_parse_rss_date_named_zone_is_zero_offset():
    parsed = parse_rss_date("Mon, 02 Jan 2006 15:04:05 MST")
    assert parsed.hour == 15
    assert parsed.utcoffset() == timedelta(0)


def test_parse_rss_date_iso_forms_agree():
    utc = parse_rss_date("2006-01-02T15:04:05Z")
    offset = parse_rss_date("2006-01-02T15:04:05-07:00")
    assert offset - utc == timedelta(hours=7)
    day_first = parse_rss_date("02 Jan 2006 15:04:05 -0700")
    assert day_first == offset
    numeric_named = parse_rss_date("2006-01-02 15:04:05-0700 MST")
    assert numeric_named == offset


@pytest.mark.parametrize("text", ["", "yesterday", "2006-01-02", "Mon, 02 Jan 2006 15:04:05 Z"])
def test_parse_rss_date_rejects(text):
    with pytest.raises(ValueError):
        parse_rss_date(text)


def test_command_map_unknown_command(state):
    with pytest.raises(CommandError, match="Unknown command: nope"):
        state.commands.run(state, Command("nope"))


def test_command_map_register_and_help():
    cmds = CommandMap()
    calls = []
    cmds.register("ping", lambda s, c: calls.append(c.args), "ping - reply")
    assert cmds.get_help("ping") == "ping - reply"
    assert cmds.get_help("missing") is None
    assert cmds.all_commands() == {"ping": "ping - reply"}
    cmds.run(None, Command("ping", ("x",)))
    assert calls == [("x",)]


def test_build_command_map_has_all_commands():
    names = set(build_command_map().all_commands())
    assert names == {
        "addfeed", "agg", "allfollows", "browse", "feeds", "follow", "following",
        "help", "login", "openpost", "register", "reset", "unfollow", "users",
    }


def test_register_sets_current_user(state, capsys):
    user = _register(state)
    assert state.config.user_name == "alice"
    saved = json.loads(state.config.path.read_text())
    assert saved["user_name"] == "alice"
    assert "Register alice succeeded" in capsys.readouterr().out
    assert user.name == "alice"


def test_register_duplicate_fails(state):
    _register(state)
    with pytest.raises(CommandError):
        handle_register(state, Command("register", ("alice",)))


def test_login_switches_and_rejects_unknown(state):
    _register(state, "alice")
    _register(state, "bob")
    handle_login(state, Command("login", ("alice",)))
    assert state.config.user_name == "alice"
    with pytest.raises(CommandError, match="Failed to read user from db"):
        handle_login(state, Command("login", ("carol",)))
    assert state.config.user_name == "alice"


def test_users_marks_current(state, capsys):
    _register(state, "alice")
    _register(state, "bob")
    capsys.readouterr()
    handle_users(state, Command("users"))
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["* alice", "* bob (current)"]


def test_logged_in_requires_user(state):
    seen = []
    wrapped = logged_in(lambda s, c, u: seen.append(u.name))
    with pytest.raises(CommandError):
        wrapped(state, Command("x"))
    _register(state)
    wrapped(state, Command("x"))
    assert seen == ["alice"]


def test_addfeed_creates_and_follows(state, capsys):
    user = _register(state)
    _add_feed(state)
    follows = state.db.get_follows_by_user(user.id)
    assert [f.feed_name for f in follows] == ["Example"]
    assert "alice is now following Example" in capsys.readouterr().out


def test_addfeed_wrong_args_prints_usage(state, capsys):
    user = _register(state)
    capsys.readouterr()
    handle_add_feed(state, Command("addfeed", ("only-one",)), user)
    assert "Usage: addfeed <url> - Add a new RSS feed to follow" in capsys.readouterr().out
    assert state.db.get_all_feeds() == []


def test_follow_unknown_feed_does_nothing(state):
    user = _register(state)
    handle_follow(state, Command("follow", ("https://example.com/none",)), user)
    assert state.db.get_follows_by_user(user.id) == []


def test_following_and_unfollow(state, capsys):
    user = _register(state)
    _add_feed(state)
    capsys.readouterr()
    handle_following(state, Command("following"), user)
    assert "alice is following:\nExample" in capsys.readouterr().out
    handle_unfollow(state, Command("unfollow", (FEED_URL,)), user)
    assert state.db.get_follows_by_user(user.id) == []
    handle_following(state, Command("following"), user)
    assert "User alice is not following any rss feeds" in capsys.readouterr().out


def test_unfollow_unknown_feed(state):
    user = _register(state)
    with pytest.raises(CommandError, match="not found"):
        handle_unfollow(state, Command("unfollow", ("https://example.com/none",)), user)


def test_scrape_feeds_stores_valid_items(state, capsys):
    user = _register(state)
    _add_feed(state)
    scrape_feeds(state)
    assert state.fetched == [FEED_URL]
    posts = state.db.get_posts_for_user(user.id, 10)
    assert {p.title for p in posts} == {"A & B", "Second", "Third"}
    assert state.db.get_feed(FEED_URL).last_fetched_at is not None
    out = capsys.readouterr().out
    assert "Example Channel" in out
    assert "Post successfully created: https://example.com/a" in out


def test_scrape_feeds_twice_reports_duplicates(state, capsys):
    user = _register(state)
    _add_feed(state)
    scrape_feeds(state)
    capsys.readouterr()
    scrape_feeds(state)
    assert "Duplicate key, post not saved" in capsys.readouterr().out
    assert len(state.db.get_posts_for_user(user.id, 10)) == 3


def test_scrape_feeds_without_feeds_fails(state):
    with pytest.raises(CommandError, match="Error getting next feed"):
        scrape_feeds(state)


def test_browse_default_limit_and_cache(state, capsys):
    user = _register(state)
    _add_feed(state)
    scrape_feeds(state)
    capsys.readouterr()
    handle_browse(state, Command("browse"), user)
    cached = load_cached_posts(state.cache_path)
    assert [p.url for p in cached] == ["https://example.com/c", "https://example.com/b"]
    out = capsys.readouterr().out
    assert "[0] Url: https://example.com/c" in out


def test_browse_bad_arguments(state, capsys):
    user = _register(state)
    capsys.readouterr()
    handle_browse(state, Command("browse", ("many",)), user)
    assert "argument to browse must be an integer" in capsys.readouterr().out
    handle_browse(state, Command("browse", ("1", "2")), user)
    assert "Error: Too many arguments" in capsys.readouterr().out


def test_open_post_uses_cache(state, capsys):
    user = _register(state)
    _add_feed(state)
    scrape_feeds(state)
    handle_browse(state, Command("browse", ("3",)), user)
    handle_open_post(state, Command("openpost", ("1",)))
    assert state.opened == ["https://example.com/b"]
    capsys.readouterr()
    handle_open_post(state, Command("openpost", ("7",)))
    assert "Invalid post ID" in capsys.readouterr().out
    assert state.opened == ["https://example.com/b"]


def test_open_post_without_cache(state, capsys):
    handle_open_post(state, Command("openpost", ("0",)))
    assert "No cached posts found. Please run 'browse' command first." in capsys.readouterr().out
    assert state.opened == []


def test_cached_posts_round_trip(state, tmp_path):
    user = _register(state)
    _add_feed(state)
    scrape_feeds(state)
    posts = state.db.get_posts_for_user(user.id, 10)
    path = tmp_path / "posts.json"
    save_cached_posts(posts, path)
    assert load_cached_posts(path) == posts


def test_load_cached_posts_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_cached_posts(tmp_path / "missing.json")


def test_agg_scrapes_then_sleeps(state, capsys):
    user = _register(state)
    _add_feed(state)
    sleeps = []

    def fake_sleep(seconds):
        sleeps.append(seconds)
        raise _Stop

    state.sleep = fake_sleep
    with pytest.raises(_Stop):
        handle_agg(state, Command("agg", ("1m30s",)))
    assert sleeps == [90.0]
    assert len(state.db.get_posts_for_user(user.id, 10)) == 3
    assert "Collecting feeds every 1m30s" in capsys.readouterr().out


@pytest.mark.parametrize("text", ["1hr", "abc", "", "-5s"])
def test_agg_rejects_bad_duration(state, text):
    with pytest.raises(CommandError):
        handle_agg(state, Command("agg", (text,)))


def test_help_output(state, capsys):
    handle_help(state, Command("help"))
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Available commands:"
    entries = [line.strip() for line in lines if line.startswith("  ")]
    assert entries == sorted(entries)
    handle_help(state, Command("help", ("login",)))
    assert capsys.readouterr().out.strip() == "login <username> - Login as a user"
    with pytest.raises(CommandError, match="Unknown command: foo"):
        handle_help(state, Command("help", ("foo",)))
    with pytest.raises(CommandError, match="Usage: help"):
        handle_help(state, Command("help", ("a", "b")))


def test_reset_deletes_users(state, capsys):
    _register(state)
    handle_reset(state, Command("reset"))
    assert state.db.get_users() == []
    assert "All users deleted from database gator" in capsys.readouterr().out


def test_main_without_arguments(capsys):
    assert main([]) == 1
    assert "Usage: gator <command> [arguments]" in capsys.readouterr().out


def test_main_runs_commands(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    config_path = tmp_path / ".gatorconfig.json"
    config_path.write_text(json.dumps({"db_url": str(tmp_path / "gator.db"), "user_name": ""}))
    assert main(["register", "bob"]) == 0
    capsys.readouterr()
    assert main(["users"]) == 0
    assert "* bob (current)" in capsys.readouterr().out
    assert main(["nope"]) == 1
    assert "Unknown command: nope" in capsys.readouterr().out