"""Command-line interface: commands for users, feeds, follows and posts."""

from __future__ import annotations

import html
import json
import logging
import re
import subprocess
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Sequence

from gator.config import Config, load_config
from gator.database import (
    DatabaseError,
    DuplicateKeyError,
    NotFoundError,
    Queries,
    connect,
)
from gator.models import PostForUserRow, User
from gator.rss import FeedFetchError, RSSFeed, fetch_feed

_log = logging.getLogger("gator")

CACHE_FILE_NAME = "gator_posts_cache.json"


class CommandError(Exception):
    """A command failed; the message is meant for the user."""


def _open_url(url: str) -> None:
    try:
        subprocess.run(["open", url], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise CommandError(f"Failed to open URL: {exc}") from exc


@dataclass
class Command:
    name: str
    args: Sequence[str] = ()


@dataclass
class State:
    """Everything a command handler works with."""

    config: Config
    db: Queries
    commands: CommandMap = field(default_factory=lambda: build_command_map())
    cache_path: Path | None = None
    fetch: Callable[[str], RSSFeed] = fetch_feed
    opener: Callable[[str], None] = _open_url
    sleep: Callable[[float], None] = time.sleep


Handler = Callable[[State, Command], None]
UserHandler = Callable[[State, Command, User], None]


@dataclass(frozen=True)
class _CommandInfo:
    handler: Handler
    help: str


class CommandMap:
    """Named commands with their handlers and help texts."""

    def __init__(self) -> None:
        self._commands: dict[str, _CommandInfo] = {}

    def register(self, name: str, handler: Handler, help_text: str) -> None:
        self._commands[name] = _CommandInfo(handler, help_text)

    def run(self, state: State, cmd: Command) -> None:
        """Run ``cmd``; raise :class:`CommandError` if it is unknown or fails."""
        info = self._commands.get(cmd.name)
        if info is None:
            raise CommandError(f"Unknown command: {cmd.name}")
        try:
            info.handler(state, cmd)
        except (DatabaseError, FeedFetchError) as exc:
            raise CommandError(str(exc)) from exc

    def get_help(self, name: str) -> str | None:
        info = self._commands.get(name)
        return None if info is None else info.help

    def all_commands(self) -> dict[str, str]:
        """Return every command name with its help text."""
        return {name: info.help for name, info in self._commands.items()}


def logged_in(handler: UserHandler) -> Handler:
    """Wrap ``handler`` so that it receives the current user."""

    def wrapper(state: State, cmd: Command) -> None:
        try:
            user = state.db.get_user(state.config.user_name)
        except DatabaseError as exc:
            raise CommandError(f"Failed to read user from db: {exc}") from exc
        handler(state, cmd, user)

    return wrapper


def _usage(state: State, name: str) -> None:
    help_text = state.commands.get_help(name)
    if help_text is not None:
        print(f"Usage: {help_text}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_int32(text: str) -> int:
    if not re.fullmatch(r"[+-]?\d+", text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if not -(2**31) <= value < 2**31:
        raise ValueError(f"value out of range {text!r}")
    return value


_DURATION_UNITS = {
    "ns": 1,
    "us": 10**3,
    "µs": 10**3,
    "μs": 10**3,
    "ms": 10**6,
    "s": 10**9,
    "m": 60 * 10**9,
    "h": 3600 * 10**9,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def _parse_duration(text: str) -> int:
    """Parse a duration such as ``1h30m`` or ``500ms`` into nanoseconds."""
    body = text
    sign = 1
    if body and body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return 0
    if not body:
        raise ValueError(f'time: invalid duration "{text}"')
    total = Decimal(0)
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{text}"')
        total += Decimal(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * int(total)


def _fraction(value: int, size: int) -> str:
    whole, part = divmod(value, size)
    if not part:
        return str(whole)
    digits = len(str(size)) - 1
    return f"{whole}.{part:0{digits}d}".rstrip("0")


def _format_duration(ns: int) -> str:
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 10**9:
        for unit, size in (("ms", 10**6), ("µs", 10**3), ("ns", 1)):
            if ns >= size:
                return sign + _fraction(ns, size) + unit
    hours, rest = divmod(ns, 3600 * 10**9)
    minutes, rest = divmod(rest, 60 * 10**9)
    seconds = _fraction(rest, 10**9) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds


def _valid_zone_name(name: str) -> bool:
    if not name.isascii() or not name.isalpha() or not name.isupper():
        return False
    if len(name) == 3:
        return True
    if len(name) == 4:
        return name[3] == "T" or name == "WITA"
    if len(name) == 5:
        return name[4] == "T"
    return False


_RFC822_NAMED = re.compile(
    r"([A-Za-z]{3}, \d{2} [A-Za-z]{3} \d{4} \d{2}:\d{2}:\d{2}) ([A-Za-z]+)"
)
_NUMERIC_NAMED = re.compile(
    r"(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}[+-]\d{4}) ([A-Za-z]+)"
)


def _try_rfc822_numeric(text: str) -> datetime | None:
    if re.fullmatch(r"[A-Za-z]{3}, \d{2} [A-Za-z]{3} \d{4} \d{2}:\d{2}:\d{2} [+-]\d{4}", text):
        return datetime.strptime(text, "%a, %d %b %Y %H:%M:%S %z")
    return None


def _try_rfc822_named(text: str) -> datetime | None:
    match = _RFC822_NAMED.fullmatch(text)
    if match and _valid_zone_name(match.group(2)):
        parsed = datetime.strptime(match.group(1), "%a, %d %b %Y %H:%M:%S")
        return parsed.replace(tzinfo=timezone.utc)
    return None


def _try_iso_utc(text: str) -> datetime | None:
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", text):
        parsed = datetime.strptime(text, "%Y-%m-%dT%H:%M:%SZ")
        return parsed.replace(tzinfo=timezone.utc)
    return None


def _try_iso_offset(text: str) -> datetime | None:
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}", text):
        return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
    return None


def _try_numeric_named(text: str) -> datetime | None:
    match = _NUMERIC_NAMED.fullmatch(text)
    if match and _valid_zone_name(match.group(2)):
        return datetime.strptime(match.group(1), "%Y-%m-%d %H:%M:%S%z")
    return None


def _try_day_first(text: str) -> datetime | None:
    if re.fullmatch(r"\d{2} [A-Za-z]{3} \d{4} \d{2}:\d{2}:\d{2} [+-]\d{4}", text):
        return datetime.strptime(text, "%d %b %Y %H:%M:%S %z")
    return None


_DATE_PARSERS = (
    _try_rfc822_numeric,
    _try_rfc822_named,
    _try_iso_utc,
    _try_iso_offset,
    _try_numeric_named,
    _try_day_first,
)


def parse_rss_date(text: str) -> datetime:
    """Parse a publication date in one of the common RSS formats."""
    for parser in _DATE_PARSERS:
        try:
            parsed = parser(text)
        except ValueError:
            continue
        if parsed is not None:
            return parsed
    raise ValueError(f"unable to parse date {text}")


def cache_file_path() -> Path:
    """Return where the posts of the last browse are kept."""
    return Path(tempfile.gettempdir()) / CACHE_FILE_NAME


def save_cached_posts(posts: Sequence[PostForUserRow], path: Path | str | None = None) -> None:
    target = Path(path) if path is not None else cache_file_path()
    target.write_text(json.dumps([post.to_dict() for post in posts]), encoding="utf-8")


def load_cached_posts(path: Path | str | None = None) -> list[PostForUserRow]:
    """Read the cached posts; raise ``OSError`` or ``ValueError`` on failure."""
    target = Path(path) if path is not None else cache_file_path()
    data = json.loads(target.read_text(encoding="utf-8"))
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("cached posts must be a list")
    return [PostForUserRow.from_dict(entry) for entry in data]


def scrape_feeds(state: State) -> None:
    """Fetch the feed due next and store its new posts."""
    try:
        feed = state.db.get_next_feed_to_fetch()
    except DatabaseError as exc:
        raise CommandError(f"Error getting next feed to fetch: {exc}") from exc
    try:
        state.db.update_feed_fetch_time(feed.id)
    except DatabaseError as exc:
        raise CommandError(f"Error updating feed fetch time: {exc}") from exc
    try:
        rss = state.fetch(feed.url)
    except FeedFetchError as exc:
        raise CommandError(f"Error fetching rss feed {exc}") from exc

    print("====================")
    print(rss.title)
    for item in rss.items:
        try:
            published = parse_rss_date(item.pub_date)
        except ValueError:
            published = _now()

        title = html.unescape(item.title).strip()
        url = html.unescape(item.link).strip()
        description = html.unescape(item.description).strip()

        if not title:
            _log.warning("Skipping rss item %s due to blank Title", item.link)
            continue
        if not url:
            _log.warning("Skipping rss item due to blank link")
            continue
        if not description:
            _log.warning("Skipping rss item %s due to blank Description", item.link)
            continue

        try:
            post = state.db.create_post(title, url, description, published, feed.id)
        except DuplicateKeyError:
            print("--------------------")
            print("Duplicate key, post not saved")
            continue
        except DatabaseError as exc:
            print("--------------------")
            print(f"Error creating post: {exc}")
            continue
        print("--------------------")
        print(f"Post successfully created: {post.url}")


def handle_add_feed(state: State, cmd: Command, user: User) -> None:
    if len(cmd.args) != 2:
        _usage(state, "addfeed")
        return
    name, url = cmd.args
    now = _now()
    try:
        feed = state.db.create_feed(uuid.uuid4(), now, now, name, url, user.id)
    except DatabaseError as exc:
        raise CommandError(str(exc)) from exc

    print(f"Create feed {name} for {url} succeeded")
    print(
        f"Feed.ID:\t{feed.id}\nFeed.Name:\t{feed.name}\n"
        f"Feed.Url:\t{feed.url}\nFeed.UserID:\t{feed.user_id}"
    )
    state.commands.run(state, Command("follow", (url,)))


def handle_agg(state: State, cmd: Command) -> None:
    """Scrape feeds forever, one every interval."""
    if len(cmd.args) != 1:
        _usage(state, "agg")
        return
    try:
        interval = _parse_duration(cmd.args[0])
    except ValueError as exc:
        raise CommandError(f"Error parsing duration: {exc}") from exc
    if interval <= 0:
        raise CommandError("non-positive interval for ticker")

    print(f"Collecting feeds every {_format_duration(interval)}")
    while True:
        scrape_feeds(state)
        state.sleep(interval / 10**9)


def handle_feeds(state: State, cmd: Command, user: User) -> None:
    if cmd.args:
        _usage(state, "feeds")
    for feed in state.db.get_all_feeds():
        print(f"Feed Name: {feed.name}")
        print(f"Feed Url: {feed.url}")
        print(f"UserName for Feed: {user.name}")


def handle_follow(state: State, cmd: Command, user: User) -> None:
    if len(cmd.args) != 1:
        _usage(state, "follow")
        return
    try:
        feed = state.db.get_feed(cmd.args[0])
    except NotFoundError:
        _log.warning("feed %s is not in the list of feeds", cmd.args[0])
        return

    print(f"handleFollow, user.ID = {user.id}")
    print(f"handleFollow, feed.ID = {feed.id}")

    now = _now()
    try:
        rows = state.db.create_feed_follow(uuid.uuid4(), now, now, user.id, feed.id)
    except DatabaseError as exc:
        raise CommandError(str(exc)) from exc
    if not rows:
        raise CommandError("No rows returned after adding a follow for the feed")
    follow = rows[0]
    print(f"{follow.user_name} is now following {follow.feed_name}")


def handle_following(state: State, cmd: Command, user: User) -> None:
    if cmd.args:
        _usage(state, "following")
        return
    print(f"calling GetFollowsByUser, ID = {user.id}")
    rows = state.db.get_follows_by_user(user.id)
    if not rows:
        print(f"User {user.name} is not following any rss feeds")
        return
    print(f"{user.name} is following:")
    for row in rows:
        print(row.feed_name)


def handle_all_follows(state: State, cmd: Command) -> None:
    if cmd.args:
        _usage(state, "allfollows")
        return
    for follow in state.db.get_all_feed_follows():
        print("==========")
        print(f"ID: {follow.id}")
        print(f"UserID: {follow.user_id}")
        print(f"FeedID: {follow.feed_id}")


def handle_browse(state: State, cmd: Command, user: User) -> None:
    if len(cmd.args) > 1:
        if state.commands.get_help("browse") is not None:
            print("Error: Too many arguments")
            _usage(state, "browse")
        return
    if cmd.args:
        try:
            limit = _parse_int32(cmd.args[0])
        except ValueError:
            print("argument to browse must be an integer")
            return
    else:
        limit = 2

    try:
        rows = state.db.get_posts_for_user(user.id, limit)
    except DatabaseError as exc:
        _log.warning("Error getting posts for user %s: %s", user.id, exc)
        rows = []

    try:
        save_cached_posts(rows, state.cache_path)
    except OSError as exc:
        print(f"Warning: failed to cache posts: {exc}")

    for index, row in enumerate(rows):
        print("--------------------")
        print(f"Feed Name: {row.feed_name}")
        print(f"Title: {row.title}")
        print(f"Publish Date: {row.published_at}")
        print(f"[{index}] Url: {row.url}")
        print(f"Description: {row.description}")


def handle_open_post(state: State, cmd: Command) -> None:
    if len(cmd.args) != 1:
        _usage(state, "openpost")
        return
    try:
        post_id = _parse_int32(cmd.args[0])
    except ValueError:
        print("argument to openpost must be an integer")
        return
    try:
        posts = load_cached_posts(state.cache_path)
    except (OSError, ValueError):
        print("No cached posts found. Please run 'browse' command first.")
        return
    if not posts:
        print("No posts available. Please run 'browse' command first.")
        return
    if not 0 <= post_id < len(posts):
        print(f"Invalid post ID. Please use a number between 0 and {len(posts) - 1}.")
        return
    url = posts[post_id].url
    print(f"Opening: {url}")
    state.opener(url)


def handle_login(state: State, cmd: Command) -> None:
    if not cmd.args:
        _usage(state, "login")
        return
    try:
        user = state.db.get_user(cmd.args[0])
    except DatabaseError as exc:
        raise CommandError(f"Failed to read user from db: {exc}") from exc
    state.config.set_user(user.name)


def handle_register(state: State, cmd: Command) -> None:
    if not cmd.args:
        _usage(state, "register")
        return
    name = cmd.args[0]
    now = _now()
    try:
        user = state.db.create_user(uuid.uuid4(), now, now, name)
    except DatabaseError as exc:
        raise CommandError(str(exc)) from exc
    state.config.set_user(name)
    print(f"Register {name} succeeded")
    print(
        f"User.ID:\t{user.id}\nUser.CreatedAt:\t{user.created_at}\n"
        f"User.UpdatedAt:\t{user.updated_at}\nUser.Name:\t{user.name}"
    )


def handle_reset(state: State, cmd: Command) -> None:
    if cmd.args:
        _usage(state, "reset")
        return
    state.db.delete_all_users()
    print("All users deleted from database gator")


def handle_unfollow(state: State, cmd: Command, user: User) -> None:
    if len(cmd.args) != 1:
        _usage(state, "unfollow")
        return
    try:
        feed = state.db.get_feed(cmd.args[0])
    except NotFoundError as exc:
        raise CommandError(f"feed {cmd.args[0]} not found") from exc
    try:
        removed = state.db.delete_feed_follows(user.id, feed.id)
    except DatabaseError as exc:
        raise CommandError(f"Error unfollowing feed: {exc}") from exc
    print(f"Unfollow returned {removed}")


def handle_help(state: State, cmd: Command) -> None:
    if not cmd.args:
        print("Available commands:")
        print("==================")
        commands = state.commands.all_commands()
        for name in sorted(commands):
            print(f"  {commands[name]}")
        print("\nUse 'help <command>' for detailed help on a specific command.")
        return
    if len(cmd.args) == 1:
        help_text = state.commands.get_help(cmd.args[0])
        if help_text is None:
            raise CommandError(f"Unknown command: {cmd.args[0]}")
        print(help_text)
        return
    raise CommandError("Usage: help [command]")


def handle_users(state: State, cmd: Command) -> None:
    """Print every registered user, marking the current one."""
    if cmd.args:
        _usage(state, "users")
        return
    for user in state.db.get_users():
        if user.name == state.config.user_name:
            print(f"* {user.name} (current)")
        else:
            print(f"* {user.name}")


def build_command_map() -> CommandMap:
    """Return a command map with every command registered."""
    cmds = CommandMap()
    cmds.register("addfeed", logged_in(handle_add_feed), "addfeed <url> - Add a new RSS feed to follow")
    cmds.register(
        "agg",
        handle_agg,
        "agg <duration) - Aggregate posts from all followed feeds at duration "
        "(1s, 1m, 1hr, 5hrs) intervals",
    )
    cmds.register("allfollows", handle_all_follows, "allfollows - Show all feed follows across all users")
    cmds.register("browse", logged_in(handle_browse), "browse [limit] - Browse recent posts (default limit: 2)")
    cmds.register("feeds", logged_in(handle_feeds), "feeds - List all available feeds")
    cmds.register("follow", logged_in(handle_follow), "follow <feed_url> - Follow an existing feed")
    cmds.register("following", logged_in(handle_following), "following - List feeds you are following")
    cmds.register(
        "help", handle_help, "help [command] - Show help for all commands or a specific command"
    )
    cmds.register("login", handle_login, "login <username> - Login as a user")
    cmds.register(
        "openpost",
        handle_open_post,
        "openpost <post_id> - Open in a post from your last browse command in the browser",
    )
    cmds.register("register", handle_register, "register <username> - Create a new user account")
    cmds.register("reset", handle_reset, "reset - reset the database (Warning: Destructive!")
    cmds.register("unfollow", logged_in(handle_unfollow), "unfollow <feed_url> - Unfollow a feed")
    cmds.register("users", handle_users, "users - Show all registered users")
    return cmds


def main(argv: Sequence[str] | None = None) -> int:
    """Run one command from the command line and return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: gator <command> [arguments]")
        return 1
    try:
        config = load_config()
    except (OSError, ValueError) as exc:
        print(f"Error reading config file: {exc}")
        return 1
    try:
        db = connect(config.db_url)
    except DatabaseError as exc:
        print(exc)
        return 1
    state = State(config=config, db=db)
    try:
        state.commands.run(state, Command(args[0], tuple(args[1:])))
    except CommandError as exc:
        print(exc)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())