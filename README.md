# gator

`gator` is a small command-line RSS aggregator. You register a user, add the
feeds you care about, let the aggregator collect their posts on a schedule,
and then browse the newest posts from the feeds you follow. Everything is
stored in a SQLite database.

## Installation

```
pip install .
```

This installs the `gator` command. The package has no dependencies outside
the Python standard library.

## Configuration

`gator` reads its settings from `.gatorconfig.json` in your home directory.
The file must exist before the first run; `gator` does not create it:

```json
{
 "db_url": "gator.db",
 "user_name": ""
}
```

- `db_url` is the SQLite database to use: either a file path (`gator.db`) or a
  URL of the form `sqlite:///path/to/gator.db`. The tables are created on
  first use. An empty value, `sqlite://` or `sqlite:///` opens an in-memory
  database, which is discarded when the command ends.
- `user_name` is the current user. It is written by `register` and `login`;
  you do not need to edit it by hand.

## Usage

```
gator <command> [arguments]
```

A typical first session:

```
gator register alice
gator addfeed "Example Blog" https://blog.example.com/index.xml
gator agg 1m          # collect posts every minute; stop with Ctrl-C
gator browse 5        # show the five newest posts
gator openpost 0      # open the first post from the last browse
```

### Commands

| Command | What it does |
| --- | --- |
| `register <username>` | Create a new user and make it the current user |
| `login <username>` | Switch to an existing user |
| `users` | List all users, marking the current one with `(current)` |
| `addfeed <name> <url>` | Add a new feed and follow it as the current user |
| `feeds` | List all known feeds |
| `follow <feed_url>` | Follow a feed that has already been added |
| `unfollow <feed_url>` | Stop following a feed and print how many follows were removed |
| `following` | List the feeds the current user follows |
| `allfollows` | Show every follow across all users |
| `agg <duration>` | Fetch feeds repeatedly, one feed per tick (e.g. `500ms`, `1s`, `1m`, `1h`, `1h30m`) |
| `browse [limit]` | Show the newest posts from followed feeds (default 2) |
| `openpost <post_id>` | Open a post from the last `browse` in the browser |
| `reset` | Delete all users and the feeds, follows and posts that belong to them |
| `help [command]` | Show help for all commands, or for one command |

Commands that act for the current user (`addfeed`, `browse`, `feeds`,
`follow`, `following`, `unfollow`) fail if the user named in the configuration
file does not exist.

`gator` exits with status 0 on success and 1 when the command is unknown, the
configuration cannot be read, or the command fails; the error message is
printed. Interrupting a command with Ctrl-C exits with status 130.

### Notes

- `agg` accepts durations made of a number and a unit (`ns`, `us`, `µs`,
  `ms`, `s`, `m`, `h`), which may be combined, as in `1h30m`. On each tick it
  fetches the feed that has gone longest without being fetched (feeds never
  fetched come first), stores every new post, and reports posts whose URL is
  already stored as duplicates. Items without a title, link or description
  are skipped. HTML entities in these fields are unescaped and surrounding
  whitespace is removed. Feeds are requested with a 10-second timeout.
- Publication dates are read in these forms; an item whose date matches none
  of them is stored with the current time:
  - `Mon, 02 Jan 2006 15:04:05 -0700`
  - `Mon, 02 Jan 2006 15:04:05 MST` (the zone name is taken as UTC)
  - `2006-01-02T15:04:05Z`
  - `2006-01-02T15:04:05-07:00`
  - `2006-01-02 15:04:05-0700 MST`
  - `02 Jan 2006 15:04:05 -0700`
- `browse` writes the posts it printed to `gator_posts_cache.json` in the
  system's temporary directory, so `openpost` can refer to them by the number
  shown in brackets next to each URL.
- `openpost` opens the URL by running the `open` command, which is available
  on macOS. Elsewhere it prints the URL and then reports that it could not be
  opened.

## Using the modules

The pieces behind the commands can also be used directly:

- `gator.config`: `load_config(path)` and `Config` with `set_user` and `save`.
- `gator.database`: `connect(url)` returns a `Queries` object with one method
  per query (`create_user`, `create_feed`, `create_feed_follow`,
  `create_post`, `get_posts_for_user`, `get_next_feed_to_fetch`, …) and a
  `transaction()` context manager. Failures raise `DatabaseError`, or its
  subclasses `NotFoundError` and `DuplicateKeyError`.
- `gator.rss`: `fetch_feed(feed_url, timeout)` downloads a feed and
  `parse_feed(data)` parses one into an `RSSFeed` holding `RSSItem`s; both
  raise `FeedFetchError` on failure.
- `gator.models`: the record types returned by the queries.
- `gator.cli`: `main(argv)`, the command map and the command handlers.

## Limitations

- Storage is SQLite only; `db_url` cannot point at a database server.
- `agg` runs in the foreground until it is interrupted or a feed cannot be
  fetched; there is no background service.
- Only RSS `<channel>`/`<item>` documents are read; Atom feeds yield no items.

## Running the tests

```
pip install ".[test]"
pytest
```