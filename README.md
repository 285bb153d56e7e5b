# gator

`gator` is a small command-line RSS aggregator. It keeps a list of users and
of the feeds they add, lets each user follow and unfollow feeds, collects
posts from the feeds at a fixed interval and lets the current user browse the
latest of them. Everything is stored in an SQLite database.

## Installation

```
pip install .
```

This installs the `gator` command. It needs only the Python standard library.

## Configuration

`gator` reads its settings from a JSON file. By default this is
`.gatorconfig.json` in your home directory; set the environment variable
`GATOR_CONFIG_PATH` to use another file instead. The file must exist before
the first run.

```json
{
  "db_url": "gator.db",
  "current_user_name": ""
}
```

- `db_url` names the SQLite database: either a file path, or a URL of the
  form `sqlite:///path/to/gator.db` (`sqlite://` on its own means an
  in-memory database, which is gone when the command ends). The file and its
  tables are created on first use.
- `current_user_name` is the logged-in user. `gator` rewrites the file itself
  when you `register`, `login` or `reset`.

## Usage

```
gator <command> [arguments...]
```

| Command | Arguments | What it does |
| --- | --- | --- |
| `register` | `<name>` | Create a user and log in as that user |
| `login` | `<name>` | Switch to an existing user |
| `users` | | List all users, marking the current one with `(current)` |
| `reset` | | Delete every user, together with their feeds, follows and posts, and log out |
| `addfeed` | `<name> <url>` | Add a feed and follow it (needs a logged-in user) |
| `feeds` | | List all feeds, newest first, with the user who added each |
| `follow` | `<url>` | Follow a feed that has already been added (needs a logged-in user) |
| `following` | | List the feeds the current user follows |
| `unfollow` | `<url>` | Stop following a feed (needs a logged-in user) |
| `browse` | `[limit]` | Show the newest posts of the feeds the current user added; the limit defaults to 2 |
| `agg` | `<seconds>` | Fetch one feed every so many seconds until you press Ctrl+C |

A typical session:

```
gator register alice
gator addfeed "Example News" https://example.com/rss.xml
gator agg 30
gator browse 5
```

The `agg` interval is a number of seconds and may have a fraction (`0.5`);
it must be greater than zero. After each interval `gator` takes the feed that
was fetched longest ago (never-fetched feeds first), marks it as fetched,
downloads it, prints its item titles and stores its posts. Posts whose URL is
already stored are skipped silently; other errors are printed and the loop
goes on.

A post's publication date is read from an RSS `pubDate` of the form
`Mon, 02 Jan 2006 15:04:05 GMT` and stored as UTC; dates in any other form
are stored as empty. `browse` lists posts without a date first, then the
rest from newest to oldest.

On success a command ends with `Command executed successfully.` and exits
with status 0. A failing command prints the reason to standard error and
exits with status 1.

## Using it from Python

- `gator.config` — `read()` loads the configuration into a `Config`;
  `Config.set_user()` changes the current user and saves the file.
- `gator.database` — `connect(url)` opens the database and returns a
  `Queries` object with methods such as `create_user`, `create_feed`,
  `create_feed_follow`, `create_post` and `get_posts_for_user`. A missing row
  raises `NoRowsError`; a duplicate name, URL or follow raises
  `DuplicateKeyError`.
- `gator.rss` — `fetch_feed(url)` downloads a feed and `parse_feed(data)`
  parses one into an `RSSFeed` with a list of `RSSItem`s; failures raise
  `FeedFetchError`.
- `gator.cli` — `build_commands()` returns the command registry and
  `main(argv)` runs one command.

## What it does not do

- Storage is SQLite only; `db_url` cannot point at a database server.
- Only RSS 2.0 style `<rss><channel><item>` documents are read; Atom feeds
  yield no items.
- There are no passwords: any user can `login` as any other.

## Running the tests

```
pip install ".[test]"
pytest
```