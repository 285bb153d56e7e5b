"""Command handlers and the command-line entry point."""

from __future__ import annotations

import json
import re
import sqlite3
import sys
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Sequence

from gator import config as config_module
from gator.config import Config
from gator.database import DuplicateKeyError, NoRowsError, Queries, User, connect
from gator.rss import FeedFetchError, RSSFeed, fetch_feed

DEFAULT_BROWSE_LIMIT = 2
PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S"


class CommandError(Exception):
    """Raised when a command cannot be carried out."""


@dataclass
class State:
    """What every handler works with: the config, the database and a feed fetcher."""

    config: Config
    db: Queries
    fetch: Callable[[str], RSSFeed] = fetch_feed


@dataclass
class Command:
    name: str
    args: list[str] = field(default_factory=list)


Handler = Callable[[State, Command], None]
UserHandler = Callable[[State, Command, User], None]


@dataclass
class Commands:
    """A registry of named command handlers."""

    handlers: dict[str, Handler] = field(default_factory=dict)

    def register(self, name: str, handler: Handler) -> None:
        self.handlers[name] = handler

    def run(self, state: State, command: Command) -> None:
        try:
            handler = self.handlers[command.name]
        except KeyError:
            raise CommandError(f"unknown command: {command.name}") from None
        handler(state, command)


@contextmanager
def _wrapped(message: str, *errors: type[BaseException]) -> Iterator[None]:
    """Turn database (and other listed) errors into a CommandError with context."""
    try:
        yield
    except (sqlite3.Error, *errors) as exc:
        raise CommandError(f"{message}: {exc}") from exc


def _set_user(state: State, name: str, message: str) -> None:
    with _wrapped(message, OSError):
        state.config.set_user(name)


def _feed_by_url(state: State, url: str):
    try:
        with _wrapped("error checking feed"):
            return state.db.get_feed_by_url(url)
    except NoRowsError:
        raise CommandError(f"feed with URL {url} does not exist") from None


def middleware_logged_in(handler: UserHandler) -> Handler:
    """Wrap a handler so it receives the logged-in user, or fails if there is none."""

    def wrapper(state: State, command: Command) -> None:
        current = state.config.current_user_name
        if not current:
            raise CommandError("you must be logged in to perform this action")
        try:
            with _wrapped("error checking current user"):
                user = state.db.get_user(current)
        except NoRowsError:
            raise CommandError(f"current user {current} does not exist") from None
        handler(state, command, user)

    wrapper.__name__ = getattr(handler, "__name__", "wrapper")
    wrapper.__doc__ = handler.__doc__
    return wrapper


def handler_login(state: State, command: Command) -> None:
    """Switch the current user to an existing one."""
    if not command.name or not command.args:
        raise CommandError("login command requires a username")
    username = command.args[0]
    try:
        with _wrapped("error checking user"):
            state.db.get_user(username)
    except NoRowsError:
        raise CommandError(f"user {username} does not exist") from None
    _set_user(state, username, "error setting user")
    print("Setting current user to", state.config.current_user_name)


def handler_register(state: State, command: Command) -> None:
    """Create a user and log in as them."""
    if not command.name or not command.args:
        raise CommandError("register command requires a username")
    username = command.args[0]
    try:
        with _wrapped("unexpected error checking user"):
            state.db.get_user(username)
    except NoRowsError:
        pass
    else:
        raise CommandError(f"user {username} already exists")

    now = datetime.now(timezone.utc)
    with _wrapped("error creating user"):
        user = state.db.create_user(uuid.uuid4(), now, now, username)
    print(f"User {user.name} created with ID {user.id}")
    _set_user(state, user.name, "error setting user in config")
    print(f"User {json.dumps(user.name, ensure_ascii=False)} registered successfully!")


def handler_reset(state: State, command: Command) -> None:
    """Delete every user and log out."""
    if command.args:
        raise CommandError("reset command does not take any arguments")
    with _wrapped("error deleting all users"):
        state.db.delete_all_users()
    _set_user(state, "", "error resetting current user in config")
    print("All users deleted")


def handler_users(state: State, command: Command) -> None:
    """List all users, marking the current one."""
    if command.args:
        raise CommandError("users command does not take any arguments")
    with _wrapped("error retrieving users"):
        users = state.db.get_all_users()
    if not users:
        print("No users found.")
        return
    print("Users:")
    for user in users:
        suffix = " (current)" if user.name == state.config.current_user_name else ""
        print(f"* {user.name}{suffix}")


_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_NUMBER_UNIT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION = re.compile(rf"([+-]?)((?:{_NUMBER_UNIT})+)")
_PART = re.compile(_NUMBER_UNIT)


def parse_interval(text: str) -> float:
    """Parse a number of seconds (a duration with an implied trailing "s")."""
    duration = text + "s"
    match = _DURATION.fullmatch(duration)
    if match is None:
        raise CommandError(f"error parsing duration: invalid duration {duration!r}")
    seconds = sum(
        float(number) * _UNIT_SECONDS[unit] for number, unit in _PART.findall(match.group(2))
    )
    if match.group(1) == "-":
        seconds = -seconds
    if seconds <= 0:
        raise CommandError(f"error parsing duration: interval must be positive, got {duration!r}")
    return seconds


_ZONE = re.compile(r"[A-Z]{3,5}")


def parse_pub_date(value: str) -> datetime | None:
    """Parse an RSS pubDate such as "Mon, 02 Jan 2006 15:04:05 GMT"; None if it does not fit."""
    stamp, _, zone = value.strip().rpartition(" ")
    if not stamp or not _ZONE.fullmatch(zone):
        return None
    try:
        parsed = datetime.strptime(stamp, PUB_DATE_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def scrape_feeds(state: State) -> None:
    """Fetch the feed due next and store its posts, skipping ones already stored."""
    try:
        with _wrapped("error retrieving next feed to fetch"):
            feed = state.db.get_next_feed_to_fetch()
    except NoRowsError:
        print("No feeds to fetch at this time.")
        return
    with _wrapped("error marking feed as fetched"):
        state.db.mark_feed_fetched(feed.id)
    with _wrapped(f"error fetching feed {feed.url}", FeedFetchError, OSError, ValueError):
        fetched = state.fetch(feed.url)
    print(f"Fetched feed: {feed.name}")

    for item in fetched.items:
        print(f"- {item.title}")
        try:
            state.db.create_post(
                item.title,
                item.link,
                item.description or None,
                parse_pub_date(item.pub_date),
                feed.id,
            )
        except DuplicateKeyError:
            continue
        except sqlite3.Error as exc:
            print("Error inserting post:", exc)


def handler_agg(state: State, command: Command) -> None:
    """Scrape feeds every interval until interrupted."""
    if len(command.args) != 1:
        raise CommandError("agg command requires a timeout duration in seconds")
    interval = parse_interval(command.args[0])
    try:
        while True:
            time.sleep(interval)
            try:
                scrape_feeds(state)
            except CommandError as exc:
                print("Error scraping feeds:", exc)
    except KeyboardInterrupt:
        print("\nAggregator stopped.")


def handler_add_feed(state: State, command: Command, user: User) -> None:
    """Add a feed and follow it."""
    if len(command.args) < 2:
        raise CommandError("feeds command requires a name and URL")
    if len(command.args) > 2:
        raise CommandError("feeds command takes only a name and URL")
    name, url = command.args
    with _wrapped("error creating feed"):
        feed = state.db.create_feed(name, url, user.id)
    print(f"Feed added:\n- ID: {feed.id}\n- Name: {feed.name}\n- URL: {feed.url}")
    with _wrapped("error following feed after creation"):
        state.db.create_feed_follow(feed.id, user.id)


def handler_feeds(state: State, command: Command) -> None:
    """List every feed and who added it."""
    if command.args:
        raise CommandError("feeds command does not take any arguments")
    with _wrapped("error retrieving feeds"):
        feeds = state.db.get_all_feeds()
    if not feeds:
        print("No feeds found.")
        return
    for feed in feeds:
        print(f"* {feed.name} ({feed.url}), - Added by {feed.user_name}")


def handler_follow(state: State, command: Command, user: User) -> None:
    """Follow an existing feed by URL."""
    if len(command.args) != 1:
        raise CommandError("follow command requires a feed URL")
    feed = _feed_by_url(state, command.args[0])
    with _wrapped("error following feed"):
        follow = state.db.create_feed_follow(feed.id, user.id)
    print(
        f"Successfully followed feed {follow.feed_name} ({feed.url}) for user {follow.user_name}"
    )


def handler_following(state: State, command: Command, user: User) -> None:
    """List the feeds the current user follows."""
    if command.args:
        raise CommandError("following command does not take any arguments")
    with _wrapped("error retrieving followed feeds"):
        follows = state.db.get_feed_follows_for_user(user.id)
    if not follows:
        print("You are not following any feeds.")
        return
    print("Feeds you are following:")
    for follow in follows:
        print(f"* {follow.feed_name} ({follow.feed_url})")


def handler_unfollow(state: State, command: Command, user: User) -> None:
    """Stop following a feed by URL."""
    if len(command.args) != 1:
        raise CommandError("unfollow command requires a feed URL")
    feed = _feed_by_url(state, command.args[0])
    with _wrapped("error unfollowing feed"):
        state.db.delete_feed_follow(feed.id, user.id)
    print(f"Successfully unfollowed feed {feed.name} ({feed.url})")


_INTEGER = re.compile(r"[+-]?[0-9]+")


def handler_browse(state: State, command: Command, user: User) -> None:
    """Show the newest posts of the user's feeds."""
    if len(command.args) > 1:
        raise CommandError("browse command takes at most one optional argument for limit")
    limit = DEFAULT_BROWSE_LIMIT
    if command.args:
        text = command.args[0]
        if not _INTEGER.fullmatch(text) or int(text) <= 0:
            raise CommandError("limit must be a positive integer")
        limit = int(text)
    with _wrapped("error retrieving posts"):
        posts = state.db.get_posts_for_user(user.id, limit)
    if not posts:
        print("No posts found for the current user.")
        return
    for post in posts:
        print(f"- {post.title} ({post.url})")


def build_commands() -> Commands:
    """Return the registry of every command the program understands."""
    commands = Commands()
    commands.register("login", handler_login)
    commands.register("register", handler_register)
    commands.register("reset", handler_reset)
    commands.register("users", handler_users)
    commands.register("agg", handler_agg)
    commands.register("addfeed", middleware_logged_in(handler_add_feed))
    commands.register("feeds", handler_feeds)
    commands.register("follow", middleware_logged_in(handler_follow))
    commands.register("following", middleware_logged_in(handler_following))
    commands.register("unfollow", middleware_logged_in(handler_unfollow))
    commands.register("browse", middleware_logged_in(handler_browse))
    return commands


def _fail(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run one command given on the command line; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        cfg = config_module.read()
    except (OSError, ValueError) as exc:
        return _fail(f"error reading config: {exc}")
    try:
        db = connect(cfg.db_url)
    except (ValueError, sqlite3.Error) as exc:
        return _fail(f"failed to connect to database: {exc}")

    with db:
        state = State(config=cfg, db=db)
        commands = build_commands()
        if not args:
            return _fail("no command provided, please specify a command")
        command = Command(name=args[0], args=args[1:])
        try:
            commands.run(state, command)
        except CommandError as exc:
            return _fail(f"error running command '{command.name}': {exc}")
    print("Command executed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())