import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from gator.cli import (
    Command,
    CommandError,
    Commands,
    State,
    build_commands,
    handler_add_feed,
    handler_agg,
    handler_browse,
    handler_feeds,
    handler_follow,
    handler_following,
    handler_login,
    handler_register,
    handler_reset,
    handler_unfollow,
    handler_users,
    main,
    middleware_logged_in,
    parse_interval,
    parse_pub_date,
    scrape_feeds,
)
from gator.config import Config, read
from gator.database import connect
from gator.rss import FeedFetchError, RSSFeed, RSSItem

FEED_URL = "https://example.com/feed.xml"


@pytest.fixture
def state(tmp_path):
    cfg = Config(db_url="sqlite://", path=tmp_path / "config.json")
    db = connect(":memory:")
    yield State(config=cfg, db=db)
    db.close()


@pytest.fixture
def alice(state):
    handler_register(state, Command("register", ["alice"]))
    return state.db.get_user("alice")


def _sample_feed():
    return RSSFeed(
        title="Blog",
        items=[
            RSSItem(
                title="First",
                link="https://example.com/1",
                description="",
                pub_date="Mon, 02 Jan 2006 15:04:05 GMT",
            ),
            RSSItem(title="Second", link="https://example.com/2", description="body", pub_date="bad"),
        ],
    )


def test_run_unknown_command(state):
    with pytest.raises(CommandError, match="unknown command: nope"):
        Commands().run(state, Command("nope"))


def test_register_and_run_dispatches(state):
    seen = []
    commands = Commands()
    commands.register("echo", lambda s, c: seen.append(c.args))
    commands.run(state, Command("echo", ["a", "b"]))
    assert seen == [["a", "b"]]


def test_build_commands_names():
    assert set(build_commands().handlers) == {
        "login", "register", "reset", "users", "agg", "addfeed",
        "feeds", "follow", "following", "unfollow", "browse",
    }


def test_register_creates_user_and_saves_config(state, capsys):
    handler_register(state, Command("register", ["alice"]))
    assert state.db.get_user("alice").name == "alice"
    assert state.config.current_user_name == "alice"
    assert read(state.config.path).current_user_name == "alice"
    assert 'User "alice" registered successfully!' in capsys.readouterr().out


def test_register_duplicate_and_missing_name(state, alice):
    with pytest.raises(CommandError, match="user alice already exists"):
        handler_register(state, Command("register", ["alice"]))
    with pytest.raises(CommandError, match="requires a username"):
        handler_register(state, Command("register", []))


def test_login(state, alice):
    handler_register(state, Command("register", ["bob"]))
    handler_login(state, Command("login", ["alice"]))
    assert state.config.current_user_name == "alice"
    with pytest.raises(CommandError, match="user carol does not exist"):
        handler_login(state, Command("login", ["carol"]))
    with pytest.raises(CommandError, match="login command requires a username"):
        handler_login(state, Command("login", []))


def test_reset(state, alice):
    handler_reset(state, Command("reset"))
    assert state.db.get_all_users() == []
    assert read(state.config.path).current_user_name == ""
    with pytest.raises(CommandError):
        handler_reset(state, Command("reset", ["x"]))


def test_users_output(state, alice, capsys):
    handler_register(state, Command("register", ["bob"]))
    handler_login(state, Command("login", ["alice"]))
    capsys.readouterr()
    handler_users(state, Command("users"))
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["Users:", "* alice (current)", "* bob"]


def test_users_empty(state, capsys):
    handler_users(state, Command("users"))
    assert capsys.readouterr().out == "No users found.\n"


def test_middleware_requires_login(state):
    wrapped = middleware_logged_in(handler_following)
    with pytest.raises(CommandError, match="you must be logged in"):
        wrapped(state, Command("following"))
    state.config.current_user_name = "ghost"
    with pytest.raises(CommandError, match="current user ghost does not exist"):
        wrapped(state, Command("following"))


def test_add_feed_follows_it(state, alice, capsys):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    follows = state.db.get_feed_follows_for_user(alice.id)
    assert [(f.feed_name, f.feed_url) for f in follows] == [("Blog", FEED_URL)]
    capsys.readouterr()
    handler_following(state, Command("following"), alice)
    assert capsys.readouterr().out.splitlines() == [
        "Feeds you are following:",
        f"* Blog ({FEED_URL})",
    ]


def test_add_feed_argument_count(state, alice):
    with pytest.raises(CommandError, match="requires a name and URL"):
        handler_add_feed(state, Command("addfeed", ["Blog"]), alice)
    with pytest.raises(CommandError, match="takes only a name and URL"):
        handler_add_feed(state, Command("addfeed", ["a", "b", "c"]), alice)


def test_add_feed_duplicate_url(state, alice):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    with pytest.raises(CommandError, match="error creating feed"):
        handler_add_feed(state, Command("addfeed", ["Other", FEED_URL]), alice)


def test_feeds_listing(state, alice, capsys):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    capsys.readouterr()
    handler_feeds(state, Command("feeds"))
    assert capsys.readouterr().out == f"* Blog ({FEED_URL}), - Added by alice\n"


def test_follow_and_unfollow(state, alice, capsys):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    handler_register(state, Command("register", ["bob"]))
    bob = state.db.get_user("bob")
    handler_follow(state, Command("follow", [FEED_URL]), bob)
    assert len(state.db.get_feed_follows_for_user(bob.id)) == 1
    handler_unfollow(state, Command("unfollow", [FEED_URL]), bob)
    assert state.db.get_feed_follows_for_user(bob.id) == []
    capsys.readouterr()
    handler_following(state, Command("following"), bob)
    assert capsys.readouterr().out == "You are not following any feeds.\n"


def test_follow_unknown_url(state, alice):
    with pytest.raises(CommandError, match="does not exist"):
        handler_follow(state, Command("follow", [FEED_URL]), alice)
    with pytest.raises(CommandError, match="does not exist"):
        handler_unfollow(state, Command("unfollow", [FEED_URL]), alice)


@pytest.mark.parametrize("args", [["0"], ["-1"], ["abc"], ["1.5"], [" 3"]])
def test_browse_bad_limit(state, alice, args):
    with pytest.raises(CommandError, match="limit must be a positive integer"):
        handler_browse(state, Command("browse", args), alice)


def test_browse_too_many_args(state, alice):
    with pytest.raises(CommandError, match="at most one"):
        handler_browse(state, Command("browse", ["1", "2"]), alice)


def test_browse_shows_posts(state, alice, capsys):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    state.fetch = lambda url: _sample_feed()
    scrape_feeds(state)
    capsys.readouterr()
    handler_browse(state, Command("browse", ["1"]), alice)
    assert len(capsys.readouterr().out.splitlines()) == 1
    handler_browse(state, Command("browse"), alice)
    lines = capsys.readouterr().out.splitlines()
    assert sorted(lines) == ["- First (https://example.com/1)", "- Second (https://example.com/2)"]


def test_browse_no_posts(state, alice, capsys):
    capsys.readouterr()
    handler_browse(state, Command("browse"), alice)
    assert capsys.readouterr().out == "No posts found for the current user.\n"


@pytest.mark.parametrize("text, expected", [("1", 1.0), ("1.5", 1.5), ("1m", 0.001), ("1m5", 65.0)])
def test_parse_interval(text, expected):
    assert parse_interval(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "abc", "1h", "0", "-1", "1 "])
def test_parse_interval_rejects(text):
    with pytest.raises(CommandError, match="error parsing duration"):
        parse_interval(text)


def test_parse_pub_date():
    assert parse_pub_date("Mon, 02 Jan 2006 15:04:05 GMT") == datetime(
        2006, 1, 2, 15, 4, 5, tzinfo=timezone.utc
    )


@pytest.mark.parametrize("text", ["", "bad", "2006-01-02", "Mon, 02 Jan 2006 15:04:05 +0000"])
def test_parse_pub_date_invalid(text):
    assert parse_pub_date(text) is None


def test_scrape_feeds_stores_posts_once(state, alice):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    fetched = []
    state.fetch = lambda url: fetched.append(url) or _sample_feed()
    scrape_feeds(state)
    scrape_feeds(state)
    assert fetched == [FEED_URL, FEED_URL]
    posts = {p.url: p for p in state.db.get_posts_for_user(alice.id, 10)}
    assert set(posts) == {"https://example.com/1", "https://example.com/2"}
    assert posts["https://example.com/1"].description is None
    assert posts["https://example.com/1"].published_at == parse_pub_date(
        "Mon, 02 Jan 2006 15:04:05 GMT"
    )
    assert posts["https://example.com/2"].description == "body"
    assert posts["https://example.com/2"].published_at is None
    assert state.db.get_feed_by_url(FEED_URL).last_fetched_at is not None


def test_scrape_feeds_without_feeds(state, capsys):
    scrape_feeds(state)
    assert capsys.readouterr().out == "No feeds to fetch at this time.\n"


def test_scrape_feeds_fetch_error(state, alice):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)

    def failing(url):
        raise FeedFetchError("boom")

    state.fetch = failing
    with pytest.raises(CommandError, match=f"error fetching feed {FEED_URL}: boom"):
        scrape_feeds(state)


def test_agg_scrapes_until_interrupted(state, alice, capsys):
    handler_add_feed(state, Command("addfeed", ["Blog", FEED_URL]), alice)
    fetched = []
    state.fetch = lambda url: fetched.append(url) or _sample_feed()
    with patch("gator.cli.time.sleep", side_effect=[None, KeyboardInterrupt()]) as sleep:
        handler_agg(state, Command("agg", ["2"]))
    assert fetched == [FEED_URL]
    assert sleep.call_args_list[0].args == (2.0,)
    assert "Aggregator stopped." in capsys.readouterr().out


def test_agg_argument_errors(state):
    with pytest.raises(CommandError, match="requires a timeout duration"):
        handler_agg(state, Command("agg", []))
    with pytest.raises(CommandError, match="error parsing duration"):
        handler_agg(state, Command("agg", ["soon"]))


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"db_url": str(tmp_path / "gator.db"), "current_user_name": ""}))
    monkeypatch.setenv("GATOR_CONFIG_PATH", str(path))
    return path


def test_main_runs_commands(config_file, capsys):
    assert main(["register", "bob"]) == 0
    assert read(config_file).current_user_name == "bob"
    capsys.readouterr()
    assert main(["users"]) == 0
    out = capsys.readouterr().out
    assert "* bob (current)" in out
    assert out.endswith("Command executed successfully.\n")


def test_main_errors(config_file, capsys):
    assert main([]) == 1
    assert "no command provided" in capsys.readouterr().err
    assert main(["nope"]) == 1
    assert "error running command 'nope': unknown command: nope" in capsys.readouterr().err


def test_main_missing_config(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GATOR_CONFIG_PATH", str(tmp_path / "missing.json"))
    assert main(["users"]) == 1
    assert "error reading config" in capsys.readouterr().err