from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from job_relay.delivery import CallbackDeliverer
from job_relay.models import SourceEntity
from job_relay.pipeline import run_cycle
from job_relay.records import build_permalink
from job_relay.scrapers.base import FetchError, split_target
from job_relay.scrapers.board import BoardAdapter, belongs_to_board, infer_post_number, parse_board_posts
from job_relay.scrapers.facebook import FacebookAdapter
from job_relay.scrapers.reddit import RedditAdapter, normalize_subreddit
from job_relay.scrapers.telegram import TelegramAdapter, normalize_channel
from job_relay.storage import JsonCursorStore

BOARD_HTML = """
<html><body>
  <a href="/bbs/login.php">login</a>
  <table>
    <tr><td><a href="/bbs/board.php?bo_table=jobs&wr_id=101">Kitchen hand wanted</a></td><td>casual shifts</td></tr>
    <tr><td><a href="/bbs/board.php?bo_table=jobs&wr_id=102">Warehouse picker</a></td><td>night shift</td></tr>
    <tr><td><a href="/bbs/board.php?bo_table=jobs&wr_id=101">Kitchen hand wanted</a></td></tr>
    <tr><td><a href="https://ads.example.net/view/55555">Sponsored</a></td></tr>
    <tr><td><a href="/bbs/board.php?bo_table=jobs&page=2">2</a></td></tr>
  </table>
</body></html>
"""


def test_split_target() -> None:
    assert split_target("facebook:12345") == ("facebook", "12345")
    assert split_target("forhire") == ("reddit", "forhire")
    assert split_target("board:https://bbs.example.com/list?x=1") == ("board", "https://bbs.example.com/list?x=1")
    assert split_target("https://www.reddit.com/r/remotejs/") == ("reddit", "https://www.reddit.com/r/remotejs/")


def test_normalize_subreddit() -> None:
    assert normalize_subreddit("https://www.reddit.com/r/remotejs/") == "remotejs"
    assert normalize_subreddit("r/forhire") == "forhire"
    assert normalize_subreddit(" forhire ") == "forhire"


def test_reddit_adapter_maps_listing_to_raw_posts() -> None:
    seen_params: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_params.append(dict(request.url.params))
        assert request.url.path == "/r/forhire/new.json"
        return httpx.Response(
            200,
            json={
                "data": {
                    "children": [
                        {
                            "data": {
                                "id": "1abc",
                                "title": "[Hiring] Backend engineer",
                                "selftext": "Remote contract, apply via DM",
                                "subreddit": "forhire",
                                "permalink": "/r/forhire/comments/1abc/hiring_backend_engineer/",
                                "url_overridden_by_dest": "https://jobs.example.com/1",
                                "created_utc": 1_700_000_000,
                            }
                        },
                        {"data": {"id": "", "title": "missing id"}},
                        {"kind": "more"},
                    ]
                }
            },
        )

    adapter = RedditAdapter(transport=httpx.MockTransport(handler))
    entity = adapter.resolve("r/forhire")
    posts = adapter.fetch(entity, 25)

    assert entity == SourceEntity(id="reddit:forhire", feed="reddit", handle="forhire")
    assert seen_params == [{"limit": "25"}]
    assert len(posts) == 1
    assert posts[0].sequence_number == int("1abc", 36)
    assert posts[0].text == "[Hiring] Backend engineer\nRemote contract, apply via DM"
    assert posts[0].link_url == "https://jobs.example.com/1"
    assert posts[0].permalink_parts.path == "/r/forhire/comments/1abc/hiring_backend_engineer/"


def test_reddit_adapter_raises_on_http_error() -> None:
    adapter = RedditAdapter(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down")))
    with pytest.raises(FetchError) as excinfo:
        adapter.fetch(adapter.resolve("forhire"), 10)
    assert excinfo.value.status_code == 429


def test_facebook_adapter_parses_graph_posts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v18.0/4242/posts"
        assert request.url.params["access_token"] == "token-123"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "4242_900",
                        "message": "We are hiring a cashier",
                        "created_time": "2026-02-18T10:00:00+0000",
                        "permalink_url": "https://www.facebook.com/4242/posts/900",
                    },
                    {"id": "4242_901"},
                    {"id": "not-numeric"},
                ]
            },
        )

    adapter = FacebookAdapter("token-123", transport=httpx.MockTransport(handler))
    posts = adapter.fetch(adapter.resolve("4242"), 25)

    assert [post.sequence_number for post in posts] == [900, 901]
    assert posts[0].permalink_parts.path == "https://www.facebook.com/4242/posts/900"
    assert posts[1].text == ""
    assert posts[1].permalink_parts.path == "4242_901"


def test_facebook_adapter_requires_token() -> None:
    with pytest.raises(ValueError):
        FacebookAdapter("")


def test_infer_post_number() -> None:
    assert infer_post_number("https://bbs.example.com/board.php?bo_table=jobs&wr_id=77") == 77
    assert infer_post_number("https://bbs.example.com/jobs/12345") == 12345
    assert infer_post_number("https://bbs.example.com/jobs/") is None


def test_parse_board_posts_keeps_numbered_links_on_board_host() -> None:
    entity = SourceEntity(id="board:https://bbs.example.com/bbs/board.php?bo_table=jobs", feed="board")
    posts = parse_board_posts(
        BOARD_HTML,
        base_url="https://bbs.example.com/bbs/board.php?bo_table=jobs",
        entity=entity,
    )

    assert [post.sequence_number for post in posts] == [101, 102]
    assert posts[0].text == "Kitchen hand wanted\ncasual shifts"
    assert posts[0].permalink_parts.path == "https://bbs.example.com/bbs/board.php?bo_table=jobs&wr_id=101"


def test_board_adapter_fetches_listing() -> None:
    adapter = BoardAdapter(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=BOARD_HTML)))
    entity = adapter.resolve("https://bbs.example.com/bbs/board.php?bo_table=jobs")

    posts = adapter.fetch(entity, 1)

    assert entity.handle == "bbs.example.com"
    assert len(posts) == 1


def test_board_adapter_rejects_non_url_target() -> None:
    with pytest.raises(ValueError):
        BoardAdapter().resolve("jobs-board")


def test_belongs_to_board() -> None:
    board_url = "https://bbs.example.com/bbs/board.php?bo_table=jobs&page=3"

    assert belongs_to_board("https://bbs.example.com/bbs/board.php?bo_table=jobs&wr_id=7", board_url)
    assert not belongs_to_board("https://bbs.example.com/bbs/board.php?bo_table=free&wr_id=7", board_url)
    assert not belongs_to_board("https://other.example.com/bbs/board.php?bo_table=jobs&wr_id=7", board_url)
    assert belongs_to_board("https://bbs.example.com/jobs/12345", "https://bbs.example.com/jobs/")
    assert not belongs_to_board("https://bbs.example.com/free/50000", "https://bbs.example.com/jobs/")


def _board_page(*rows: tuple[str, int, str]) -> str:
    cells = "".join(
        f'<tr><td><a href="/bbs/board.php?bo_table={table}&wr_id={number}">{title}</a></td></tr>'
        for table, number, title in rows
    )
    sidebar = '<div class="latest"><a href="/bbs/board.php?bo_table=free&wr_id=50000">Free talk thread</a></div>'
    return f"<html><body><table>{cells}</table>{sidebar}</body></html>"


def test_sidebar_links_from_other_boards_do_not_move_the_cursor(tmp_path) -> None:
    pages = [
        _board_page(
            ("jobs", 11, "We are hiring a kitchen hand, apply today"),
            ("jobs", 10, "Now hiring cleaners, good salary offered"),
        ),
        _board_page(
            ("jobs", 12, "We are hiring a barista, apply in store"),
            ("jobs", 11, "We are hiring a kitchen hand, apply today"),
            ("jobs", 10, "Now hiring cleaners, good salary offered"),
        ),
    ]
    adapter = BoardAdapter(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=pages.pop(0))))
    store = JsonCursorStore(tmp_path / "cursors.json")
    delivered: list[str] = []
    deliverer = CallbackDeliverer(lambda payload: delivered.append(payload["permalink"]))
    target = "board:https://bbs.example.com/bbs/board.php?bo_table=jobs"
    entity_id = "board:https://bbs.example.com/bbs/board.php?bo_table=jobs"

    run_cycle([target], adapters={"board": adapter}, store=store, deliverer=deliverer)
    assert store.load() == {entity_id: 11}

    run_cycle([target], adapters={"board": adapter}, store=store, deliverer=deliverer)
    assert store.load() == {entity_id: 12}
    assert [url.rsplit("=", 1)[1] for url in delivered] == ["10", "11", "12"]


class FakeTelegramClient:
    def __init__(self, peer, peer_id: int, messages) -> None:
        self.peer = peer
        self.peer_id = peer_id
        self.messages = messages
        self.requested: list[tuple[str, int]] = []
        self.disconnected = False

    def get_entity(self, name: str):
        self.requested.append(("entity", name))
        return self.peer

    def get_peer_id(self, peer) -> int:
        return self.peer_id

    def get_messages(self, peer, limit: int):
        assert peer is self.peer
        self.requested.append(("messages", limit))
        return list(self.messages)[:limit]

    def disconnect(self) -> None:
        self.disconnected = True


def test_normalize_channel() -> None:
    assert normalize_channel("https://t.me/sydjobs") == "sydjobs"
    assert normalize_channel("t.me/sydjobs/15") == "sydjobs"
    assert normalize_channel(" @sydjobs ") == "sydjobs"
    assert normalize_channel("   ") == ""


def test_telegram_adapter_maps_messages_to_raw_posts() -> None:
    sent_at = datetime(2026, 2, 18, 9, 30, tzinfo=timezone.utc)
    client = FakeTelegramClient(
        SimpleNamespace(username="sydjobs", title="Sydney Jobs"),
        -1001234567,
        [
            SimpleNamespace(id=42, message="We are hiring baristas", date=sent_at),
            SimpleNamespace(id=41, message=None, date=sent_at),
        ],
    )
    adapter = TelegramAdapter(0, "", "", client=client)

    entity = adapter.resolve("https://t.me/sydjobs")
    posts = adapter.fetch(entity, 20)
    adapter.close()

    assert entity == SourceEntity(id="telegram:-1001234567", feed="telegram", handle="sydjobs", title="Sydney Jobs")
    assert entity.label == "telegram/sydjobs"
    assert client.requested == [("entity", "sydjobs"), ("messages", 20)]
    assert [post.sequence_number for post in posts] == [42, 41]
    assert posts[0].timestamp == sent_at
    assert posts[1].text == ""
    assert build_permalink(posts[0].permalink_parts) == "https://t.me/sydjobs/42"
    assert client.disconnected is True


def test_telegram_private_channel_links_through_marked_id() -> None:
    client = FakeTelegramClient(
        SimpleNamespace(username=None, title="Private Jobs"),
        -1009876,
        [SimpleNamespace(id=7, message="Now hiring", date=None)],
    )
    adapter = TelegramAdapter(0, "", "", client=client)

    entity = adapter.resolve("Private Jobs")
    posts = adapter.fetch(entity, 5)

    assert entity.handle is None
    assert entity.label == "telegram/Private Jobs"
    assert build_permalink(posts[0].permalink_parts) == "https://t.me/c/9876/7"


def test_telegram_adapter_requires_saved_session() -> None:
    with pytest.raises(ValueError, match="TELEGRAM_API_ID"):
        TelegramAdapter(0, "", "session")
    with pytest.raises(ValueError, match="TELEGRAM_SESSION"):
        TelegramAdapter(12345, "hash", "")
