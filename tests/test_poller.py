import asyncio

import anyio
import httpx
import pytest

from feedrelay.errors import FeedError
from feedrelay.poller import FeedPoller, PollJob, PollListener, parse_feed
from feedrelay.validation import ValidationCoordinator

from .fakes import FEED_A

pytestmark = pytest.mark.anyio


def _rss(*entries: tuple[str, str]) -> bytes:
    items = "".join(
        f"<item><guid>{guid}</guid><title>{title}</title>"
        f"<link>https://a.example/{guid}</link></item>"
        for guid, title in entries
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Example feed</title>'
        "<link>https://a.example/</link><description>x</description>"
        f"{items}</channel></rss>"
    ).encode()


class Recorder(PollListener):
    def __init__(self) -> None:
        self.items = []
        self.errors = []
        self.cycles = 0
        self.event = asyncio.Event()

    async def item_found(self, source, item):
        self.items.append(item)

    async def poll_error(self, source, error):
        self.errors.append(error)
        self.event.set()

    async def poll_succeeded(self, source):
        self.cycles += 1
        self.event.set()


class Feed:
    """Serves whatever body is current; counts requests."""

    def __init__(self, body: bytes, status: int = 200) -> None:
        self.body = body
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, content=self.body)


def test_parse_feed_reads_entries():
    items = parse_feed(FEED_A, _rss(("2", "second"), ("1", "first")))

    assert [item.id for item in items] == ["2", "1"]
    assert items[0].title == "second"
    assert items[0].link == "https://a.example/2"
    assert items[0].feed_title == "Example feed"


def test_parse_feed_rejects_html():
    with pytest.raises(FeedError):
        parse_feed(FEED_A, b"<html><body><p>not a feed</p></body></html>")


def test_empty_feed_is_valid():
    assert parse_feed(FEED_A, _rss()) == []


async def test_production_job_skips_first_load_then_emits_new_items():
    feed = Feed(_rss(("1", "old")))
    poller = FeedPoller(transport=httpx.MockTransport(feed))
    listener = Recorder()
    job = PollJob("feed:a", FEED_A, 60_000, listener, skip_first_load=True)

    await poller._poll_once(job)
    assert listener.items == []
    assert listener.cycles == 1

    feed.body = _rss(("3", "newest"), ("2", "newer"), ("1", "old"))
    await poller._poll_once(job)
    assert [item.id for item in listener.items] == ["2", "3"]

    await poller._poll_once(job)
    assert len(listener.items) == 2
    await poller.close()


async def test_probe_job_reports_first_load():
    poller = FeedPoller(transport=httpx.MockTransport(Feed(_rss(("1", "only")))))
    listener = Recorder()

    poller.start("probe:1:a", FEED_A, 1 << 30, listener, skip_first_load=False)
    with anyio.fail_after(2):
        await listener.event.wait()

    assert [item.id for item in listener.items] == ["1"]
    assert poller.jobs()["probe:1:a"]["source"] == FEED_A
    assert poller.stop("probe:1:a") is True
    assert poller.stop("probe:1:a") is False
    assert len(poller) == 0
    await poller.close()


async def test_http_error_reaches_listener_and_job_keeps_running():
    poller = FeedPoller(transport=httpx.MockTransport(Feed(b"gone", status=500)))
    listener = Recorder()

    poller.start("feed:a", FEED_A, 60_000, listener)
    with anyio.fail_after(2):
        await listener.event.wait()

    [error] = listener.errors
    assert isinstance(error, FeedError)
    assert error.source == FEED_A
    assert "feed:a" in poller
    assert poller.jobs()["feed:a"]["total_errors"] == 1
    await poller.close()
    assert len(poller) == 0


async def test_user_agent_is_sent():
    feed = Feed(_rss())
    poller = FeedPoller(user_agent="feedrelay-test", transport=httpx.MockTransport(feed))

    await poller.fetch(FEED_A)

    assert feed.requests[0].headers["User-Agent"] == "feedrelay-test"
    await poller.close()


async def test_starting_same_job_twice_is_ignored():
    poller = FeedPoller(transport=httpx.MockTransport(Feed(_rss())))
    listener = Recorder()

    poller.start("feed:a", FEED_A, 60_000, listener)
    poller.start("feed:a", FEED_A, 60_000, Recorder())

    assert len(poller) == 1
    await poller.close()


async def test_validation_accepts_empty_feed():
    feed = Feed(_rss())
    poller = FeedPoller(transport=httpx.MockTransport(feed))
    coordinator = ValidationCoordinator(poller, 2_000)

    assert await coordinator.validate(FEED_A) is None

    assert len(feed.requests) == 1
    assert len(poller) == 0
    assert coordinator.pending == frozenset()
    await poller.close()


async def test_validation_rejects_html_page():
    feed = Feed(b"<html><body><p>not a feed</p></body></html>")
    poller = FeedPoller(transport=httpx.MockTransport(feed))
    coordinator = ValidationCoordinator(poller, 2_000)

    with pytest.raises(FeedError) as info:
        await coordinator.validate(FEED_A)

    assert info.value.source == FEED_A
    assert len(poller) == 0
    await poller.close()


async def test_concurrent_validations_fetch_once():
    feed = Feed(_rss(("1", "only")))
    poller = FeedPoller(transport=httpx.MockTransport(feed))
    coordinator = ValidationCoordinator(poller, 2_000)

    first, second = await asyncio.gather(
        coordinator.validate(FEED_A), coordinator.validate(FEED_A)
    )

    assert first is not None
    assert first.id == "1"
    assert second == first
    assert len(feed.requests) == 1
    assert len(poller) == 0
    await poller.close()
