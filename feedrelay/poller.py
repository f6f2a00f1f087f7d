"""Feed polling engine.

Each poll job is one asyncio task fetching a feed with ``httpx`` and parsing
it with ``feedparser``. Jobs are keyed by a job id rather than by URL, so the
same feed can be polled by independent jobs (a production job and a
validation probe) without one stopping the other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import suppress
from typing import Optional

import feedparser
import httpx
from pydantic import BaseModel

from .errors import FeedError
from .scheduler import PollState, run_periodic

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 500


class FeedItem(BaseModel):
    id: str
    link: str = ""
    title: str = ""
    author: str = ""
    feed_title: str = ""
    published: Optional[str] = None


class PollListener:
    """Receives the events of one poll job. Override what you need."""

    async def item_found(self, source: str, item: FeedItem) -> None:
        pass

    async def poll_error(self, source: str, error: Exception) -> None:
        pass

    async def poll_succeeded(self, source: str) -> None:
        pass


class PollJob:
    def __init__(
        self,
        job_id: str,
        source: str,
        refresh_ms: int,
        listener: PollListener,
        skip_first_load: bool,
    ) -> None:
        self.job_id = job_id
        self.source = source
        self.refresh_ms = refresh_ms
        self.listener = listener
        self.skip_first_load = skip_first_load
        self.loaded = False
        self.state = PollState()
        self.seen: OrderedDict[str, None] = OrderedDict()
        self.task: asyncio.Task[None] | None = None

    def remember(self, ids: list[str]) -> None:
        for item_id in ids:
            self.seen[item_id] = None
            self.seen.move_to_end(item_id)
        limit = max(HISTORY_LIMIT, 2 * len(ids))
        while len(self.seen) > limit:
            self.seen.popitem(last=False)


def parse_feed(source: str, content: bytes) -> list[FeedItem]:
    parsed = feedparser.parse(content)
    if not parsed.get("version") and not parsed.entries:
        reason = parsed.get("bozo_exception") or "not a feed"
        raise FeedError(source, str(reason))
    feed_title = parsed.feed.get("title", "")
    items: list[FeedItem] = []
    for entry in parsed.entries:
        link = entry.get("link", "")
        item_id = entry.get("id") or link or entry.get("title")
        if not item_id:
            continue
        items.append(
            FeedItem(
                id=item_id,
                link=link,
                title=entry.get("title", ""),
                author=entry.get("author", ""),
                feed_title=feed_title,
                published=entry.get("published"),
            )
        )
    return items


class FeedPoller:
    def __init__(
        self,
        user_agent: str | None = None,
        fetch_timeout: float = 15.0,
        jitter: int = 0,
        backoff_max: int = 600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._user_agent = user_agent
        self._fetch_timeout = fetch_timeout
        self._jitter = jitter
        self._backoff_max = backoff_max
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._jobs: dict[str, PollJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": self._user_agent} if self._user_agent else {}
            self._client = httpx.AsyncClient(
                timeout=self._fetch_timeout,
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def start(
        self,
        job_id: str,
        source: str,
        refresh_ms: int,
        listener: PollListener,
        *,
        skip_first_load: bool = True,
    ) -> None:
        if job_id in self._jobs:
            logger.debug("poll job %s already running", job_id)
            return
        job = PollJob(job_id, source, refresh_ms, listener, skip_first_load)
        self._jobs[job_id] = job
        job.task = asyncio.get_running_loop().create_task(
            self._run(job), name=f"poll:{job_id}"
        )
        logger.debug("start %s (%s every %sms)", job_id, source, refresh_ms)

    def stop(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        if job.task is not None:
            job.task.cancel()
        logger.debug("stop %s", job_id)
        return True

    def jobs(self) -> dict[str, dict]:
        return {
            job_id: {"source": job.source, "refresh_ms": job.refresh_ms, **job.state.as_dict()}
            for job_id, job in self._jobs.items()
        }

    async def close(self) -> None:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            if job.task is not None:
                job.task.cancel()
        for job in jobs:
            if job.task is not None:
                with suppress(asyncio.CancelledError, Exception):
                    await job.task
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, source: str) -> bytes:
        try:
            response = await self._http().get(source)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FeedError(source, str(exc) or exc.__class__.__name__) from exc
        return response.content

    async def _run(self, job: PollJob) -> None:
        async def _cycle() -> None:
            await self._poll_once(job)

        async def _failed(exc: Exception) -> None:
            await job.listener.poll_error(job.source, exc)

        await run_periodic(
            _cycle,
            job.refresh_ms / 1000,
            self._jitter,
            self._backoff_max,
            job.state,
            on_error=_failed,
        )

    async def _poll_once(self, job: PollJob) -> None:
        content = await self.fetch(job.source)
        items = parse_feed(job.source, content)
        fresh = [item for item in items if item.id not in job.seen]
        job.remember([item.id for item in items])
        first_load = not job.loaded
        job.loaded = True
        if not (first_load and job.skip_first_load):
            # feeds list newest first; deliver in publication order
            for item in reversed(fresh):
                await job.listener.item_found(job.source, item)
        await job.listener.poll_succeeded(job.source)
