from __future__ import annotations

import asyncio
import logging

from .broadcast import Broadcaster
from .metrics import ITEMS, POLL_ERRORS
from .poller import FeedItem, PollListener
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


def format_message(item: FeedItem) -> str:
    header = item.feed_title
    if item.author:
        header = f"{header} ({item.author})" if header else item.author
    return "\n".join(part for part in (header, item.title, item.link) if part)


class DispatchRouter(PollListener):
    """Fans poll events of production jobs out to the current subscribers."""

    def __init__(self, registry: SubscriptionRegistry, broadcaster: Broadcaster) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._inflight: set[asyncio.Task[None]] = set()

    async def item_found(self, source: str, item: FeedItem) -> None:
        channels = self._registry.subscribers_of(source)
        if not channels:
            # last subscriber left after the poll was scheduled
            logger.debug("drop %s from unsubscribed %s", item.id, source)
            return
        task = asyncio.get_running_loop().create_task(
            self._broadcaster.broadcast(channels, format_message(item))
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        ITEMS.inc()

    async def poll_error(self, source: str, error: Exception) -> None:
        POLL_ERRORS.inc()
        logger.warning("poll of %s failed: %s", source, error)

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
