"""Reference-counted mapping from feed source to subscribed channels.

A source is present iff at least one channel subscribes to it, and every
present source owns exactly one production poll job.
"""

from __future__ import annotations

import logging
from typing import Iterator

from .metrics import JOBS
from .poller import PollListener

logger = logging.getLogger(__name__)


def job_id_for(source: str) -> str:
    return f"feed:{source}"


class SubscriptionRegistry:
    def __init__(self, poller, refresh_ms: int, listener: PollListener | None = None) -> None:
        self._poller = poller
        self._refresh_ms = refresh_ms
        self._subscribers: dict[str, set[str]] = {}
        self.listener = listener

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, source: object) -> bool:
        return source in self._subscribers

    def sources(self) -> Iterator[str]:
        return iter(list(self._subscribers))

    def add_subscriber(self, source: str, channel_ref: str) -> bool:
        """Add ``channel_ref`` to ``source``; return True if polling started."""
        members = self._subscribers.get(source)
        if members is not None:
            members.add(channel_ref)
            return False
        if self.listener is None:
            raise RuntimeError("registry has no listener for poll events")
        self._subscribers[source] = {channel_ref}
        self._poller.start(
            job_id_for(source),
            source,
            self._refresh_ms,
            self.listener,
            skip_first_load=True,
        )
        JOBS.labels("feed").inc()
        logger.debug("subscribe %s", source)
        return True

    def remove_subscriber(self, source: str, channel_ref: str) -> bool:
        """Remove ``channel_ref`` from ``source``; return True if polling stopped."""
        members = self._subscribers.get(source)
        if members is None:
            return False
        members.discard(channel_ref)
        if members:
            return False
        del self._subscribers[source]
        self._poller.stop(job_id_for(source))
        JOBS.labels("feed").dec()
        logger.debug("unsubscribe %s", source)
        return True

    def subscribers_of(self, source: str) -> frozenset[str]:
        return frozenset(self._subscribers.get(source, ()))

    def snapshot(self) -> dict[str, list[str]]:
        return {source: sorted(members) for source, members in self._subscribers.items()}
