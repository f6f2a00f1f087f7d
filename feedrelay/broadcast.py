"""Outbound delivery of feed notifications to channels.

Broadcasters are fire-and-forget: delivery failures are logged here and
never raised to the caller.
"""

from __future__ import annotations

import abc
import logging
from typing import Iterable

import httpx

from . import store
from .blocking import to_thread

logger = logging.getLogger(__name__)


class Broadcaster(abc.ABC):
    @abc.abstractmethod
    async def broadcast(self, channel_refs: frozenset[str], message: str) -> None:
        """Deliver ``message`` to every channel in ``channel_refs``."""

    async def close(self) -> None:
        pass


class OutboxBroadcaster(Broadcaster):
    """Append the message to each channel's outbox table."""

    async def broadcast(self, channel_refs: frozenset[str], message: str) -> None:
        for ref in sorted(channel_refs):
            try:
                await to_thread(store.outbox_write, ref, message)
            except Exception:  # noqa: BLE001
                logger.exception("outbox write failed for %s", ref)


class WebhookBroadcaster(Broadcaster):
    """POST ``{"channels": [...], "message": ...}`` to a configured URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def broadcast(self, channel_refs: frozenset[str], message: str) -> None:
        payload = {"channels": sorted(channel_refs), "message": message}
        try:
            response = await self._client.post(self._url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("webhook delivery to %s failed: %s", self._url, exc)

    async def close(self) -> None:
        await self._client.aclose()


class FanoutBroadcaster(Broadcaster):
    def __init__(self, targets: Iterable[Broadcaster]) -> None:
        self._targets = list(targets)

    async def broadcast(self, channel_refs: frozenset[str], message: str) -> None:
        for target in self._targets:
            await target.broadcast(channel_refs, message)

    async def close(self) -> None:
        for target in self._targets:
            await target.close()


def build_broadcaster(settings) -> Broadcaster:
    targets: list[Broadcaster] = []
    if settings.OUTBOX_ENABLED:
        targets.append(OutboxBroadcaster())
    if settings.BROADCAST_WEBHOOK_URL:
        targets.append(
            WebhookBroadcaster(settings.BROADCAST_WEBHOOK_URL, settings.FETCH_TIMEOUT_SECONDS)
        )
    if len(targets) == 1:
        return targets[0]
    return FanoutBroadcaster(targets)
