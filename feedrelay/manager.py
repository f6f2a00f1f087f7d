"""Subscription façade composing registry, validation and dispatch.

One ``SubscriptionManager`` is built per process and owns all subscription
state. The persistence collaborator is any object exposing
``get_subscription_list``, ``set_subscription_list`` and
``get_all_assigned_channels``; by default the ``store`` module itself.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from . import store as default_store
from .blocking import to_thread
from .broadcast import Broadcaster
from .dispatch import DispatchRouter
from .errors import FeedError, ValidationTimeout
from .registry import SubscriptionRegistry
from .validation import ValidationCoordinator

logger = logging.getLogger(__name__)

NO_SUBSCRIPTIONS = "no subscriptions"


class SubscriptionOutcome(str, Enum):
    SUBSCRIBED = "subscribed successfully"
    ALREADY_SUBSCRIBED = "already subscribed"
    FAILED = "unable to subscribe to this feed"
    UNSUBSCRIBED = "unsubscribed successfully"
    NOT_SUBSCRIBED = "not subscribed"


def channel_ref(platform: str, channel_id: str) -> str:
    return f"{platform}:{channel_id}"


class SubscriptionManager:
    def __init__(
        self,
        poller,
        broadcaster: Broadcaster,
        store=default_store,
        *,
        refresh_ms: int = 60_000,
        timeout_ms: int = 10_000,
    ) -> None:
        self.poller = poller
        self.broadcaster = broadcaster
        self._store = store
        self.registry = SubscriptionRegistry(poller, refresh_ms)
        self.router = DispatchRouter(self.registry, broadcaster)
        self.registry.listener = self.router
        self.validator = ValidationCoordinator(poller, timeout_ms)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, ref: str) -> asyncio.Lock:
        lock = self._locks.get(ref)
        if lock is None:
            lock = self._locks[ref] = asyncio.Lock()
        return lock

    async def subscribe(self, source: str, ref: str) -> SubscriptionOutcome:
        feeds = await to_thread(self._store.get_subscription_list, ref)
        if source in feeds:
            return SubscriptionOutcome.ALREADY_SUBSCRIBED

        try:
            await self.validator.validate(source)
        except (FeedError, ValidationTimeout) as exc:
            logger.info("cannot subscribe %s to %s: %s", ref, source, exc)
            return SubscriptionOutcome.FAILED

        # list and registry change together per channel; registry only after the write
        async with self._lock_for(ref):
            feeds = await to_thread(self._store.get_subscription_list, ref)
            if source in feeds:
                return SubscriptionOutcome.ALREADY_SUBSCRIBED
            feeds.append(source)
            await to_thread(self._store.set_subscription_list, ref, feeds)
            self.registry.add_subscriber(source, ref)
        logger.info("%s subscribed to %s", ref, source)
        return SubscriptionOutcome.SUBSCRIBED

    async def unsubscribe(self, source: str, ref: str) -> SubscriptionOutcome:
        async with self._lock_for(ref):
            feeds = await to_thread(self._store.get_subscription_list, ref)
            if source not in feeds:
                return SubscriptionOutcome.NOT_SUBSCRIBED
            remaining = [feed for feed in feeds if feed != source]
            await to_thread(self._store.set_subscription_list, ref, remaining)
            self.registry.remove_subscriber(source, ref)
        logger.info("%s unsubscribed from %s", ref, source)
        return SubscriptionOutcome.UNSUBSCRIBED

    async def list_subscriptions(self, ref: str) -> list[str]:
        return await to_thread(self._store.get_subscription_list, ref)

    async def restore_from_persisted_state(self) -> int:
        """Re-subscribe every persisted (source, channel) pair without validation."""
        channels = await to_thread(self._store.get_all_assigned_channels)
        restored = 0
        for ref, feeds in channels:
            for source in feeds:
                self.registry.add_subscriber(source, ref)
                restored += 1
        logger.info(
            "restored %d subscriptions across %d feeds", restored, len(self.registry)
        )
        return restored

    def snapshot(self) -> dict:
        return {
            "feeds": self.registry.snapshot(),
            "jobs": self.poller.jobs(),
            "pending": sorted(self.validator.pending),
        }

    async def close(self) -> None:
        await self.validator.close()
        await self.router.drain()
        await self.poller.close()
        await self.broadcaster.close()
