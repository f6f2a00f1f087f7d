"""Connect-and-wait check run before a feed subscription is committed.

A throwaway probe job polls the feed once; the first clean poll cycle wins
against a timer. Concurrent checks for the same source share one probe.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Optional

from .errors import FeedError, ValidationTimeout
from .metrics import JOBS, VALIDATIONS
from .poller import FeedItem, PollListener

logger = logging.getLogger(__name__)

# effectively never re-polls after the first cycle
PROBE_REFRESH_MS = 1 << 30


def _consume(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class PendingValidation:
    """Settle-once handle shared by every caller validating one source."""

    def __init__(
        self,
        source: str,
        job_id: str,
        on_settle: Callable[["PendingValidation"], None],
    ) -> None:
        self.source = source
        self.job_id = job_id
        self.outcome: Optional[str] = None
        self.timer: asyncio.TimerHandle | None = None
        self._on_settle = on_settle
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._future.add_done_callback(_consume)

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, item: FeedItem | None = None) -> bool:
        if self.settled:
            return False
        self.outcome = "ok"
        self._future.set_result(item)
        self._on_settle(self)
        return True

    def reject(self, error: Exception) -> bool:
        if self.settled:
            return False
        self.outcome = "timeout" if isinstance(error, ValidationTimeout) else "feed_error"
        self._future.set_exception(error)
        self._on_settle(self)
        return True

    async def wait(self) -> FeedItem | None:
        # a cancelled waiter must not cancel the shared result
        return await asyncio.shield(self._future)


class _ProbeListener(PollListener):
    def __init__(self, pending: PendingValidation) -> None:
        self._pending = pending

    async def item_found(self, source: str, item: FeedItem) -> None:
        self._pending.resolve(item)

    async def poll_succeeded(self, source: str) -> None:
        self._pending.resolve(None)

    async def poll_error(self, source: str, error: Exception) -> None:
        if not isinstance(error, FeedError):
            error = FeedError(source, str(error))
        self._pending.reject(error)


class ValidationCoordinator:
    def __init__(self, poller, timeout_ms: int) -> None:
        self._poller = poller
        self._timeout_ms = timeout_ms
        self._pending: dict[str, PendingValidation] = {}
        self._probe_ids = itertools.count(1)

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    async def validate(self, source: str, timeout_ms: int | None = None) -> FeedItem | None:
        """Return once ``source`` answered a poll; raise FeedError or ValidationTimeout."""
        pending = self._pending.get(source)
        if pending is not None:
            logger.debug("joining in-flight validation of %s", source)
            return await pending.wait()

        if timeout_ms is None:
            timeout_ms = self._timeout_ms
        pending = PendingValidation(
            source, f"probe:{next(self._probe_ids)}:{source}", self._settled
        )
        self._pending[source] = pending
        loop = asyncio.get_running_loop()
        pending.timer = loop.call_later(
            timeout_ms / 1000, pending.reject, ValidationTimeout(source, timeout_ms)
        )
        self._poller.start(
            pending.job_id,
            source,
            PROBE_REFRESH_MS,
            _ProbeListener(pending),
            skip_first_load=False,
        )
        JOBS.labels("probe").inc()
        return await pending.wait()

    def _settled(self, pending: PendingValidation) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
        if self._poller.stop(pending.job_id):
            JOBS.labels("probe").dec()
        if self._pending.get(pending.source) is pending:
            del self._pending[pending.source]
        VALIDATIONS.labels(pending.outcome).inc()
        logger.debug("validation of %s settled: %s", pending.source, pending.outcome)

    async def close(self) -> None:
        for pending in list(self._pending.values()):
            pending.reject(FeedError(pending.source, "validator closed"))
