from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional


class PollState:
    def __init__(self) -> None:
        self.running = False
        self.last_started: Optional[float] = None
        self.last_finished: Optional[float] = None
        self.last_error: Optional[str] = None
        self.total_runs = 0
        self.total_errors = 0

    def as_dict(self) -> dict:
        return {
            "running": self.running,
            "last_started": self.last_started,
            "last_finished": self.last_finished,
            "last_error": self.last_error,
            "total_runs": self.total_runs,
            "total_errors": self.total_errors,
        }


async def run_periodic(
    task: Callable[[], Awaitable[None]],
    interval: float,
    jitter: int,
    backoff_max: int,
    state: PollState,
    on_error: Optional[Callable[[Exception], Awaitable[None]]] = None,
) -> None:
    """Run ``task`` now and then every ``interval`` seconds until cancelled.

    Failures are recorded on ``state``, handed to ``on_error`` and followed by
    an extra exponential backoff delay before the regular interval.
    """
    backoff = 1
    while True:
        state.running = True
        state.last_started = time.time()
        try:
            await task()
            state.last_error = None
            state.total_runs += 1
            backoff = 1
        except Exception as exc:  # noqa: BLE001
            state.last_error = str(exc)
            state.total_errors += 1
            if on_error is not None:
                await on_error(exc)
            await asyncio.sleep(min(backoff, backoff_max))
            backoff = min(backoff * 2, backoff_max)
        finally:
            state.last_finished = time.time()
            state.running = False
        await asyncio.sleep(interval + random.randint(0, max(0, jitter)))
