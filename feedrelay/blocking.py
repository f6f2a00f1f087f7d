from __future__ import annotations

from functools import partial

import anyio


async def to_thread(fn, *args, **kwargs):
    """Run a blocking call (SQLite access) in a worker thread."""
    return await anyio.to_thread.run_sync(partial(fn, *args, **kwargs))
