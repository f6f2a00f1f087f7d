from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .auth import require_auth, require_write_token
from .blocking import to_thread
from .broadcast import build_broadcaster
from .config import reload_settings, settings
from .logging_setup import RequestLogMiddleware, init_logging
from .manager import NO_SUBSCRIPTIONS, SubscriptionManager, SubscriptionOutcome, channel_ref
from .metrics import LAT, REQS, router as metrics_router
from .poller import FeedPoller
from .store import init_db, outbox_list, refresh_engine


class Health(BaseModel):
    status: str
    time: str


class FeedRequest(BaseModel):
    url: str


def _build_manager() -> SubscriptionManager:
    poller = FeedPoller(
        user_agent=settings.FEED_USER_AGENT,
        fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        jitter=settings.POLL_JITTER_SECONDS,
        backoff_max=settings.POLL_BACKOFF_MAX_SECONDS,
    )
    return SubscriptionManager(
        poller,
        build_broadcaster(settings),
        refresh_ms=settings.FEED_REFRESH_MS,
        timeout_ms=settings.FEED_TIMEOUT_MS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    reload_settings()
    refresh_engine()
    Path(settings.CACHE_DB_PATH).touch(exist_ok=True)
    init_db()
    manager = _build_manager()
    app.state.manager = manager
    if settings.RESTORE_ON_START:
        await manager.restore_from_persisted_state()
    try:
        yield
    finally:
        await manager.close()


def get_manager(request: Request) -> SubscriptionManager:
    return request.app.state.manager


init_logging(settings.LOG_LEVEL)

app = FastAPI(title="feedrelay", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLogMiddleware)
app.include_router(metrics_router())

origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def _metrics(request: Request, call_next):
    method = request.method
    start = time.time()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        # route template keeps channel ids out of the label set
        route = request.scope.get("route")
        path = route.path if route is not None else request.url.path
        REQS.labels(method, path, str(status_code)).inc()
        LAT.labels(method, path).observe(time.time() - start)


@app.get("/health", response_model=Health)
def health():
    return Health(status="ok", time=datetime.utcnow().isoformat())


@app.get("/channels/{platform}/{channel_id}/feeds")
async def list_feeds(
    platform: str,
    channel_id: str,
    manager: SubscriptionManager = Depends(get_manager),
):
    feeds = await manager.list_subscriptions(channel_ref(platform, channel_id))
    return {"feeds": feeds, "detail": "\n".join(feeds) if feeds else NO_SUBSCRIPTIONS}


@app.post("/channels/{platform}/{channel_id}/feeds")
async def subscribe_feed(
    platform: str,
    channel_id: str,
    body: FeedRequest,
    response: Response,
    manager: SubscriptionManager = Depends(get_manager),
    _=Depends(require_write_token),
):
    outcome = await manager.subscribe(body.url, channel_ref(platform, channel_id))
    if outcome is SubscriptionOutcome.FAILED:
        response.status_code = 422
    return {"detail": outcome.value, "url": body.url}


@app.delete("/channels/{platform}/{channel_id}/feeds")
async def unsubscribe_feed(
    platform: str,
    channel_id: str,
    response: Response,
    url: str = Query(..., description="feed URL exactly as subscribed"),
    manager: SubscriptionManager = Depends(get_manager),
    _=Depends(require_write_token),
):
    outcome = await manager.unsubscribe(url, channel_ref(platform, channel_id))
    if outcome is SubscriptionOutcome.NOT_SUBSCRIBED:
        response.status_code = 404
    return {"detail": outcome.value, "url": url}


@app.get("/channels/{platform}/{channel_id}/messages")
async def channel_messages(
    platform: str,
    channel_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    items = await to_thread(outbox_list, channel_ref(platform, channel_id), limit, offset)
    return {"items": items, "limit": limit, "offset": offset}


@app.get("/feeds")
def feeds_status(
    manager: SubscriptionManager = Depends(get_manager),
    _=Depends(require_auth),
):
    return manager.snapshot()
