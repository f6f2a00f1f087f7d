from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REQS = Counter(
    "feedrelay_requests_total",
    "Requests",
    ["method", "path", "status"],
)
LAT = Histogram(
    "feedrelay_latency_seconds",
    "Latency",
    ["method", "path"],
)
ITEMS = Counter(
    "feedrelay_items_dispatched_total",
    "Feed items broadcast to at least one channel",
)
POLL_ERRORS = Counter(
    "feedrelay_poll_errors_total",
    "Steady-state poll errors",
)
VALIDATIONS = Counter(
    "feedrelay_validations_total",
    "Settled feed validations",
    ["outcome"],
)
JOBS = Gauge(
    "feedrelay_poll_jobs",
    "Active poll jobs",
    ["kind"],
)


def router() -> APIRouter:
    r = APIRouter()

    @r.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return r
