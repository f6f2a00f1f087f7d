"""Error types raised by the subscription core."""

from __future__ import annotations


class FeedRelayError(Exception):
    """Base class for feedrelay errors."""


class FeedError(FeedRelayError):
    """The upstream feed could not be fetched or is not a feed."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ValidationTimeout(FeedRelayError):
    """No response from the feed within the validation window."""

    def __init__(self, source: str, timeout_ms: int) -> None:
        super().__init__(f"{source}: connect timeout after {timeout_ms}ms")
        self.source = source
        self.timeout_ms = timeout_ms
