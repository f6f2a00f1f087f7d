"""feedrelay: fan feed items out to subscribed channels, polling each feed once."""

from importlib import import_module
from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:  # pragma: no cover - import-time convenience for type checkers
    from .main import app as app
    from .manager import SubscriptionManager as SubscriptionManager

_LAZY = {
    "app": ".main",
    "SubscriptionManager": ".manager",
}

__all__ = ["app", "SubscriptionManager", "__version__"]


def __getattr__(name: str):
    # importing .main configures logging and builds the app; defer it
    if name in _LAZY:
        return getattr(import_module(_LAZY[name], __name__), name)
    raise AttributeError(f"module 'feedrelay' has no attribute {name!r}")
