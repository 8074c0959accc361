"""Clarity Events — UI event tracking through an injected analytics sink.

Enriches page views, clicks, form interactions, scroll depth, dwell time
and user identification with standard context and forwards them to a
Clarity-style sink. Missing sinks degrade to no-ops.

Integration points (pick any or combine):
    1. Direct API          — call tracker.track() or a wrapper from UI code
    2. Auto hooks          — init_scroll_tracking() / init_time_tracking()
    3. Starlette middleware — page views for server-rendered pages
    4. Sinks               — in-memory, HTTP collector, BigQuery
"""

from clarity_events.errors import ClarityError, InvalidEventError
from clarity_events.events import ClarityEvent, ClarityEventType, Identity, IdentityKind
from clarity_events.hooks import (
    ScrollDepthHook,
    TimeOnPageHook,
    init_scroll_tracking,
    init_time_tracking,
)
from clarity_events.platform import (
    HeadlessPlatform,
    HostSignal,
    JsonFileStorage,
    MemoryStorage,
    Platform,
)
from clarity_events.sinks import BackgroundSink, BigQuerySink, HttpCollectorSink, RecordingSink
from clarity_events.tracker import ClarityTracker


def __getattr__(name: str):
    if name == "ClarityPageViewMiddleware":
        from clarity_events.middleware import ClarityPageViewMiddleware

        return ClarityPageViewMiddleware
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ClarityTracker",
    "ClarityEvent",
    "ClarityEventType",
    "Identity",
    "IdentityKind",
    "ClarityError",
    "InvalidEventError",
    "Platform",
    "HeadlessPlatform",
    "HostSignal",
    "MemoryStorage",
    "JsonFileStorage",
    "RecordingSink",
    "BackgroundSink",
    "HttpCollectorSink",
    "BigQuerySink",
    "ScrollDepthHook",
    "TimeOnPageHook",
    "init_scroll_tracking",
    "init_time_tracking",
    "ClarityPageViewMiddleware",
]

__version__ = "0.1.0"
