"""Auto-instrumentation hooks driven by host signals.

Install once per page view; each hook is its own subscription and must be
disposed by the owning component on teardown.

Usage::

    from clarity_events import init_scroll_tracking, init_time_tracking

    scroll = init_scroll_tracking(tracker, "home")
    dwell = init_time_tracking(tracker, "home")
    ...
    scroll.dispose()
    dwell.dispose()
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional

from clarity_events.events import milestone_band
from clarity_events.platform import HostSignal, ScrollMetrics

if TYPE_CHECKING:
    from clarity_events.tracker import ClarityTracker

logger = logging.getLogger(__name__)


def scroll_percent(metrics: ScrollMetrics) -> int:
    """Percentage of the scrollable overflow above the viewport top.

    Rounds half up. Pages without overflow report 0.
    """
    scrollable = metrics.document_height - metrics.viewport_height
    if scrollable <= 0:
        return 0
    return int(math.floor(metrics.scroll_top / scrollable * 100 + 0.5))


class _HostSubscription(ABC):
    """A single listener attached to the tracker's platform."""

    signal: HostSignal

    def __init__(self, tracker: "ClarityTracker", page_name: str) -> None:
        self.tracker = tracker
        self.page_name = page_name
        self._remove: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._remove is not None

    def install(self) -> "_HostSubscription":
        if self._remove is None:
            self._remove = self.tracker.platform.add_listener(self.signal, self._on_signal)
        return self

    def dispose(self) -> None:
        if self._remove is not None:
            self._remove()
            self._remove = None

    @abstractmethod
    def _on_signal(self) -> None: ...


class ScrollDepthHook(_HostSubscription):
    """Reports scroll_depth once per milestone band (25/50/75/100).

    The watermark only rises. A jump across several bands reports only
    the band the watermark lands in.
    """

    signal = HostSignal.SCROLL

    def __init__(self, tracker: "ClarityTracker", page_name: str) -> None:
        super().__init__(tracker, page_name)
        self.max_scroll = 0
        self.last_milestone: Optional[int] = None

    def _on_signal(self) -> None:
        self.record_percent(scroll_percent(self.tracker.platform.get_scroll_metrics()))

    def record_percent(self, percent: int) -> Optional[int]:
        """Apply one scroll sample; returns the milestone emitted, if any."""
        if percent <= self.max_scroll:
            return None
        self.max_scroll = percent

        band = milestone_band(self.max_scroll)
        if band is None or (self.last_milestone is not None and band <= self.last_milestone):
            return None
        self.last_milestone = band
        self.tracker.scroll_depth(band, self.page_name)
        return band


class TimeOnPageHook(_HostSubscription):
    """Reports whole seconds on the page once, at unload."""

    signal = HostSignal.UNLOAD

    def __init__(self, tracker: "ClarityTracker", page_name: str, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(tracker, page_name)
        self.clock = clock
        self.started_at: Optional[float] = None
        self.reported = False

    def install(self) -> "TimeOnPageHook":
        if self.started_at is None:
            self.started_at = self.clock()
        return super().install()

    def _on_signal(self) -> None:
        if self.reported or self.started_at is None:
            return
        self.reported = True
        self.dispose()
        time_spent = int(math.floor(self.clock() - self.started_at))
        logger.debug("Page %s unloading after %ss", self.page_name, time_spent)
        self.tracker.time_on_page(time_spent, self.page_name)


def init_scroll_tracking(tracker: "ClarityTracker", page_name: str) -> ScrollDepthHook:
    return ScrollDepthHook(tracker, page_name).install()


def init_time_tracking(tracker: "ClarityTracker", page_name: str, clock: Callable[[], float] = time.monotonic) -> TimeOnPageHook:
    return TimeOnPageHook(tracker, page_name, clock=clock).install()
