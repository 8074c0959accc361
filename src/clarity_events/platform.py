"""Host environment capabilities consumed by the tracker and hooks.

The tracker never reads globals; it asks a ``Platform`` for the sink,
the viewport, the current location and local storage. ``HeadlessPlatform``
is a complete in-process host for scripts, servers and tests.

Usage::

    from clarity_events import ClarityTracker, HeadlessPlatform, RecordingSink

    platform = HeadlessPlatform(sink=RecordingSink(), url="https://demo.local/home")
    tracker = ClarityTracker(platform)
    tracker.initialize()

    platform.scroll_to(800)          # drives installed scroll hooks
    platform.unload()                # drives installed time-on-page hooks
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

Sink = Callable[..., Any]
Listener = Callable[[], None]


class HostSignal(str, Enum):
    """Browser-level notifications the hooks listen to."""

    SCROLL = "scroll"
    UNLOAD = "unload"


@dataclass
class ScrollMetrics:
    scroll_top: float
    document_height: float
    viewport_height: float


# ---------------------------------------------------------------------------
# Local storage
# ---------------------------------------------------------------------------


class LocalStorage(Protocol):
    """Durable string key/value store (``window.localStorage`` shape)."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Storage that lives as long as the object; shared across reloads
    only when the same instance is handed to the next platform."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Storage persisted as a single JSON object on disk."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


class Platform(Protocol):
    """Capabilities the tracker needs from its host."""

    def analytics_sink(self) -> Optional[Sink]: ...

    def has_analytics_sink(self) -> bool: ...

    def get_user_agent(self) -> str: ...

    def get_screen_size(self) -> Optional[Tuple[int, int]]: ...

    def get_viewport_size(self) -> Optional[Tuple[int, int]]: ...

    def get_url(self) -> str: ...

    def get_page_path(self) -> str: ...

    def get_referrer(self) -> str: ...

    def get_scroll_metrics(self) -> ScrollMetrics: ...

    def storage_get(self, key: str) -> Optional[str]: ...

    def storage_set(self, key: str, value: str) -> None: ...

    def storage_remove(self, key: str) -> None: ...

    def add_listener(self, signal: HostSignal, listener: Listener) -> Callable[[], None]: ...


class HeadlessPlatform:
    """In-process host: fixed dimensions, settable location, synthetic signals."""

    DEFAULT_USER_AGENT = "clarity-events/0.1 (headless)"

    def __init__(
        self,
        sink: Optional[Sink] = None,
        *,
        storage: Optional[LocalStorage] = None,
        url: str = "http://localhost/",
        referrer: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        screen_size: Optional[Tuple[int, int]] = (1920, 1080),
        viewport_size: Optional[Tuple[int, int]] = (1280, 720),
        document_height: float = 720,
    ) -> None:
        self.sink = sink
        self.storage = storage if storage is not None else MemoryStorage()
        self.url = url
        self.referrer = referrer
        self.user_agent = user_agent
        self.screen_size = screen_size
        self.viewport_size = viewport_size
        self.document_height = document_height
        self.scroll_top: float = 0
        self._listeners: Dict[HostSignal, List[Listener]] = {s: [] for s in HostSignal}

    # -- sink --

    def analytics_sink(self) -> Optional[Sink]:
        return self.sink

    def has_analytics_sink(self) -> bool:
        return self.sink is not None

    # -- environment --

    def get_user_agent(self) -> str:
        return self.user_agent

    def get_screen_size(self) -> Optional[Tuple[int, int]]:
        return self.screen_size

    def get_viewport_size(self) -> Optional[Tuple[int, int]]:
        return self.viewport_size

    def get_url(self) -> str:
        return self.url

    def get_page_path(self) -> str:
        return urlparse(self.url).path or "/"

    def get_referrer(self) -> str:
        return self.referrer

    def get_scroll_metrics(self) -> ScrollMetrics:
        return ScrollMetrics(
            scroll_top=self.scroll_top,
            document_height=self.document_height,
            viewport_height=self.viewport_size[1] if self.viewport_size else 0,
        )

    # -- storage --

    def storage_get(self, key: str) -> Optional[str]:
        return self.storage.get(key)

    def storage_set(self, key: str, value: str) -> None:
        self.storage.set(key, value)

    def storage_remove(self, key: str) -> None:
        self.storage.remove(key)

    # -- signals --

    def add_listener(self, signal: HostSignal, listener: Listener) -> Callable[[], None]:
        listeners = self._listeners[HostSignal(signal)]
        listeners.append(listener)

        def remove() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return remove

    def listener_count(self, signal: HostSignal) -> int:
        return len(self._listeners[HostSignal(signal)])

    def emit(self, signal: HostSignal) -> None:
        """Deliver ``signal`` to every listener registered at call time."""
        for listener in list(self._listeners[HostSignal(signal)]):
            listener()

    def navigate(self, url: str) -> None:
        """Change location the way an in-app route change does (no reload)."""
        self.referrer = self.url
        self.url = url

    def scroll_to(self, scroll_top: float) -> None:
        self.scroll_top = scroll_top
        self.emit(HostSignal.SCROLL)

    def unload(self) -> None:
        self.emit(HostSignal.UNLOAD)
