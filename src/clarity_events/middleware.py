"""Starlette ASGI middleware that records server-rendered page views.

Each request gets its own ClarityTracker. The visitor's session id and
identified user id travel in cookies, so one visitor's identity never
tags another visitor's events. Handlers reach the request's tracker as
``request.state.clarity``::

    from starlette.applications import Starlette
    from clarity_events import HttpCollectorSink
    from clarity_events.middleware import ClarityPageViewMiddleware

    sink = HttpCollectorSink(url)

    async def login(request):
        request.state.clarity.identify(user.id, {"email": user.email})
        ...

    app = Starlette(routes=[...])
    app.add_middleware(ClarityPageViewMiddleware, sink=sink)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from clarity_events.platform import HostSignal, ScrollMetrics, Sink
from clarity_events.tracker import ClarityTracker

logger = logging.getLogger(__name__)

SESSION_COOKIE = "clarity_session_id"
COOKIE_MAX_AGE = 365 * 24 * 3600


class CookieStorage:
    """Local storage backed by the request's cookies.

    Writes are collected and applied to the response by the middleware.
    """

    def __init__(self, cookies: Dict[str, str]) -> None:
        self._cookies = dict(cookies)
        self.changes: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[str]:
        return self._cookies.get(key)

    def set(self, key: str, value: str) -> None:
        self._cookies[key] = value
        self.changes[key] = value

    def remove(self, key: str) -> None:
        self._cookies.pop(key, None)
        self.changes[key] = None


class RequestPlatform:
    """Platform view of one HTTP request; the server knows no screen,
    viewport or scroll position, and emits no host signals."""

    def __init__(self, request: Request, sink: Optional[Sink]) -> None:
        self.sink = sink
        self.url = str(request.url)
        self.path = request.url.path
        self.referrer = request.headers.get("referer", "")
        self.user_agent = request.headers.get("user-agent", "")
        self.storage = CookieStorage(request.cookies)

    def analytics_sink(self) -> Optional[Sink]:
        return self.sink

    def has_analytics_sink(self) -> bool:
        return self.sink is not None

    def get_user_agent(self) -> str:
        return self.user_agent

    def get_screen_size(self) -> Optional[Tuple[int, int]]:
        return None

    def get_viewport_size(self) -> Optional[Tuple[int, int]]:
        return None

    def get_url(self) -> str:
        return self.url

    def get_page_path(self) -> str:
        return self.path

    def get_referrer(self) -> str:
        return self.referrer

    def get_scroll_metrics(self) -> ScrollMetrics:
        return ScrollMetrics(0, 0, 0)

    def storage_get(self, key: str) -> Optional[str]:
        return self.storage.get(key)

    def storage_set(self, key: str, value: str) -> None:
        self.storage.set(key, value)

    def storage_remove(self, key: str) -> None:
        self.storage.remove(key)

    def add_listener(self, signal: HostSignal, listener: Callable[[], None]) -> Callable[[], None]:
        return lambda: None


class ClarityPageViewMiddleware(BaseHTTPMiddleware):
    """Tracks page_view and page_load_time for successful HTML GETs.

    Every request (page or not) gets ``request.state.clarity``. Tracker
    calls that may reach the sink run in the threadpool, never on the
    event loop.
    """

    def __init__(
        self,
        app: Any,
        sink: Optional[Sink],
        page_prefixes: Sequence[str] = ("/",),
        exclude_prefixes: Sequence[str] = ("/static", "/favicon.ico"),
        storage_key: str = "clarity_user_id",
    ) -> None:
        super().__init__(app)
        self.sink = sink
        self.page_prefixes = tuple(page_prefixes)
        self.exclude_prefixes = tuple(exclude_prefixes)
        self.storage_key = storage_key

    def _is_page_request(self, request: Request) -> bool:
        path = request.url.path
        if request.method != "GET":
            return False
        if any(path.startswith(p) for p in self.exclude_prefixes):
            return False
        return any(path.startswith(p) for p in self.page_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        platform = RequestPlatform(request, self.sink)
        tracker = ClarityTracker(platform, storage_key=self.storage_key)
        incoming_session = request.cookies.get(SESSION_COOKIE)
        await run_in_threadpool(tracker.initialize, incoming_session)
        request.state.clarity = tracker

        start = time.monotonic()
        response = await call_next(request)
        latency_ms = round((time.monotonic() - start) * 1000, 2)

        content_type = response.headers.get("content-type", "")
        if (
            self._is_page_request(request)
            and response.status_code < 400
            and content_type.startswith("text/html")
        ):
            await run_in_threadpool(self._record_page, tracker, request.url.path, latency_ms)

        self._apply_cookies(response, tracker, platform.storage, incoming_session)
        return response

    @staticmethod
    def _record_page(tracker: ClarityTracker, path: str, latency_ms: float) -> None:
        try:
            tracker.page_view(path)
            tracker.page_load_time(latency_ms, path)
        except Exception:
            logger.exception("Clarity page view recording failed for %s", path)

    @staticmethod
    def _apply_cookies(
        response: Response,
        tracker: ClarityTracker,
        storage: CookieStorage,
        incoming_session: Optional[str],
    ) -> None:
        session_id = tracker.current_session_id()
        if session_id and session_id != incoming_session:
            response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
        for key, value in storage.changes.items():
            if value is None:
                response.delete_cookie(key)
            else:
                response.set_cookie(key, value, max_age=COOKIE_MAX_AGE, httponly=True, samesite="lax")
