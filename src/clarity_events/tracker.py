"""ClarityTracker — the single choke point for analytics events.

Every event passes through ``track()``, which enriches it with standard
context (timestamp, user agent, screen/viewport, identity, session) and
hands it to the platform's analytics sink. When the sink is missing the
tracker degrades to a no-op; telemetry never breaks the calling UI.
"""

from __future__ import annotations

import logging
import random
import string
import time
from typing import Any, Dict, Mapping, Optional

from clarity_events.errors import InvalidEventError
from clarity_events.events import (
    ANONYMOUS_USER_TYPE,
    ClarityEvent,
    ClarityEventType,
    Identity,
    IdentityKind,
    JSONValue,
    validate_payload,
)
from clarity_events.platform import Platform

logger = logging.getLogger(__name__)

_SESSION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class ClarityTracker:
    """Records UI events through an injected platform's analytics sink.

    Usage::

        platform = HeadlessPlatform(sink=RecordingSink())
        tracker = ClarityTracker(platform)
        tracker.initialize()

        tracker.page_view("home")
        tracker.identify("u1", {"name": "Ada"})
        tracker.form_submission("contact_form", 2, 3, {"source": "footer"})
        tracker.clear_identity()
    """

    def __init__(
        self,
        platform: Platform,
        *,
        storage_key: str = "clarity_user_id",
        session_prefix: str = "session",
        custom_metadata: Optional[Dict[str, JSONValue]] = None,
    ):
        self.platform = platform
        self.storage_key = storage_key
        self.session_prefix = session_prefix
        self.custom_metadata = validate_payload(custom_metadata, "custom_metadata")

        self._identity: Optional[Identity] = None
        self._session_id: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Lifecycle & identity
    # ------------------------------------------------------------------ #

    def initialize(self, session_id: Optional[str] = None) -> bool:
        """Start a session and recover a stored identity.

        ``session_id`` resumes a session the host already knows about (a
        server continuing a visitor's session); otherwise a new one is made.
        Returns False (non-fatal) when the host has no analytics sink.
        """
        if not self.platform.has_analytics_sink():
            logger.warning("Clarity not available; events will be dropped")
            return False

        if session_id:
            self._session_id = session_id
            logger.debug("Clarity resumed session %s", session_id)
        else:
            self._session_id = self._new_session_id()
            logger.info("Clarity initialized with session %s", self._session_id)

        stored_id = self._storage_get()
        if stored_id:
            self._identity = Identity(id=stored_id, kind=IdentityKind.RETURNING)
            self._announce(self._identity)
        return True

    def identify(self, user_id: str, attributes: Optional[Mapping[str, str]] = None) -> None:
        """Associate subsequent events with ``user_id``.

        Overwrites any current identity and re-announces it to the sink.
        """
        if not isinstance(user_id, str) or not user_id:
            raise InvalidEventError("identify() requires a non-empty user id")
        attrs = {str(k): str(v) for k, v in (attributes or {}).items()}

        if not self.platform.has_analytics_sink():
            logger.warning("Clarity not available; cannot identify user %s", user_id)
            return

        self._storage_set(user_id)
        self._identity = Identity(id=user_id, kind=IdentityKind.IDENTIFIED, attributes=attrs)
        page_path = self._announce(self._identity)

        self.track(
            ClarityEventType.USER_IDENTIFIED.value,
            {
                "custom_user_id": user_id,
                "friendly_name": self._identity.friendly_name,
                "page_path": page_path,
                "user_attributes": attrs,
            },
        )

    def clear_identity(self) -> None:
        """Forget the current user locally, in storage and at the sink."""
        self._storage_remove()
        self._identity = None
        sink = self.platform.analytics_sink()
        if sink is None:
            return
        try:
            sink("identify", None, None, None, None)
        except Exception:
            logger.exception("Clarity de-identify call failed")

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def current_user_id(self) -> Optional[str]:
        return self._identity.id if self._identity else None

    def current_session_id(self) -> Optional[str]:
        return self._session_id

    # ------------------------------------------------------------------ #
    # Primary API
    # ------------------------------------------------------------------ #

    def track(self, event_name: str, payload: Optional[Mapping[str, JSONValue]] = None) -> Optional[ClarityEvent]:
        """Enrich and forward one event.

        Returns the forwarded event, or None when no sink is available.
        """
        if not isinstance(event_name, str) or not event_name:
            raise InvalidEventError("track() requires a non-empty event name")
        data = validate_payload(payload)

        sink = self.platform.analytics_sink()
        if sink is None:
            return None

        enriched: Dict[str, Any] = dict(self.custom_metadata)
        enriched.update(data)
        enriched.update(self._context())
        event = ClarityEvent(name=event_name, payload=enriched)

        try:
            sink("event", event_name, event.to_sink_payload())
        except Exception:
            logger.exception("Clarity sink failed for event %s", event_name)
            return None
        logger.debug("Clarity event %s %s", event_name, data)
        return event

    # ------------------------------------------------------------------ #
    # Page and navigation
    # ------------------------------------------------------------------ #

    def page_view(self, page_name: str, additional_data: Optional[Mapping[str, Any]] = None):
        return self.track(
            ClarityEventType.PAGE_VIEW.value,
            {
                "page": page_name,
                "url": self.platform.get_url(),
                "referrer": self.platform.get_referrer(),
                **(additional_data or {}),
            },
        )

    def tab_navigation(self, from_tab: str, to_tab: str, navigation_type: str = "tab_click"):
        return self.track(
            ClarityEventType.TAB_NAVIGATION.value,
            {"from_tab": from_tab, "to_tab": to_tab, "navigation_type": navigation_type},
        )

    def button_click(
        self,
        action: str,
        button_type: str,
        page: str,
        additional_data: Optional[Mapping[str, Any]] = None,
    ):
        return self.track(
            ClarityEventType.BUTTON_CLICK.value,
            {
                "button_action": action,
                "button_type": button_type,
                "page": page,
                **(additional_data or {}),
            },
        )

    # ------------------------------------------------------------------ #
    # Forms
    # ------------------------------------------------------------------ #

    def form_field_interaction(self, field_name: str, field_type: str, has_value: bool, value_length: int):
        return self.track(
            ClarityEventType.FORM_FIELD_INTERACTION.value,
            {
                "field_name": field_name,
                "field_type": field_type,
                "has_value": has_value,
                "value_length": value_length,
            },
        )

    def form_submission(
        self,
        form_type: str,
        fields_completed: int,
        total_fields: int,
        form_data: Optional[Mapping[str, Any]] = None,
    ):
        """Track a submitted form; completion_rate is rounded to 2 places."""
        if total_fields <= 0:
            raise InvalidEventError(
                f"form_submission() requires total_fields > 0, got {total_fields}"
            )
        return self.track(
            ClarityEventType.FORM_SUBMISSION.value,
            {
                "form_type": form_type,
                "fields_completed": fields_completed,
                "total_fields": total_fields,
                "form_data": dict(form_data or {}),
                "completion_rate": round(fields_completed / total_fields * 100, 2),
            },
        )

    def form_submit_button_click(self, form_type: str, fields_filled: int):
        return self.track(
            ClarityEventType.FORM_SUBMIT_BUTTON_CLICK.value,
            {"form_type": form_type, "fields_filled": fields_filled},
        )

    def form_validation_error(
        self,
        field_name: str,
        error_message: str,
        form_type: str,
        step: int,
        value: Any,
        validation_type: str,
    ):
        return self.track(
            ClarityEventType.FORM_VALIDATION_ERROR.value,
            {
                "field_name": field_name,
                "error_message": error_message,
                "form_type": form_type,
                "step": step,
                "value": value,
                "validation_type": validation_type,
            },
        )

    def form_step_navigation(self, direction: str, from_step: int, to_step: int, form_type: str):
        return self.track(
            ClarityEventType.FORM_STEP_NAVIGATION.value,
            {
                "direction": direction,
                "from_step": from_step,
                "to_step": to_step,
                "form_type": form_type,
            },
        )

    def form_submission_error(self, form_type: str, step: int, errors: Mapping[str, str]):
        return self.track(
            ClarityEventType.FORM_SUBMISSION_ERROR.value,
            {
                "form_type": form_type,
                "step": step,
                "error_count": len(errors),
                "errors": dict(errors),
            },
        )

    # ------------------------------------------------------------------ #
    # Modals
    # ------------------------------------------------------------------ #

    def modal_opened(self, modal_type: str, trigger_page: str):
        return self.track(
            ClarityEventType.MODAL_OPENED.value,
            {"modal_type": modal_type, "trigger_page": trigger_page},
        )

    def modal_closed(self, modal_type: str, close_method: str, time_open: float):
        return self.track(
            ClarityEventType.MODAL_CLOSED.value,
            {"modal_type": modal_type, "close_method": close_method, "time_open": time_open},
        )

    # ------------------------------------------------------------------ #
    # Behaviour, frustration, performance
    # ------------------------------------------------------------------ #

    def scroll_depth(self, scroll_percentage: int, page: str):
        return self.track(
            ClarityEventType.SCROLL_DEPTH.value,
            {"scroll_percentage": scroll_percentage, "page": page},
        )

    def time_on_page(self, time_spent: int, page: str):
        return self.track(
            ClarityEventType.TIME_ON_PAGE.value,
            {"time_spent_seconds": time_spent, "page": page},
        )

    def rage_click(self, element: str, page: str, click_count: int):
        return self.track(
            ClarityEventType.RAGE_CLICK.value,
            {"element": element, "page": page, "click_count": click_count},
        )

    def dead_click(self, element: str, page: str):
        return self.track(
            ClarityEventType.DEAD_CLICK.value,
            {"element": element, "page": page},
        )

    def page_load_time(self, load_time_ms: float, page: str):
        return self.track(
            ClarityEventType.PAGE_LOAD_TIME.value,
            {"load_time_ms": load_time_ms, "page": page},
        )

    # ------------------------------------------------------------------ #
    # Business events
    # ------------------------------------------------------------------ #

    def feature_usage(self, feature: str, action: str, additional_data: Optional[Mapping[str, Any]] = None):
        return self.track(
            ClarityEventType.FEATURE_USAGE.value,
            {"feature": feature, "action": action, **(additional_data or {})},
        )

    def user_journey(self, step: str, journey_type: str, additional_data: Optional[Mapping[str, Any]] = None):
        return self.track(
            ClarityEventType.USER_JOURNEY.value,
            {"step": step, "journey_type": journey_type, **(additional_data or {})},
        )

    def game_started(self, initial_time: int, game_type: str = "target_clicker"):
        return self.track(
            ClarityEventType.GAME_STARTED.value,
            {"game_type": game_type, "initial_time": initial_time},
        )

    def game_target_hit(
        self,
        current_score: int,
        current_level: int,
        target_position: Mapping[str, float],
        game_type: str = "target_clicker",
    ):
        return self.track(
            ClarityEventType.GAME_TARGET_HIT.value,
            {
                "game_type": game_type,
                "current_score": current_score,
                "current_level": current_level,
                "target_position": dict(target_position),
            },
        )

    def game_completed(
        self,
        final_score: int,
        high_score: int,
        targets_hit: int,
        total_targets: int,
        game_type: str = "target_clicker",
    ):
        """Accuracy is hits over targets shown, in percent to one place."""
        accuracy = round(targets_hit / total_targets * 100, 1) if total_targets > 0 else 0
        return self.track(
            ClarityEventType.GAME_COMPLETED.value,
            {
                "game_type": game_type,
                "final_score": final_score,
                "high_score": high_score,
                "targets_hit": targets_hit,
                "total_targets": total_targets,
                "accuracy": accuracy,
            },
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _context(self) -> Dict[str, Any]:
        screen = self.platform.get_screen_size()
        viewport = self.platform.get_viewport_size()
        identity = self._identity
        return {
            "user_agent": self.platform.get_user_agent(),
            "screen_resolution": f"{screen[0]}x{screen[1]}" if screen else "unknown",
            "viewport": f"{viewport[0]}x{viewport[1]}" if viewport else "unknown",
            "user_id": identity.id if identity else None,
            "session_id": self._session_id,
            "user_type": identity.kind.value if identity else ANONYMOUS_USER_TYPE,
        }

    def _announce(self, identity: Identity) -> Optional[str]:
        """Send the sink's identify call; returns the page path used."""
        sink = self.platform.analytics_sink()
        if sink is None:
            return None
        page_path = self.platform.get_page_path()
        try:
            sink("identify", identity.id, self._session_id, page_path, identity.friendly_name)
        except Exception:
            logger.exception("Clarity identify call failed for %s", identity.id)
        return page_path

    def _new_session_id(self) -> str:
        suffix = "".join(random.choices(_SESSION_SUFFIX_ALPHABET, k=9))
        return f"{self.session_prefix}_{int(time.time() * 1000)}_{suffix}"

    # -- storage (best-effort) --

    def _storage_get(self) -> Optional[str]:
        try:
            return self.platform.storage_get(self.storage_key)
        except Exception:
            logger.warning("Local storage unavailable; no stored identity recovered", exc_info=True)
            return None

    def _storage_set(self, user_id: str) -> None:
        try:
            self.platform.storage_set(self.storage_key, user_id)
        except Exception:
            logger.warning("Local storage unavailable; identity for %s not persisted", user_id, exc_info=True)

    def _storage_remove(self) -> None:
        try:
            self.platform.storage_remove(self.storage_key)
        except Exception:
            logger.warning("Local storage unavailable; stored identity not removed", exc_info=True)
