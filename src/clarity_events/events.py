"""Clarity event types and data model.

Event names mirror the custom events the demo UI sends to the Clarity
sink (page and navigation, forms, modals, frustration signals, scroll and
dwell, performance, feature usage and journeys).
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from clarity_events.errors import InvalidEventError

JSONValue = Union[str, int, float, bool, None, Dict[str, Any], list]

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ClarityEventType(str, Enum):
    """Event names emitted by ClarityTracker and its wrappers."""

    # Page and navigation
    PAGE_VIEW = "page_view"
    TAB_NAVIGATION = "tab_navigation"

    # Buttons
    BUTTON_CLICK = "button_click"

    # Forms
    FORM_FIELD_INTERACTION = "form_field_interaction"
    FORM_SUBMISSION = "form_submission"
    FORM_SUBMIT_BUTTON_CLICK = "form_submit_button_click"
    FORM_VALIDATION_ERROR = "form_validation_error"
    FORM_STEP_NAVIGATION = "form_step_navigation"
    FORM_SUBMISSION_ERROR = "form_submission_error"

    # Modals
    MODAL_OPENED = "modal_opened"
    MODAL_CLOSED = "modal_closed"

    # Behaviour (auto-instrumented)
    SCROLL_DEPTH = "scroll_depth"
    TIME_ON_PAGE = "time_on_page"

    # Frustration
    RAGE_CLICK = "rage_click"
    DEAD_CLICK = "dead_click"

    # Performance
    PAGE_LOAD_TIME = "page_load_time"

    # Business
    FEATURE_USAGE = "feature_usage"
    USER_JOURNEY = "user_journey"
    USER_IDENTIFIED = "user_identified"

    # Minigame
    GAME_STARTED = "game_started"
    GAME_TARGET_HIT = "game_target_hit"
    GAME_COMPLETED = "game_completed"


class IdentityKind(str, Enum):
    """How the current identity came to be known."""

    RETURNING = "returning"  # recovered from local storage
    IDENTIFIED = "identified"  # explicit identify() call


ANONYMOUS_USER_TYPE = "anonymous"

# Lower bounds of the scroll-depth milestone bands, ascending.
SCROLL_MILESTONES = (25, 50, 75, 100)


def milestone_band(percent: int) -> Optional[int]:
    """Return the lower bound of the band containing ``percent``.

    Bands are [25,50), [50,75), [75,100) and [100,inf). Anything below
    25 is not a milestone.
    """
    band = None
    for bound in SCROLL_MILESTONES:
        if percent >= bound:
            band = bound
    return band


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass
class Identity:
    """The user currently associated with tracked events."""

    id: str
    kind: IdentityKind = IdentityKind.IDENTIFIED
    attributes: Dict[str, str] = field(default_factory=dict)

    @property
    def friendly_name(self) -> str:
        """Display name: ``name`` attribute, then ``email``, then the id."""
        return self.attributes.get("name") or self.attributes.get("email") or self.id


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


def validate_payload(payload: Optional[Mapping[str, Any]], path: str = "payload") -> Dict[str, Any]:
    """Return a plain-dict copy of ``payload`` holding only JSON values.

    Tuples are converted to lists. Raises InvalidEventError on non-string
    keys or values JSON cannot represent.
    """
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise InvalidEventError(f"{path} must be a mapping, got {type(payload).__name__}")
    return {_check_key(k, path): _check_value(v, f"{path}.{k}") for k, v in payload.items()}


def _check_key(key: Any, path: str) -> str:
    if not isinstance(key, str):
        raise InvalidEventError(f"{path} keys must be strings, got {key!r}")
    return key


def _check_value(value: Any, path: str) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidEventError(f"{path} must be a finite number, got {value!r}")
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return validate_payload(value, path)
    if isinstance(value, (list, tuple)):
        return [_check_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise InvalidEventError(
        f"{path} is not JSON-compatible: {type(value).__name__}"
    )


# ---------------------------------------------------------------------------
# Event data class
# ---------------------------------------------------------------------------


@dataclass
class ClarityEvent:
    """A single enriched event as handed to the sink.

    ``payload`` already holds the enrichment fields; the event is not
    retained by the tracker after forwarding.
    """

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_sink_payload(self) -> Dict[str, Any]:
        """Data argument for the sink's ``("event", name, data)`` call."""
        return dict(self.payload, timestamp=self.timestamp)
