#!/usr/bin/env python3
"""
Demo App — Tabs, Forms, Modal, Identity, Scroll and Dwell
==========================================================

Walks the same flows as the Clarity testing demo UI, headlessly:
  1. App load: page view, auto hooks, journey start
  2. Tab navigation home -> forms
  3. Contact form: field interactions, submit button, submission
  4. Multi-step form: validation errors, step navigation, completion
  5. Info modal open/close, rage click, dead click, page load time
  6. Identify a user, then sign out
  7. Scroll the page and unload it

Run:
    python examples/demo_app.py

Set CLARITY_COLLECTOR_URL or GCP_PROJECT_ID to ship events somewhere real.
"""

from __future__ import annotations

import os
import re
import sys
import time

from clarity_events import init_scroll_tracking, init_time_tracking

sys.path.insert(0, os.path.dirname(__file__))
from _demo_utils import close_sink, create_sink, create_tracker, print_events, setup_logging

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")

MULTI_STEP_FIELDS = {
    1: ("first_name", "last_name", "email"),
    2: ("company", "role"),
    3: ("phone", "plan"),
}


def contact_form(tracker, page: str) -> None:
    form = {"name": "Ada Lovelace", "email": "ada@example.com", "message": ""}
    for field_name, value in form.items():
        field_type = "textarea" if field_name == "message" else "text"
        tracker.form_field_interaction(field_name, field_type, bool(value), len(value))

    fields_completed = sum(1 for v in form.values() if v)
    tracker.form_submit_button_click("contact_form", fields_completed)
    tracker.form_submission("contact_form", fields_completed, len(form), {"has_message": bool(form["message"])})
    tracker.feature_usage("contact_form", "submitted", {"page": page})


def validate_step(step: int, values: dict) -> dict:
    errors = {}
    for field_name in MULTI_STEP_FIELDS[step]:
        value = values.get(field_name, "")
        if not value:
            errors[field_name] = "This field is required"
        elif field_name == "email" and not EMAIL_RE.fullmatch(value):
            errors[field_name] = "Please enter a valid email"
    return errors


def multi_step_form(tracker) -> None:
    values = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@"}
    step = 1

    errors = validate_step(step, values)
    for field_name, message in errors.items():
        tracker.form_validation_error(
            field_name, message, "multi_step_form", step, values.get(field_name, ""), "format"
        )
        tracker.rage_click("form_field", "forms", 1)

    values["email"] = "ada@example.com"
    values.update(company="Analytical Engines", role="Engineer", phone="555-0100", plan="pro")
    while step < 3:
        if validate_step(step, values):
            break
        tracker.form_step_navigation("next", step, step + 1, "multi_step_form")
        tracker.user_journey(f"form_step_{step + 1}", "multi_step_form", {"from_step": step})
        step += 1

    all_fields = [f for fields in MULTI_STEP_FIELDS.values() for f in fields]
    completed = sum(1 for f in all_fields if values.get(f))
    tracker.form_submission("multi_step_form", completed, len(all_fields), {"plan": values["plan"]})
    tracker.feature_usage("multi_step_form", "completed", {"steps": 3})
    tracker.user_journey("form_completed", "multi_step_form", {"total_steps": 3})


def main() -> None:
    setup_logging()
    sink = create_sink()
    tracker, platform = create_tracker(sink)

    active_tab = "home"
    load_started = time.monotonic()
    tracker.page_view(active_tab)
    scroll_hook = init_scroll_tracking(tracker, active_tab)
    time_hook = init_time_tracking(tracker, active_tab)
    tracker.user_journey("app_loaded", "initial_load", {"initial_tab": active_tab})
    tracker.page_load_time(round((time.monotonic() - load_started) * 1000, 2), active_tab)

    # Tab navigation
    platform.navigate(platform.get_url() + "forms")
    tracker.tab_navigation(active_tab, "forms")
    tracker.page_view("forms")
    tracker.user_journey("tab_navigation", "navigation", {"from": active_tab, "to": "forms"})
    active_tab = "forms"

    contact_form(tracker, active_tab)
    multi_step_form(tracker)

    # Modal and frustration signals
    tracker.modal_opened("info_modal", active_tab)
    opened_at = time.monotonic()
    tracker.modal_closed("info_modal", "close_button", round((time.monotonic() - opened_at) * 1000))
    tracker.button_click("test_action", "primary", active_tab)
    for click_count in range(1, 6):
        tracker.rage_click("test_button", active_tab, click_count)
    tracker.dead_click("non_interactive_element", active_tab)

    # Identity
    tracker.identify("demo_user_42", {"name": "Ada Lovelace", "email": "ada@example.com"})
    tracker.clear_identity()

    # Scroll to the bottom, then leave
    for scroll_top in range(0, 2400, 300):
        platform.scroll_to(scroll_top)
    platform.unload()
    scroll_hook.dispose()
    time_hook.dispose()

    print_events(sink, "Clarity demo app")
    close_sink(sink)


if __name__ == "__main__":
    main()
