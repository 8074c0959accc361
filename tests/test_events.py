"""Tests for the Clarity event data model."""

import pytest

from clarity_events.errors import InvalidEventError
from clarity_events.events import (
    ClarityEvent,
    ClarityEventType,
    Identity,
    IdentityKind,
    milestone_band,
    validate_payload,
)


class TestClarityEvent:
    def test_sink_payload_carries_timestamp(self):
        event = ClarityEvent(name="page_view", payload={"page": "home"})
        data = event.to_sink_payload()

        assert data["page"] == "home"
        assert data["timestamp"] == event.timestamp
        assert "timestamp" not in event.payload

    def test_event_id_is_unique(self):
        assert ClarityEvent(name="a").event_id != ClarityEvent(name="a").event_id


class TestIdentity:
    def test_friendly_name_prefers_name(self):
        identity = Identity("u1", attributes={"name": "Ada", "email": "ada@example.com"})
        assert identity.friendly_name == "Ada"

    def test_friendly_name_falls_back(self):
        assert Identity("u1", attributes={"email": "ada@example.com"}).friendly_name == "ada@example.com"
        assert Identity("u1", attributes={"name": ""}).friendly_name == "u1"

    def test_default_kind(self):
        assert Identity("u1").kind == IdentityKind.IDENTIFIED


class TestValidatePayload:
    def test_accepts_json_values(self):
        payload = {
            "s": "x",
            "i": 1,
            "f": 1.5,
            "b": True,
            "n": None,
            "nested": {"list": [1, "two", {"three": 3}]},
        }
        assert validate_payload(payload) == payload

    def test_tuples_become_lists(self):
        assert validate_payload({"t": (1, 2)}) == {"t": [1, 2]}

    def test_none_is_empty(self):
        assert validate_payload(None) == {}

    def test_rejects_non_string_keys(self):
        with pytest.raises(InvalidEventError):
            validate_payload({1: "x"})

    def test_rejects_nested_non_json(self):
        with pytest.raises(InvalidEventError, match=r"payload\.outer\.bad"):
            validate_payload({"outer": {"bad": {1, 2}}})

    def test_rejects_non_mapping(self):
        with pytest.raises(InvalidEventError):
            validate_payload(["not", "a", "mapping"])

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_rejects_non_finite_numbers(self, bad):
        with pytest.raises(InvalidEventError, match=r"payload\.metrics\.load_ms"):
            validate_payload({"metrics": {"load_ms": bad}})

    def test_rejects_non_finite_in_list(self):
        with pytest.raises(InvalidEventError):
            validate_payload({"samples": [1.5, float("nan")]})

    def test_accepts_finite_numbers(self):
        assert validate_payload({"zero": 0.0, "big": 1e308, "flag": True}) == {
            "zero": 0.0,
            "big": 1e308,
            "flag": True,
        }

    def test_invalid_event_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_payload({"x": object()})


class TestMilestoneBand:
    @pytest.mark.parametrize(
        "percent,band",
        [(0, None), (24, None), (25, 25), (49, 25), (50, 50), (74, 50), (75, 75), (99, 75), (100, 100), (130, 100)],
    )
    def test_bands(self, percent, band):
        assert milestone_band(percent) == band


class TestEnums:
    def test_event_type_values(self):
        assert ClarityEventType.PAGE_VIEW.value == "page_view"
        assert ClarityEventType.TIME_ON_PAGE.value == "time_on_page"
        assert ClarityEventType.USER_IDENTIFIED.value == "user_identified"

    def test_identity_kind_values(self):
        assert IdentityKind.RETURNING.value == "returning"
        assert IdentityKind.IDENTIFIED.value == "identified"
