"""Tests for the sink implementations."""

import json
import logging
import time
from unittest.mock import MagicMock

import httpx
import pytest

from clarity_events.platform import HeadlessPlatform
from clarity_events.sinks import (
    BigQuerySink,
    HttpCollectorSink,
    RecordingSink,
    events_table_ddl,
)
from clarity_events.tracker import ClarityTracker

COLLECTOR_URL = "https://collector.example.com/clarity"


class TestRecordingSink:
    def test_splits_events_and_identifies(self):
        sink = RecordingSink()
        sink("event", "page_view", {"page": "home"})
        sink("identify", "u1", "s1", "/", "Ada")

        assert sink.events == [("page_view", {"page": "home"})]
        assert sink.identifies == [("u1", "s1", "/", "Ada")]
        assert sink.event_names() == ["page_view"]

    def test_rejects_unknown_call(self):
        with pytest.raises(ValueError):
            RecordingSink()("set", "key", "value")


class TestHttpCollectorSink:
    @pytest.fixture
    def received(self):
        return []

    @pytest.fixture
    def http_sink(self, received):
        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(204)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        sink = HttpCollectorSink(COLLECTOR_URL, client=client)
        yield sink
        sink.close()

    def test_posts_event(self, http_sink, received):
        http_sink("event", "page_view", {"page": "home"})
        http_sink.flush()

        assert received == [{"type": "event", "name": "page_view", "data": {"page": "home"}}]

    def test_posts_identify(self, http_sink, received):
        http_sink("identify", None, None, None, None)
        http_sink.flush()

        assert received == [
            {
                "type": "identify",
                "custom_id": None,
                "session_id": None,
                "page_path": None,
                "friendly_name": None,
            }
        ]

    def test_preserves_call_order(self, http_sink, received):
        for i in range(5):
            http_sink("event", f"event_{i}", {})
        http_sink.flush()

        assert [body["name"] for body in received] == [f"event_{i}" for i in range(5)]

    def test_rejects_unknown_call_on_caller(self, http_sink):
        with pytest.raises(ValueError):
            http_sink("set", "key", "value")
        assert http_sink.pending == 0

    def test_tracker_end_to_end(self, http_sink, received):
        tracker = ClarityTracker(HeadlessPlatform(sink=http_sink))
        tracker.initialize()
        tracker.button_click("signup", "primary", "home")
        http_sink.flush()

        assert received[-1]["name"] == "button_click"
        assert received[-1]["data"]["session_id"] == tracker.current_session_id()

    def test_slow_collector_does_not_block_track(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            time.sleep(0.5)
            received.append(json.loads(request.content))
            return httpx.Response(204)

        sink = HttpCollectorSink(COLLECTOR_URL, client=httpx.Client(transport=httpx.MockTransport(handler)))
        tracker = ClarityTracker(HeadlessPlatform(sink=sink))
        tracker.initialize()

        start = time.monotonic()
        event = tracker.time_on_page(5, "home")
        elapsed = time.monotonic() - start

        assert event is not None
        assert elapsed < 0.1
        sink.close()
        assert received[0]["name"] == "time_on_page"
        assert received[0]["data"]["time_spent_seconds"] == 5

    def test_http_error_is_absorbed(self, caplog):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        sink = HttpCollectorSink(COLLECTOR_URL, client=client)

        with caplog.at_level(logging.WARNING, logger="clarity_events.sinks"):
            sink("event", "page_view", {})
            sink.close()

        assert "HTTP 503" in caplog.text

    def test_transport_error_is_absorbed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        sink = HttpCollectorSink(COLLECTOR_URL, client=client)

        sink("event", "page_view", {})
        sink.close()

    def test_calls_after_close_are_dropped(self, http_sink, received):
        http_sink.close()
        http_sink("event", "page_view", {})

        assert received == []
        assert http_sink.pending == 0

    def test_flush_without_calls_is_noop(self, http_sink):
        http_sink.flush()
        assert http_sink.pending == 0

    def test_close_leaves_injected_client_open(self, http_sink):
        http_sink.close()
        assert not http_sink._client.is_closed

    def test_close_owned_client(self):
        sink = HttpCollectorSink(COLLECTOR_URL)
        sink.close()
        assert sink._client.is_closed


class TestBigQuerySink:
    @pytest.fixture
    def mock_client(self):
        client = MagicMock()
        client.insert_rows_json.return_value = []
        return client

    @pytest.fixture
    def bq_sink(self, mock_client):
        sink = BigQuerySink(
            project_id="test-project",
            dataset_id="test_dataset",
            table_id="test_table",
            batch_size=3,
            idle_interval=60.0,
            auto_create_table=False,
            client=mock_client,
        )
        yield sink
        sink.close()

    def test_event_row(self):
        row = BigQuerySink.to_row(
            "event",
            "page_view",
            {"page": "home", "timestamp": "2026-01-01T00:00:00+00:00", "session_id": "s1", "user_id": None},
        )

        assert row["kind"] == "event"
        assert row["event_name"] == "page_view"
        assert row["timestamp"] == "2026-01-01T00:00:00+00:00"
        assert row["session_id"] == "s1"
        assert row["page"] == "home"
        assert row["event_id"]
        assert "user_id" not in row
        assert json.loads(row["payload_json"])["page"] == "home"

    def test_identify_row(self):
        row = BigQuerySink.to_row("identify", "u1", "s1", "/forms", "Ada")

        assert row["kind"] == "identify"
        assert row["user_id"] == "u1"
        assert row["session_id"] == "s1"
        assert row["page"] == "/forms"
        assert row["friendly_name"] == "Ada"
        assert row["timestamp"]
        assert "event_name" not in row

    def test_clear_identity_row(self):
        row = BigQuerySink.to_row("identify", None, None, None, None)

        assert set(row) == {"event_id", "kind", "timestamp"}

    def test_inserts_when_batch_size_reached(self, bq_sink, mock_client):
        for i in range(3):
            bq_sink("event", f"event_{i}", {})
        bq_sink.flush()

        mock_client.insert_rows_json.assert_called_once()
        table_id, rows = mock_client.insert_rows_json.call_args.args
        assert table_id == "test-project.test_dataset.test_table"
        assert [r["event_name"] for r in rows] == ["event_0", "event_1", "event_2"]

    def test_flush_sends_partial_batch(self, bq_sink, mock_client):
        bq_sink("event", "page_view", {})
        bq_sink.flush()

        mock_client.insert_rows_json.assert_called_once()
        assert len(mock_client.insert_rows_json.call_args.args[1]) == 1

    def test_flush_unused_sink_is_noop(self, bq_sink, mock_client):
        bq_sink.flush()
        mock_client.insert_rows_json.assert_not_called()

    def test_failed_insert_is_retried(self, bq_sink, mock_client):
        mock_client.insert_rows_json.side_effect = [Exception("BQ down"), []]

        bq_sink("event", "page_view", {})
        bq_sink.flush()
        bq_sink.flush()

        assert mock_client.insert_rows_json.call_count == 2
        first, second = (c.args[1] for c in mock_client.insert_rows_json.call_args_list)
        assert first == second

    def test_max_pending_drops_oldest(self, mock_client):
        mock_client.insert_rows_json.side_effect = Exception("BQ down")
        sink = BigQuerySink(
            project_id="test",
            batch_size=100,
            idle_interval=60.0,
            max_pending=2,
            auto_create_table=False,
            client=mock_client,
        )

        for i in range(1, 4):
            sink("event", f"event_{i}", {})
        sink.flush()

        mock_client.insert_rows_json.side_effect = None
        mock_client.insert_rows_json.return_value = []
        sink.close()

        rows = mock_client.insert_rows_json.call_args.args[1]
        assert [r["event_name"] for r in rows] == ["event_2", "event_3"]

    def test_rejected_rows_are_logged(self, bq_sink, mock_client, caplog):
        mock_client.insert_rows_json.return_value = [{"index": 0, "errors": ["bad"]}]

        with caplog.at_level(logging.ERROR, logger="clarity_events.sinks"):
            bq_sink("event", "page_view", {})
            bq_sink.flush()

        assert "BigQuery rejected rows" in caplog.text

    def test_slow_insert_does_not_block_caller(self, mock_client):
        def slow_insert(table, rows):
            time.sleep(0.5)
            return []

        mock_client.insert_rows_json.side_effect = slow_insert
        sink = BigQuerySink(project_id="test", batch_size=1, auto_create_table=False, client=mock_client)

        start = time.monotonic()
        sink("event", "page_view", {})
        sink("event", "page_view", {})
        elapsed = time.monotonic() - start

        assert elapsed < 0.1
        sink.close()
        assert mock_client.insert_rows_json.call_count == 2

    def test_creates_table_before_first_insert(self, mock_client):
        sink = BigQuerySink(project_id="test-project", client=mock_client)

        sink("event", "page_view", {})
        sink.close()

        mock_client.create_dataset.assert_called_once_with("test-project.clarity_events", exists_ok=True)
        table = mock_client.create_table.call_args.args[0]
        assert table.clustering_fields == ["session_id", "event_name"]
        mock_client.insert_rows_json.assert_called_once()

    def test_close_flushes_and_releases_client(self, bq_sink, mock_client):
        bq_sink("event", "page_view", {})
        bq_sink.close()

        mock_client.insert_rows_json.assert_called_once()
        mock_client.close.assert_called_once()
        assert bq_sink._worker is None


class TestEventsTableDDL:
    def test_ddl_contains_table(self):
        ddl = events_table_ddl("proj", "ds", "tbl")

        assert "`proj.ds.tbl`" in ddl
        assert "event_id STRING NOT NULL" in ddl
        assert "event_name STRING," in ddl
        assert "payload_json JSON" in ddl
        assert "PARTITION BY DATE(timestamp)" in ddl
        assert "CLUSTER BY session_id, event_name" in ddl
