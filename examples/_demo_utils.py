"""Shared demo infrastructure for Clarity Events examples.

Provides:
- Shared config read from the environment (collector URL, BigQuery project)
- create_sink() — HTTP collector, BigQuery, or in-memory recording sink
- create_tracker() — a ClarityTracker on a HeadlessPlatform, initialized
- print_events() — formats what a RecordingSink received

All demo scripts import from here to avoid code duplication.
"""

from __future__ import annotations

import logging
import os

from clarity_events import (
    BigQuerySink,
    ClarityTracker,
    HeadlessPlatform,
    HttpCollectorSink,
    JsonFileStorage,
    RecordingSink,
)

# ======================================================================
# Configuration — leave unset to record in memory only
# ======================================================================

COLLECTOR_URL = os.environ.get("CLARITY_COLLECTOR_URL", "")
PROJECT_ID = os.environ.get("GCP_PROJECT_ID", "")
STORAGE_PATH = os.environ.get("CLARITY_STORAGE_PATH", ".clarity_demo/storage.json")
DEMO_URL = "https://clarity-demo.local/"


def setup_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("CLARITY_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_sink():
    """Pick a sink from the environment."""
    if COLLECTOR_URL:
        return HttpCollectorSink(COLLECTOR_URL)
    if PROJECT_ID:
        return BigQuerySink(project_id=PROJECT_ID, batch_size=1)
    return RecordingSink()


def create_tracker(sink, document_height: float = 3000) -> tuple[ClarityTracker, HeadlessPlatform]:
    """Create and initialize a tracker on a headless host."""
    platform = HeadlessPlatform(
        sink=sink,
        storage=JsonFileStorage(STORAGE_PATH),
        url=DEMO_URL,
        document_height=document_height,
    )
    tracker = ClarityTracker(platform, custom_metadata={"app": "clarity_demo"})
    tracker.initialize()
    return tracker, platform


def close_sink(sink) -> None:
    close = getattr(sink, "close", None)
    if close is not None:
        close()


def print_events(sink, label: str = "Recorded events") -> None:
    if not isinstance(sink, RecordingSink):
        return

    print("\n" + "=" * 70)
    print(f"  {label}")
    print("=" * 70)
    for call in sink.calls:
        if call[0] == "identify":
            print(f"  identify      id={call[1]} session={call[2]} page={call[3]} name={call[4]}")
            continue
        _, name, data = call
        extras = {
            k: v
            for k, v in data.items()
            if k not in ("timestamp", "user_agent", "screen_resolution", "viewport", "session_id", "app")
        }
        print(f"  {name:<26} {extras}")
    print(f"\n  Total: {len(sink.calls)} sink calls")
