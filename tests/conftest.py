import pytest

from clarity_events.platform import HeadlessPlatform, MemoryStorage
from clarity_events.sinks import RecordingSink
from clarity_events.tracker import ClarityTracker


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def platform(sink, storage):
    return HeadlessPlatform(
        sink=sink,
        storage=storage,
        url="https://demo.example.com/forms",
        referrer="https://search.example.com/",
        user_agent="TestAgent/1.0",
        screen_size=(1920, 1080),
        viewport_size=(1280, 720),
        document_height=2720,
    )


@pytest.fixture
def tracker(platform):
    t = ClarityTracker(platform)
    t.initialize()
    return t
