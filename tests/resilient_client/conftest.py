from __future__ import annotations

import pytest

from tests.resilient_client.support.fakes import FakeClock, FakeLogger, RecordingListener


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a manually advanced clock starting at 2020-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def recording_listener() -> RecordingListener:
    """Provide a breaker listener that records every event."""
    return RecordingListener()
