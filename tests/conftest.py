from datetime import datetime, timedelta, timezone

import pytest

from readstate import config
from readstate.models import Message

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def readstate_home(monkeypatch, tmp_path):
    """Isolated READSTATE_HOME per test; config is re-read from it."""
    home = tmp_path / "home"
    monkeypatch.setenv("READSTATE_HOME", str(home))
    config.clear_cache()
    yield home
    config.clear_cache()


@pytest.fixture
def at():
    """Seconds offset from a fixed UTC instant."""

    def _at(seconds: float) -> datetime:
        return T0 + timedelta(seconds=seconds)

    return _at


@pytest.fixture
def msg(at):
    """Message factory: msg("m1", seconds=5, is_outgoing=True)."""

    def _msg(id, sender="alice", seconds=0, **kwargs) -> Message:
        return Message(id=id, sender=sender, timestamp=at(seconds), **kwargs)

    return _msg
