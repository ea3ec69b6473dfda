from datetime import timedelta, timezone

import pytest

from readstate.errors import CacheError
from readstate.models import Message
from readstate.stores.cache import MessageCache


@pytest.fixture
def cache(tmp_path):
    cache = MessageCache(tmp_path / "cache" / "cache.db")
    yield cache
    cache.close()


def ids(messages):
    return [m.id for m in messages]


def test_save_is_idempotent_per_sender_and_id(cache, msg):
    batch = [msg("m1", seconds=1), msg("m2", seconds=2), msg("m1", sender="bob", seconds=3)]
    assert cache.save_messages("alice", batch) == 3
    assert cache.save_messages("alice", batch) == 0
    assert cache.count("alice") == 3


def test_no_store_messages_are_skipped(cache, msg):
    assert cache.save_messages("alice", [msg("m1", no_store=True)]) == 0
    assert cache.count("alice") == 0


def test_round_trip_preserves_fields(cache, msg, at):
    original = msg(
        "m1", sender="bob", seconds=5, body="hi", archive_id="A1", is_outgoing=True, is_mention=True
    )
    cache.save_messages("lobby", [original])
    [loaded] = cache.latest("lobby")
    assert loaded == original
    assert loaded.timestamp == at(5)


def test_timestamps_are_normalized_to_utc(cache, msg, at):
    plus_two = timezone(timedelta(hours=2))
    local = msg("late", seconds=0)
    shifted = Message(id="early", sender="alice", timestamp=at(-10).astimezone(plus_two))
    cache.save_messages("alice", [local, shifted])
    assert ids(cache.latest("alice")) == ["early", "late"]


def test_query_before_returns_newest_older_page(cache, msg, at):
    cache.save_messages("alice", [msg(f"m{i}", seconds=i) for i in range(10)])
    page = cache.query("alice", before=at(6), limit=3)
    assert ids(page) == ["m3", "m4", "m5"]


def test_query_after_returns_oldest_newer_page(cache, msg, at):
    cache.save_messages("alice", [msg(f"m{i}", seconds=i) for i in range(10)])
    assert ids(cache.query("alice", after=at(6), limit=2)) == ["m7", "m8"]
    assert ids(cache.query("alice", before=at(5), after=at(1))) == ["m2", "m3", "m4"]


def test_latest_is_ascending(cache, msg):
    cache.save_messages("alice", [msg(f"m{i}", seconds=i) for i in range(5)])
    assert ids(cache.latest("alice", limit=2)) == ["m3", "m4"]


def test_archive_id_duplicates_are_skipped(cache, msg):
    first = msg("m1", archive_id="A1")
    relayed = msg("x9", sender="relay", seconds=1, archive_id="A1")
    assert cache.save_messages("alice", [first, relayed]) == 1
    assert ids(cache.latest("alice")) == ["m1"]

    assert cache.save_messages("bob", [msg("m1", archive_id="A1")]) == 1
    assert cache.save_messages("alice", [msg("m2", seconds=2), msg("m3", seconds=3)]) == 2


def test_entities_are_isolated(cache, msg):
    cache.save_messages("alice", [msg("m1")])
    assert cache.latest("bob") == []


def test_read_position_round_trip(cache, at):
    assert cache.load_read_position("alice") == (None, None)
    cache.save_read_position("alice", "m1", at(1))
    cache.save_read_position("alice", "m2", at(2))
    assert cache.load_read_position("alice") == ("m2", at(2))


def test_clear_keeps_read_position_and_forget_drops_it(cache, msg, at):
    cache.save_messages("alice", [msg("m1")])
    cache.save_read_position("alice", "m1", at(0))

    cache.clear("alice")
    assert cache.count("alice") == 0
    assert cache.load_read_position("alice") == ("m1", at(0))

    cache.forget("alice")
    assert cache.load_read_position("alice") == (None, None)


def test_closed_cache_raises_cache_error(tmp_path):
    cache = MessageCache(tmp_path / "cache.db")
    cache.close()
    with pytest.raises(CacheError):
        cache.count("alice")


def test_in_memory_cache(msg):
    cache = MessageCache(":memory:")
    cache.save_messages("alice", [msg("m1")])
    assert cache.count("alice") == 1
    cache.close()
