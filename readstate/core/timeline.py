"""Timeline merging: dedup, ordering and bounding of message lists.

Batches come from live delivery, the local cache and paginated history;
all of them go through the same functions. Identity is caller-defined via
a key function so conversations and rooms can differ.
"""

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

from readstate.models import Direction, MergeResult

M = TypeVar("M")

KeyFn = Callable[[M], list[str]]


def message_keys(msg) -> list[str]:
    """Dedup keys: the archive id if present, and always sender + local id.

    A local id is only unique per sender, so it is never used alone.
    """
    keys = []
    if getattr(msg, "archive_id", None):
        keys.append(f"archive:{msg.archive_id}")
    keys.append(f"from:{msg.sender}:id:{msg.id}")
    return keys


def build_message_key_set(messages: Iterable[M], key_fn: KeyFn) -> set[str]:
    key_set: set[str] = set()
    for msg in messages:
        key_set.update(key_fn(msg))
    return key_set


def is_message_duplicate(msg: M, key_set: set[str], key_fn: KeyFn) -> bool:
    return any(key in key_set for key in key_fn(msg))


def sort_messages_by_timestamp(messages: Iterable[M]) -> list[M]:
    # sorted() is stable: same-instant messages keep their relative order
    return sorted(messages, key=lambda m: m.timestamp)


def trim_messages(messages: list[M], max_count: int) -> list[M]:
    """Keep the newest max_count entries; older ones stay in the cache."""
    if max_count < 1:
        raise ValueError(f"max_count must be positive, got {max_count}")
    if len(messages) <= max_count:
        return messages
    return messages[-max_count:]


def _filter_new(existing: Sequence[M], incoming: Iterable[M], key_fn: KeyFn) -> list[M]:
    key_set = build_message_key_set(existing, key_fn)
    fresh = []
    for msg in incoming:
        if is_message_duplicate(msg, key_set, key_fn):
            continue
        # first occurrence in the batch wins
        key_set.update(key_fn(msg))
        fresh.append(msg)
    return fresh


def prepend_older_messages(
    existing: list[M], incoming: Iterable[M], key_fn: KeyFn, max_count: int
) -> MergeResult[M]:
    """Merge a batch known to be older than `existing` (backward pagination).

    Only the deduplicated batch is sorted; `existing` is already ordered.
    """
    new_messages = _filter_new(existing, incoming, key_fn)
    if not new_messages:
        return MergeResult(merged=existing, new_messages=[])
    merged = sort_messages_by_timestamp(new_messages) + list(existing)
    return MergeResult(merged=trim_messages(merged, max_count), new_messages=new_messages)


def merge_and_process_messages(
    existing: list[M], incoming: Iterable[M], key_fn: KeyFn, max_count: int
) -> MergeResult[M]:
    """Merge a batch that may interleave with `existing` (forward catch-up, cache load)."""
    new_messages = _filter_new(existing, incoming, key_fn)
    if not new_messages:
        return MergeResult(merged=existing, new_messages=[])
    merged = sort_messages_by_timestamp([*existing, *new_messages])
    return MergeResult(merged=trim_messages(merged, max_count), new_messages=new_messages)


def append_message(
    existing: list[M], msg: M, key_fn: KeyFn, max_count: int
) -> MergeResult[M]:
    """Live delivery of a single message."""
    if existing and msg.timestamp < existing[-1].timestamp:
        return merge_and_process_messages(existing, [msg], key_fn, max_count)
    if is_message_duplicate(msg, build_message_key_set(existing, key_fn), key_fn):
        return MergeResult(merged=existing, new_messages=[])
    merged = trim_messages([*existing, msg], max_count)
    return MergeResult(merged=merged, new_messages=[msg])


def merge_history(
    existing: list[M],
    incoming: Iterable[M],
    direction: Direction,
    key_fn: KeyFn,
    max_count: int,
) -> MergeResult[M]:
    if Direction(direction) is Direction.BACKWARD:
        return prepend_older_messages(existing, incoming, key_fn, max_count)
    return merge_and_process_messages(existing, incoming, key_fn, max_count)
