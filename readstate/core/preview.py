"""Last-message preview comparison shared by conversations and rooms."""

from readstate.models import EPOCH


def _timestamp(msg):
    if msg is None or getattr(msg, "timestamp", None) is None:
        return EPOCH
    return msg.timestamp


def should_update_last_message(existing, candidate) -> bool:
    """True only if `candidate` is strictly newer than the current preview.

    Keeps older pages from backward pagination from overwriting a newer
    preview.
    """
    return _timestamp(candidate) > _timestamp(existing)
