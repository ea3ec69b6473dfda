from . import notifications, preview, selectors, timeline, viewport
from .notifications import (
    FRESHNESS_WINDOW,
    compute_badge_count,
    initial_state,
    on_activate,
    on_clear_marker,
    on_deactivate,
    on_mark_as_read,
    on_message_received,
    on_message_seen,
    on_window_became_visible,
    should_notify_conversation,
    should_notify_room,
)
from .timeline import (
    append_message,
    build_message_key_set,
    is_message_duplicate,
    merge_and_process_messages,
    merge_history,
    message_keys,
    prepend_older_messages,
    sort_messages_by_timestamp,
    trim_messages,
)
from .viewport import ViewportReadTracker

__all__ = [
    "FRESHNESS_WINDOW",
    "ViewportReadTracker",
    "append_message",
    "build_message_key_set",
    "compute_badge_count",
    "initial_state",
    "is_message_duplicate",
    "merge_and_process_messages",
    "merge_history",
    "message_keys",
    "notifications",
    "on_activate",
    "on_clear_marker",
    "on_deactivate",
    "on_mark_as_read",
    "on_message_received",
    "on_message_seen",
    "on_window_became_visible",
    "prepend_older_messages",
    "preview",
    "selectors",
    "should_notify_conversation",
    "should_notify_room",
    "sort_messages_by_timestamp",
    "timeline",
    "trim_messages",
    "viewport",
]
