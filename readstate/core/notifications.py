"""Notification state machine: pure transitions over NotificationState.

Every transition takes a state and returns the next one. When nothing
changes the very same object comes back, so holders can skip publishing
with an `is` check. Conversations and rooms share these functions.
"""

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from readstate.models import (
    EPOCH,
    BadgeInput,
    EntityContext,
    MessageReceivedOptions,
    NotificationMessage,
    NotificationState,
    RoomNotifyDecision,
)

# Messages older than this never trigger a notification.
FRESHNESS_WINDOW = timedelta(minutes=5)

_DEFAULT_OPTIONS = MessageReceivedOptions()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _evolve(state: NotificationState, **changes) -> NotificationState:
    """Apply changes, returning `state` itself when every value already matches."""
    if all(getattr(state, name) == value for name, value in changes.items()):
        return state
    return replace(state, **changes)


def _is_incoming_live(msg: NotificationMessage) -> bool:
    return not msg.is_outgoing and not msg.is_delayed


def _first_incoming_after(
    messages: Sequence[NotificationMessage], read_at: datetime
) -> str | None:
    for msg in messages:
        if msg.timestamp > read_at and _is_incoming_live(msg):
            return msg.id
    return None


def _index_of(messages: Sequence, message_id: str) -> int:
    for idx, msg in enumerate(messages):
        if msg.id == message_id:
            return idx
    return -1


def initial_state() -> NotificationState:
    return NotificationState()


def on_message_received(
    state: NotificationState,
    msg: NotificationMessage,
    ctx: EntityContext,
    options: MessageReceivedOptions | None = None,
) -> NotificationState:
    """Next state after a message lands in the entity.

    - outgoing: the user has seen everything before it; counts and marker clear
    - delayed (unless treat_delayed_as_new): history replay, state untouched
    - seen by the user: counts stay zero, marker is not created retroactively
    - unseen: counts grow; the marker is set by the first arrival while the
      entity is open in a hidden window
    """
    opts = options or _DEFAULT_OPTIONS

    if msg.is_outgoing:
        return _evolve(
            state,
            unread_count=0,
            mentions_count=0,
            last_read_at=msg.timestamp,
            first_new_message_id=None,
        )

    if msg.is_delayed and not opts.treat_delayed_as_new:
        return state

    if ctx.sees:
        return _evolve(state, unread_count=0, mentions_count=0, last_read_at=msg.timestamp)

    unread = state.unread_count + 1 if opts.increment_unread else state.unread_count
    mentions = state.mentions_count + 1 if opts.increment_mentions else state.mentions_count
    last_read_at = EPOCH if state.last_read_at is None else state.last_read_at

    marker = state.first_new_message_id
    if ctx.is_active and not ctx.window_visible and not marker:
        marker = msg.id

    return _evolve(
        state,
        unread_count=unread,
        mentions_count=mentions,
        last_read_at=last_read_at,
        first_new_message_id=marker,
    )


def on_activate(
    state: NotificationState, messages: Sequence[NotificationMessage]
) -> NotificationState:
    """Next state when the user opens an entity.

    Places the "new messages" marker at the first incoming, non-delayed
    message after the last seen one, then marks everything read. When the
    last seen id fell out of the loaded window, the marker is found by
    timestamp against last_read_at and the stale id is moved to the last
    loaded message so the next activation does not repeat the search.
    """
    marker: str | None = None
    last_seen = state.last_seen_message_id

    if state.last_seen_message_id and messages:
        seen_idx = _index_of(messages, state.last_seen_message_id)
        if seen_idx != -1:
            for msg in messages[seen_idx + 1 :]:
                if _is_incoming_live(msg):
                    marker = msg.id
                    break
        else:
            if state.last_read_at is not None:
                marker = _first_incoming_after(messages, state.last_read_at)
            elif state.unread_count > 0:
                marker = next((m.id for m in messages if _is_incoming_live(m)), None)
            last_seen = messages[-1].id
    elif not state.last_seen_message_id and state.last_read_at is not None:
        marker = _first_incoming_after(messages, state.last_read_at)

    if messages:
        last_read_at = messages[-1].timestamp
    elif state.last_read_at is not None:
        last_read_at = state.last_read_at
    else:
        last_read_at = _now()

    return _evolve(
        state,
        unread_count=0,
        mentions_count=0,
        last_read_at=last_read_at,
        last_seen_message_id=last_seen,
        first_new_message_id=marker,
    )


def on_deactivate(state: NotificationState) -> NotificationState:
    if not state.first_new_message_id:
        return state
    return replace(state, first_new_message_id=None)


def on_mark_as_read(
    state: NotificationState, last_message_timestamp: datetime | None = None
) -> NotificationState:
    """Explicit mark-as-read. The marker keeps its own lifecycle."""
    last_read_at = last_message_timestamp or _now()
    existing = state.last_read_at if state.last_read_at is not None else EPOCH
    if state.unread_count == 0 and state.mentions_count == 0 and existing == last_read_at:
        return state
    return replace(state, unread_count=0, mentions_count=0, last_read_at=last_read_at)


def on_clear_marker(state: NotificationState) -> NotificationState:
    if not state.first_new_message_id:
        return state
    return replace(state, first_new_message_id=None)


def on_window_became_visible(
    state: NotificationState,
    is_active: bool,
    last_message_timestamp: datetime | None = None,
) -> NotificationState:
    """The window regained visibility; an active entity counts as read."""
    if not is_active:
        return state
    if state.unread_count == 0 and state.mentions_count == 0:
        return state
    last_read_at = last_message_timestamp or state.last_read_at or _now()
    return replace(state, unread_count=0, mentions_count=0, last_read_at=last_read_at)


def on_message_seen(
    state: NotificationState, message_id: str, messages: Sequence
) -> NotificationState:
    """Advance last_seen_message_id, never backwards.

    `messages` gives the ordering. An id missing from it has an unknown
    position, which can never be proven later, so the call is a no-op.
    """
    if not state.last_seen_message_id:
        return replace(state, last_seen_message_id=message_id)

    if message_id == state.last_seen_message_id:
        return state

    current_idx = _index_of(messages, state.last_seen_message_id)
    new_idx = _index_of(messages, message_id)
    if new_idx > current_idx:
        return replace(state, last_seen_message_id=message_id)
    return state


def _is_fresh(msg: NotificationMessage, now: datetime | None) -> bool:
    return (now or _now()) - msg.timestamp <= FRESHNESS_WINDOW


def should_notify_conversation(
    msg: NotificationMessage, ctx: EntityContext, now: datetime | None = None
) -> bool:
    if not _is_incoming_live(msg):
        return False
    if not _is_fresh(msg, now):
        return False
    return not ctx.sees


def should_notify_room(
    msg: NotificationMessage,
    ctx: EntityContext,
    notify_all: bool,
    now: datetime | None = None,
) -> RoomNotifyDecision:
    """Room gating: mentions always qualify, other messages only with notify-all."""
    is_mention = bool(getattr(msg, "is_mention", False))
    if not _is_incoming_live(msg) or not _is_fresh(msg, now) or ctx.sees:
        return RoomNotifyDecision(should_notify=False, is_mention=is_mention)
    return RoomNotifyDecision(should_notify=is_mention or notify_all, is_mention=is_mention)


def compute_badge_count(sources: BadgeInput) -> int:
    # Each source is already exact; no focus reconciliation needed here.
    return (
        sources.conversations_unread_count
        + sources.rooms_with_unread_count
        + sources.events_pending_count
    )
