"""Shared data models and types."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Protocol, TypeVar, runtime_checkable

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

M = TypeVar("M")


class EntityKind(str, Enum):
    CONVERSATION = "conversation"
    ROOM = "room"


class Direction(str, Enum):
    """Pagination direction for history batches."""

    BACKWARD = "backward"
    FORWARD = "forward"


@runtime_checkable
class NotificationMessage(Protocol):
    """Read-only view of a message, enough for notification decisions."""

    id: str
    timestamp: datetime
    is_outgoing: bool
    is_delayed: bool
    is_mention: bool


@dataclass(frozen=True)
class Message:
    """A chat message in a conversation or room timeline.

    `id` is assigned by the sender and only unique per sender. `archive_id`
    is the server archive identifier, globally unique when present.
    `is_delayed` marks offline delivery or history replay, `no_store`
    keeps the message out of the persistent cache.
    """

    id: str
    sender: str
    timestamp: datetime
    body: str = ""
    archive_id: str | None = None
    is_outgoing: bool = False
    is_delayed: bool = False
    is_mention: bool = False
    no_store: bool = False


@dataclass(frozen=True)
class NotificationState:
    """Read state of one conversation or room.

    Only replaced through readstate.core.notifications transitions.
    """

    unread_count: int = 0
    mentions_count: int = 0
    last_read_at: datetime | None = None
    last_seen_message_id: str | None = None
    first_new_message_id: str | None = None


@dataclass(frozen=True)
class EntityContext:
    is_active: bool = False
    window_visible: bool = True

    @property
    def sees(self) -> bool:
        """True when the user can perceive a new message right now."""
        return self.is_active and self.window_visible


@dataclass(frozen=True)
class MessageReceivedOptions:
    increment_unread: bool = True
    increment_mentions: bool = False
    # 1:1 offline delivery: delayed means "sent while offline", not replay
    treat_delayed_as_new: bool = False


@dataclass(frozen=True)
class RoomNotifyDecision:
    should_notify: bool
    is_mention: bool


@dataclass(frozen=True)
class BadgeInput:
    conversations_unread_count: int = 0
    rooms_with_unread_count: int = 0
    events_pending_count: int = 0


@dataclass(frozen=True)
class NotifyAllPreference:
    """Room notify-all setting with a session-only and a persisted layer."""

    session_override: bool | None = None
    persisted: bool | None = None

    def resolve(self) -> bool:
        if self.session_override is not None:
            return self.session_override
        return bool(self.persisted)


@dataclass(frozen=True)
class MergeResult(Generic[M]):
    """Outcome of merging a batch into a timeline.

    `merged` is the original list object when the batch held only duplicates.
    """

    merged: list[M]
    new_messages: list[M] = field(default_factory=list)

    @property
    def has_new(self) -> bool:
        return bool(self.new_messages)


@dataclass
class EntityRecord:
    """Per-entity record kept by a store."""

    entity_id: str
    kind: EntityKind
    notification: NotificationState = field(default_factory=NotificationState)
    messages: list[Message] = field(default_factory=list)
    last_message: Message | None = None
    joined: bool = True
    notify_all: NotifyAllPreference = field(default_factory=NotifyAllPreference)
