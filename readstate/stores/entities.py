"""Entity state holders for conversations and rooms.

A store owns one EntityRecord per entity and routes every event through the
pure engines in readstate.core. It bumps `version` on each effective change
so derived views can be memoized. Calls for one entity must be serialized
by the host; stores take no locks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone

from readstate import config
from readstate.core import notifications, preview, timeline
from readstate.core.selectors import VersionedMemo
from readstate.errors import ConfigError, EntityNotFoundError
from readstate.models import (
    EPOCH,
    BadgeInput,
    Direction,
    EntityContext,
    EntityKind,
    EntityRecord,
    MergeResult,
    Message,
    MessageReceivedOptions,
    NotificationState,
    NotifyAllPreference,
    RoomNotifyDecision,
)
from readstate.stores.cache import MessageCache

log = logging.getLogger(__name__)


class EntityStore:
    kind: EntityKind

    def __init__(
        self,
        cache: MessageCache | None = None,
        max_messages: int | None = None,
        key_fn: Callable[[Message], list[str]] = timeline.message_keys,
        clock: Callable[[], datetime] | None = None,
    ):
        self._records: dict[str, EntityRecord] = {}
        self._cache = cache
        if max_messages is None:
            max_messages = config.max_messages(self.kind.value)
        if max_messages < 1:
            raise ConfigError(f"max_messages must be a positive integer, got {max_messages}")
        self._max_messages = max_messages
        self._key_fn = key_fn
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.active_id: str | None = None
        self.window_visible = True
        self.version = 0
        self._sorted = VersionedMemo(self._sort_entities)

    def _touch(self) -> None:
        self.version += 1

    def get(self, entity_id: str) -> EntityRecord:
        record = self._records.get(entity_id)
        if record is None:
            raise EntityNotFoundError(f"{self.kind.value.capitalize()} '{entity_id}' not found")
        return record

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._records

    def entity_ids(self) -> list[str]:
        return list(self._records)

    def records(self) -> list[EntityRecord]:
        return list(self._records.values())

    def context(self, entity_id: str) -> EntityContext:
        return EntityContext(
            is_active=self.active_id == entity_id, window_visible=self.window_visible
        )

    def add_entity(self, entity_id: str) -> EntityRecord:
        if entity_id in self._records:
            return self._records[entity_id]
        state = NotificationState()
        if self._cache is not None:
            last_seen, last_read_at = self._cache.load_read_position(entity_id)
            state = NotificationState(last_seen_message_id=last_seen, last_read_at=last_read_at)
        record = EntityRecord(entity_id=entity_id, kind=self.kind, notification=state)
        self._records[entity_id] = record
        self._touch()
        log.debug(f"Tracking {self.kind.value} {entity_id}")
        return record

    def remove_entity(self, entity_id: str) -> None:
        self.get(entity_id)
        del self._records[entity_id]
        if self.active_id == entity_id:
            self.active_id = None
        if self._cache is not None:
            self._cache.forget(entity_id)
        self._touch()
        log.debug(f"Removed {self.kind.value} {entity_id}")

    def _apply(self, record: EntityRecord, state: NotificationState) -> bool:
        if state is record.notification:
            return False
        previous = record.notification
        record.notification = state
        self._touch()
        if self._cache is not None and (
            state.last_seen_message_id != previous.last_seen_message_id
            or state.last_read_at != previous.last_read_at
        ):
            self._cache.save_read_position(
                record.entity_id, state.last_seen_message_id, state.last_read_at
            )
        return True

    def set_active(self, entity_id: str | None) -> None:
        if entity_id == self.active_id:
            return
        if entity_id is not None:
            self.get(entity_id)
        previous = self._records.get(self.active_id) if self.active_id else None
        if previous is not None:
            self._apply(previous, notifications.on_deactivate(previous.notification))
        self.active_id = entity_id
        if entity_id is not None:
            record = self._records[entity_id]
            self._apply(record, notifications.on_activate(record.notification, record.messages))
        self._touch()

    def set_window_visible(self, visible: bool) -> None:
        became_visible = visible and not self.window_visible
        self.window_visible = visible
        if not became_visible or self.active_id is None:
            return
        record = self.get(self.active_id)
        last_ts = record.messages[-1].timestamp if record.messages else None
        self._apply(
            record, notifications.on_window_became_visible(record.notification, True, last_ts)
        )

    def _options(self, message: Message) -> MessageReceivedOptions:
        return MessageReceivedOptions()

    def _persist(self, entity_id: str, messages: Iterable[Message]) -> None:
        if self._cache is None:
            return
        self._cache.save_messages(entity_id, [m for m in messages if not m.no_store])

    def _update_preview(self, record: EntityRecord, candidate: Message | None) -> None:
        if candidate is not None and preview.should_update_last_message(
            record.last_message, candidate
        ):
            record.last_message = candidate

    def add_message(self, entity_id: str, message: Message) -> bool:
        """Live delivery. Returns False when the message was a duplicate."""
        record = self.get(entity_id)
        result = timeline.append_message(
            record.messages, message, self._key_fn, self._max_messages
        )
        if not result.has_new:
            log.debug(f"Dropped duplicate {message.id} from {message.sender} in {entity_id}")
            return False

        record.messages = result.merged
        self._touch()
        state = notifications.on_message_received(
            record.notification, message, self.context(entity_id), self._options(message)
        )
        self._apply(record, state)
        self._persist(entity_id, result.new_messages)
        self._update_preview(record, message)
        return True

    def merge_history(
        self,
        entity_id: str,
        messages: Iterable[Message],
        direction: Direction = Direction.BACKWARD,
        notify: bool = False,
        persist: bool = True,
    ) -> MergeResult[Message]:
        """Merge a history page. With `notify`, new messages also update read state."""
        record = self.get(entity_id)
        result = timeline.merge_history(
            record.messages, messages, direction, self._key_fn, self._max_messages
        )
        if not result.has_new:
            return result

        record.messages = result.merged
        self._touch()
        if notify:
            ctx = self.context(entity_id)
            state = record.notification
            for message in timeline.sort_messages_by_timestamp(result.new_messages):
                state = notifications.on_message_received(
                    state, message, ctx, self._options(message)
                )
            self._apply(record, state)
        if persist:
            self._persist(entity_id, result.new_messages)
        if result.merged:
            self._update_preview(record, result.merged[-1])
        log.debug(
            f"Merged {len(result.new_messages)} {Direction(direction).value} messages into {entity_id}"
        )
        return result

    def load_from_cache(
        self,
        entity_id: str,
        before: datetime | None = None,
        after: datetime | None = None,
        limit: int = 100,
    ) -> MergeResult[Message]:
        record = self.get(entity_id)
        if self._cache is None:
            return MergeResult(merged=record.messages, new_messages=[])
        if before is None and after is None:
            batch = self._cache.latest(entity_id, limit)
        else:
            batch = self._cache.query(entity_id, before=before, after=after, limit=limit)
        direction = Direction.BACKWARD if before is not None and after is None else Direction.FORWARD
        return self.merge_history(entity_id, batch, direction, persist=False)

    def mark_as_read(self, entity_id: str, timestamp: datetime | None = None) -> bool:
        record = self.get(entity_id)
        return self._apply(
            record, notifications.on_mark_as_read(record.notification, timestamp or self._clock())
        )

    def message_seen(self, entity_id: str, message_id: str) -> bool:
        record = self.get(entity_id)
        return self._apply(
            record,
            notifications.on_message_seen(record.notification, message_id, record.messages),
        )

    def clear_marker(self, entity_id: str) -> bool:
        record = self.get(entity_id)
        return self._apply(record, notifications.on_clear_marker(record.notification))

    def clear_history(self, entity_id: str) -> None:
        record = self.get(entity_id)
        record.messages = []
        record.last_message = None
        if self._cache is not None:
            self._cache.clear(entity_id)
        self._touch()

    def should_notify(self, entity_id: str, message: Message, now: datetime | None = None) -> bool:
        raise NotImplementedError

    def _counted(self) -> Iterable[EntityRecord]:
        return self._records.values()

    def total_unread_count(self) -> int:
        return sum(r.notification.unread_count for r in self._counted())

    def total_mentions_count(self) -> int:
        return sum(r.notification.mentions_count for r in self._counted())

    def _sort_entities(self) -> list[EntityRecord]:
        def last_activity(record: EntityRecord) -> datetime:
            return record.last_message.timestamp if record.last_message else EPOCH

        return sorted(self._records.values(), key=last_activity, reverse=True)

    def sorted_entities(self) -> list[EntityRecord]:
        """Entities by most recent activity; same list object until the next change."""
        return self._sorted.get(self.version)


class ConversationStore(EntityStore):
    kind = EntityKind.CONVERSATION

    def _options(self, message: Message) -> MessageReceivedOptions:
        # delayed 1:1 messages arrived while offline; they are new to the user
        return MessageReceivedOptions(treat_delayed_as_new=True)

    def should_notify(self, entity_id: str, message: Message, now: datetime | None = None) -> bool:
        return notifications.should_notify_conversation(
            message, self.context(entity_id), now or self._clock()
        )

    def conversations_with_unread_count(self) -> int:
        return sum(1 for r in self._records.values() if r.notification.unread_count > 0)


class RoomStore(EntityStore):
    kind = EntityKind.ROOM

    def _options(self, message: Message) -> MessageReceivedOptions:
        return MessageReceivedOptions(increment_mentions=message.is_mention)

    def _counted(self) -> Iterable[EntityRecord]:
        return (r for r in self._records.values() if r.joined)

    def set_joined(self, room_id: str, joined: bool) -> None:
        record = self.get(room_id)
        if record.joined == joined:
            return
        record.joined = joined
        if not joined:
            # leaving resets counts and the session-only notify-all override
            state = record.notification
            self._apply(record, notifications.on_mark_as_read(state, state.last_read_at or EPOCH))
            record.notify_all = replace(record.notify_all, session_override=None)
        self._touch()

    def set_notify_all(self, room_id: str, notify_all: bool, persistent: bool = False) -> None:
        record = self.get(room_id)
        if persistent:
            pref = NotifyAllPreference(session_override=None, persisted=notify_all)
        else:
            pref = replace(record.notify_all, session_override=notify_all)
        if pref != record.notify_all:
            record.notify_all = pref
            self._touch()

    def notify_room(
        self, room_id: str, message: Message, now: datetime | None = None
    ) -> RoomNotifyDecision:
        record = self.get(room_id)
        return notifications.should_notify_room(
            message, self.context(room_id), record.notify_all.resolve(), now or self._clock()
        )

    def should_notify(self, entity_id: str, message: Message, now: datetime | None = None) -> bool:
        return self.notify_room(entity_id, message, now).should_notify

    def rooms_with_unread_count(self) -> int:
        """Rooms showing a badge: any mention, or notify-all with unread."""
        count = 0
        for record in self._counted():
            state = record.notification
            if state.mentions_count > 0 or (
                record.notify_all.resolve() and state.unread_count > 0
            ):
                count += 1
        return count

    def total_notifiable_unread_count(self) -> int:
        return sum(
            r.notification.unread_count for r in self._counted() if r.notify_all.resolve()
        )


def badge_count(
    conversations: ConversationStore, rooms: RoomStore, events_pending: int = 0
) -> int:
    return notifications.compute_badge_count(
        BadgeInput(
            conversations_unread_count=conversations.conversations_with_unread_count(),
            rooms_with_unread_count=rooms.rooms_with_unread_count(),
            events_pending_count=events_pending,
        )
    )
