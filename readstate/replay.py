"""Replay scripted event sequences through the conversation and room stores.

A script is a YAML mapping:

    now: 2024-05-01T12:00:00Z     # clock used for freshness checks
    events:
      - add_conversation: alice
      - add_room: lobby
      - message: {entity: alice, id: m1, sender: alice, at: 2024-05-01T11:59:00Z}
      - activate: alice
      - window: hidden
      - seen: {entity: alice, id: m1}
      - history: {entity: lobby, direction: backward, messages: [...]}

Events are applied in order; each one is a single-key mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from readstate.errors import EntityNotFoundError, ScriptError
from readstate.models import Direction, EntityKind, EntityRecord, Message
from readstate.stores.cache import MessageCache
from readstate.stores.entities import ConversationStore, EntityStore, RoomStore, badge_count

log = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    conversations: ConversationStore
    rooms: RoomStore
    notifications: list[dict] = field(default_factory=list)
    events_pending: int = 0

    @property
    def badge(self) -> int:
        return badge_count(self.conversations, self.rooms, self.events_pending)

    def to_dict(self) -> dict:
        return {
            "badge": self.badge,
            "conversations": [_record_dict(r) for r in self.conversations.records()],
            "rooms": [_record_dict(r) for r in self.rooms.records()],
            "notifications": self.notifications,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _record_dict(record: EntityRecord) -> dict:
    state = record.notification
    data = {
        "entity_id": record.entity_id,
        "kind": record.kind.value,
        "unread_count": state.unread_count,
        "mentions_count": state.mentions_count,
        "last_read_at": _iso(state.last_read_at),
        "last_seen_message_id": state.last_seen_message_id,
        "first_new_message_id": state.first_new_message_id,
        "messages": [m.id for m in record.messages],
        "last_message": record.last_message.id if record.last_message else None,
    }
    if record.kind is EntityKind.ROOM:
        data["joined"] = record.joined
        data["notify_all"] = record.notify_all.resolve()
    return data


def parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ScriptError(f"Invalid timestamp: {value!r}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ScriptError(f"Invalid timestamp: {value!r}")


def parse_message(data: dict) -> Message:
    try:
        return Message(
            id=str(data["id"]),
            sender=str(data["sender"]),
            timestamp=parse_time(data["at"]),
            body=data.get("body", ""),
            archive_id=data.get("archive_id"),
            is_outgoing=bool(data.get("outgoing", False)),
            is_delayed=bool(data.get("delayed", False)),
            is_mention=bool(data.get("mention", False)),
            no_store=bool(data.get("no_store", False)),
        )
    except KeyError as e:
        raise ScriptError(f"Message is missing field {e}") from e


def load_script(path: Path) -> dict:
    with open(path) as f:
        try:
            script = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ScriptError(f"Cannot parse script {path}: {e}") from e
    if not isinstance(script, dict) or not isinstance(script.get("events", []), list):
        raise ScriptError("Script must be a mapping with an 'events' list")
    return script


class Replayer:
    def __init__(self, script: dict, cache: MessageCache | None = None, max_messages: int | None = None):
        self._now = parse_time(script["now"]) if script.get("now") else None
        clock = (lambda: self._now) if self._now else None
        self.script = script
        self.conversations = ConversationStore(cache, max_messages=max_messages, clock=clock)
        self.rooms = RoomStore(cache, max_messages=max_messages, clock=clock)
        self.result = ReplayResult(self.conversations, self.rooms)
        if "window_visible" in script:
            self._set_window(bool(script["window_visible"]))

    def run(self) -> ReplayResult:
        for idx, event in enumerate(self.script.get("events", [])):
            if not isinstance(event, dict) or len(event) != 1:
                raise ScriptError(f"Event #{idx} must be a single-key mapping")
            name, arg = next(iter(event.items()))
            handler = getattr(self, f"_on_{name}", None)
            if handler is None:
                raise ScriptError(f"Event #{idx}: unknown event '{name}'")
            try:
                handler(arg)
            except EntityNotFoundError as e:
                log.warning(f"Event #{idx} ({name}) skipped: {e}")
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ScriptError(f"Event #{idx} ({name}) is malformed: {e}") from e
        return self.result

    def _store_for(self, entity_id: str) -> EntityStore:
        if entity_id in self.conversations:
            return self.conversations
        if entity_id in self.rooms:
            return self.rooms
        raise EntityNotFoundError(f"Entity '{entity_id}' not found")

    def _set_window(self, visible: bool) -> None:
        self.conversations.set_window_visible(visible)
        self.rooms.set_window_visible(visible)

    def _on_add_conversation(self, entity_id):
        self.conversations.add_entity(str(entity_id))

    def _on_add_room(self, entity_id):
        self.rooms.add_entity(str(entity_id))

    def _on_remove(self, entity_id):
        self._store_for(str(entity_id)).remove_entity(str(entity_id))

    def _on_activate(self, entity_id):
        if entity_id is None:
            self.conversations.set_active(None)
            self.rooms.set_active(None)
            return
        store = self._store_for(str(entity_id))
        other = self.rooms if store is self.conversations else self.conversations
        other.set_active(None)
        store.set_active(str(entity_id))

    def _on_window(self, value):
        if value not in ("visible", "hidden"):
            raise ScriptError(f"window must be 'visible' or 'hidden', got {value!r}")
        self._set_window(value == "visible")

    def _on_message(self, data):
        entity_id = str(data.get("entity", ""))
        store = self._store_for(entity_id)
        message = parse_message(data)
        if store.add_message(entity_id, message) and store.should_notify(entity_id, message):
            self.result.notifications.append({"entity": entity_id, "message": message.id})

    def _on_history(self, data):
        entity_id = str(data.get("entity", ""))
        direction = Direction(data.get("direction", "backward"))
        messages = [parse_message(m) for m in data.get("messages", [])]
        self._store_for(entity_id).merge_history(entity_id, messages, direction)

    def _on_seen(self, data):
        entity_id = str(data.get("entity", ""))
        self._store_for(entity_id).message_seen(entity_id, str(data["id"]))

    def _on_mark_read(self, entity_id):
        self._store_for(str(entity_id)).mark_as_read(str(entity_id))

    def _on_clear_marker(self, entity_id):
        self._store_for(str(entity_id)).clear_marker(str(entity_id))

    def _on_clear_history(self, entity_id):
        self._store_for(str(entity_id)).clear_history(str(entity_id))

    def _on_join(self, room_id):
        self.rooms.set_joined(str(room_id), True)

    def _on_leave(self, room_id):
        self.rooms.set_joined(str(room_id), False)

    def _on_notify_all(self, data):
        self.rooms.set_notify_all(
            str(data["room"]), bool(data["value"]), persistent=bool(data.get("persistent", False))
        )

    def _on_events_pending(self, count):
        self.result.events_pending = int(count)


def replay(script: dict, cache: MessageCache | None = None, max_messages: int | None = None) -> ReplayResult:
    return Replayer(script, cache, max_messages).run()
