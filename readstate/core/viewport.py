"""Viewport read-position tracker.

Watches which message elements are visible inside a scroll container and
reports the bottom-most one, throttled. The host supplies the two
observation primitives (element visibility and subtree additions); the
tracker holds no notification state, callers feed reported ids into
readstate.core.notifications.on_message_seen.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from readstate import config
from readstate.lib.scheduler import Scheduler, ThreadingScheduler, TimerHandle

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntersectionEntry:
    target: Any
    is_intersecting: bool
    bottom: float
    ratio: float = 0.0


@dataclass(frozen=True)
class MutationRecord:
    added_nodes: tuple = ()


@runtime_checkable
class MessageElement(Protocol):
    message_id: str | None

    def query_messages(self) -> list: ...


class VisibilityObserver(Protocol):
    def observe(self, target: Any) -> None: ...

    def disconnect(self) -> None: ...


class SubtreeObserver(Protocol):
    def observe(self, root: Any) -> None: ...

    def disconnect(self) -> None: ...


@runtime_checkable
class ObservationHost(Protocol):
    """Platform capabilities the tracker needs."""

    def visibility_observer(
        self,
        callback: Callable[[list[IntersectionEntry]], None],
        root: Any,
        threshold: float,
    ) -> VisibilityObserver: ...

    def mutation_observer(
        self, callback: Callable[[list[MutationRecord]], None]
    ) -> SubtreeObserver: ...


def find_bottom_most_visible(entries: Iterable[IntersectionEntry]) -> str | None:
    """Id of the visible message with the largest bottom coordinate."""
    bottom_most_id = None
    bottom_most = -math.inf
    for entry in entries:
        if not entry.is_intersecting:
            continue
        message_id = getattr(entry.target, "message_id", None)
        if not message_id:
            continue
        if entry.bottom > bottom_most:
            bottom_most = entry.bottom
            bottom_most_id = message_id
    return bottom_most_id


class ViewportReadTracker:
    """One instance per entity view.

    Every scheduled flush carries the generation it was created in. Teardown
    and entity switches bump the generation under the lock, so a timer that
    still runs after cancellation finds a stale token and does nothing.
    """

    def __init__(
        self,
        host: ObservationHost,
        scheduler: Scheduler | None = None,
        throttle_ms: int | None = None,
        threshold: float | None = None,
    ):
        """`throttle_ms` and `threshold` default to the viewport section of config.yaml."""
        if throttle_ms is None:
            throttle_ms = config.throttle_ms()
        if threshold is None:
            threshold = config.visibility_threshold()
        self._host = host
        self._scheduler = scheduler or ThreadingScheduler()
        self._throttle = throttle_ms / 1000
        self._threshold = threshold
        self._lock = threading.RLock()

        self._entity_id: str | None = None
        self._callback: Callable[[str], None] | None = None
        self._visibility: VisibilityObserver | None = None
        self._mutations: SubtreeObserver | None = None
        self._visible: dict[Any, IntersectionEntry] = {}

        self._last_reported: str | None = None
        self._last_reported_at: float | None = None
        self._pending: str | None = None
        self._timer: TimerHandle | None = None
        self._generation = 0

    @property
    def entity_id(self) -> str | None:
        return self._entity_id

    @property
    def observing(self) -> bool:
        return self._visibility is not None

    @property
    def pending(self) -> str | None:
        return self._pending

    def activate(
        self,
        container: MessageElement | None,
        entity_id: str,
        on_message_seen: Callable[[str], None] | None,
        enabled: bool = True,
    ) -> bool:
        """Start observing `container`. Returns False when observation is skipped."""
        with self._lock:
            self._teardown()
            if entity_id != self._entity_id:
                self._reset_throttle()
                self._entity_id = entity_id
            self._callback = None

            if not enabled or container is None or on_message_seen is None:
                log.debug(f"Viewport tracking skipped for {entity_id}")
                return False

            self._visibility = self._host.visibility_observer(
                self._on_intersections, container, self._threshold
            )
            for element in container.query_messages():
                self._visibility.observe(element)

            self._mutations = self._host.mutation_observer(self._on_mutations)
            self._mutations.observe(container)
            self._callback = on_message_seen
            log.debug(f"Viewport tracking started for {entity_id}")
            return True

    def deactivate(self) -> None:
        with self._lock:
            self._teardown()
            self._callback = None
            log.debug(f"Viewport tracking stopped for {self._entity_id}")

    def report(self, message_id: str) -> None:
        """Report a bottom-most visible message, subject to throttling."""
        with self._lock:
            if self._callback is None:
                return
            if message_id == self._last_reported:
                self._pending = None
                return

            now = self._scheduler.now()
            if self._last_reported_at is None:
                elapsed = math.inf
            else:
                elapsed = now - self._last_reported_at

            if elapsed >= self._throttle:
                self._emit(message_id, now)
                return

            self._pending = message_id
            if self._timer is None:
                token = self._generation
                self._timer = self._scheduler.call_later(
                    self._throttle - elapsed, lambda: self._flush(token)
                )

    def _emit(self, message_id: str, now: float) -> None:
        self._last_reported = message_id
        self._last_reported_at = now
        self._callback(message_id)

    def _flush(self, token: int) -> None:
        with self._lock:
            if token != self._generation:
                return
            self._timer = None
            pending, self._pending = self._pending, None
            if pending and pending != self._last_reported and self._callback is not None:
                self._emit(pending, self._scheduler.now())

    def _on_intersections(self, entries: list[IntersectionEntry]) -> None:
        with self._lock:
            if self._visibility is None:
                return
            for entry in entries:
                if entry.is_intersecting:
                    self._visible[entry.target] = entry
                else:
                    self._visible.pop(entry.target, None)

            # whole visible set, not the delta: partial leaves must not leave a stale answer
            bottom_most = find_bottom_most_visible(self._visible.values())
            if bottom_most:
                self.report(bottom_most)

    def _on_mutations(self, records: list[MutationRecord]) -> None:
        with self._lock:
            if self._visibility is None:
                return
            for record in records:
                for node in record.added_nodes:
                    if getattr(node, "message_id", None):
                        self._visibility.observe(node)
                    query = getattr(node, "query_messages", None)
                    if query is not None:
                        for element in query():
                            self._visibility.observe(element)

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None

    def _reset_throttle(self) -> None:
        self._cancel_timer()
        self._last_reported = None
        self._last_reported_at = None

    def _teardown(self) -> None:
        if self._visibility is not None:
            self._visibility.disconnect()
            self._visibility = None
        if self._mutations is not None:
            self._mutations.disconnect()
            self._mutations = None
        self._visible.clear()
        self._cancel_timer()
