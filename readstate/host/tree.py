"""Polling element tree for hosts without a DOM.

Elements carry content-space offsets; a ScrollContainer adds a viewport
(scroll_top + viewport_height). PollingHost hands out visibility and
subtree observers that compare snapshots on every tick() instead of being
pushed events by a layout engine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from readstate.core.viewport import IntersectionEntry, MutationRecord

log = logging.getLogger(__name__)


class Element:
    def __init__(self, message_id: str | None = None, top: float = 0.0, height: float = 0.0):
        self.message_id = message_id
        self.top = top
        self.height = height
        self.parent: Element | None = None
        self.children: list[Element] = []

    def __repr__(self) -> str:
        return f"Element(message_id={self.message_id!r}, top={self.top}, height={self.height})"

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def append(self, child: Element) -> Element:
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        return child

    def remove(self, child: Element) -> None:
        self.children.remove(child)
        child.parent = None

    def iter_descendants(self) -> Iterator[Element]:
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def query_messages(self) -> list[Element]:
        """Descendants tagged as messages, in document order."""
        return [el for el in self.iter_descendants() if el.message_id]

    def is_within(self, root: Element) -> bool:
        node = self.parent
        while node is not None:
            if node is root:
                return True
            node = node.parent
        return False


class ScrollContainer(Element):
    def __init__(self, viewport_height: float, scroll_top: float = 0.0):
        super().__init__(top=0.0, height=viewport_height)
        self.viewport_height = viewport_height
        self.scroll_top = scroll_top

    @property
    def content_height(self) -> float:
        return max((el.bottom for el in self.iter_descendants()), default=0.0)

    def scroll_to(self, offset: float) -> None:
        max_offset = max(self.content_height - self.viewport_height, 0.0)
        self.scroll_top = min(max(offset, 0.0), max_offset)

    def scroll_to_bottom(self) -> None:
        self.scroll_to(self.content_height)

    def append_message(self, message_id: str, height: float = 40.0) -> Element:
        """Lay out a message element below the current content."""
        return self.append(Element(message_id, top=self.content_height, height=height))

    def prepend_message(self, message_id: str, height: float = 40.0) -> Element:
        """Insert a message above existing content, keeping the visible region in place."""
        for el in self.iter_descendants():
            el.top += height
        self.scroll_top += height
        element = Element(message_id, top=0.0, height=height)
        element.parent = self
        self.children.insert(0, element)
        return element

    def visible_ratio(self, element: Element) -> float:
        view_top = self.scroll_top
        view_bottom = self.scroll_top + self.viewport_height
        if element.height <= 0:
            return 1.0 if view_top <= element.top <= view_bottom else 0.0
        overlap = min(element.bottom, view_bottom) - max(element.top, view_top)
        return max(overlap, 0.0) / element.height


class PollingVisibilityObserver:
    """Emits an entry on first observe, whenever intersecting flips, and when
    a visible element moves. `bottom` is in content coordinates so entries
    from different polls stay comparable across scrolling."""

    def __init__(
        self,
        callback: Callable[[list[IntersectionEntry]], None],
        root: ScrollContainer,
        threshold: float,
    ):
        self._callback = callback
        self._root = root
        self._threshold = threshold
        self._targets: dict[Element, tuple[bool, float] | None] = {}
        self.connected = True

    def observe(self, target: Element) -> None:
        if self.connected and target not in self._targets:
            self._targets[target] = None

    def unobserve(self, target: Element) -> None:
        self._targets.pop(target, None)

    def disconnect(self) -> None:
        self._targets.clear()
        self.connected = False

    def poll(self) -> None:
        if not self.connected:
            return
        entries = []
        for target, last in list(self._targets.items()):
            if target.is_within(self._root):
                ratio = self._root.visible_ratio(target)
            else:
                ratio = 0.0
            intersecting = ratio > 0 and ratio >= self._threshold
            snapshot = (intersecting, target.bottom)
            if last is None or intersecting != last[0] or (intersecting and snapshot != last):
                self._targets[target] = snapshot
                entries.append(
                    IntersectionEntry(
                        target=target,
                        is_intersecting=intersecting,
                        bottom=target.bottom,
                        ratio=ratio,
                    )
                )
        if entries:
            self._callback(entries)


class PollingMutationObserver:
    """Reports subtrees added under the observed root since the last poll."""

    def __init__(self, callback: Callable[[list[MutationRecord]], None]):
        self._callback = callback
        self._root: Element | None = None
        self._known: set[Element] = set()
        self.connected = True

    def observe(self, root: Element) -> None:
        if not self.connected:
            return
        self._root = root
        self._known = set(root.iter_descendants())

    def disconnect(self) -> None:
        self._root = None
        self._known = set()
        self.connected = False

    def poll(self) -> None:
        if self._root is None:
            return
        current = list(self._root.iter_descendants())
        added = [node for node in current if node not in self._known]
        self._known = set(current)
        if not added:
            return
        added_set = set(added)
        top_level = tuple(node for node in added if node.parent not in added_set)
        self._callback([MutationRecord(added_nodes=top_level)])


class PollingHost:
    """ObservationHost backed by explicit polling."""

    def __init__(self):
        self._visibility: list[PollingVisibilityObserver] = []
        self._mutations: list[PollingMutationObserver] = []

    def visibility_observer(self, callback, root, threshold) -> PollingVisibilityObserver:
        observer = PollingVisibilityObserver(callback, root, threshold)
        self._visibility.append(observer)
        return observer

    def mutation_observer(self, callback) -> PollingMutationObserver:
        observer = PollingMutationObserver(callback)
        self._mutations.append(observer)
        return observer

    def tick(self) -> None:
        """Poll subtree changes first so new elements are observed before visibility."""
        self._mutations = [obs for obs in self._mutations if obs.connected]
        for observer in list(self._mutations):
            observer.poll()
        self._visibility = [obs for obs in self._visibility if obs.connected]
        for observer in list(self._visibility):
            observer.poll()
