import pytest

from readstate.core.viewport import (
    IntersectionEntry,
    MutationRecord,
    ViewportReadTracker,
    find_bottom_most_visible,
)
from readstate.host.tree import Element, PollingHost, ScrollContainer
from readstate.lib.scheduler import ManualScheduler


class FakeObserver:
    def __init__(self, callback):
        self.callback = callback
        self.observed = []
        self.connected = True

    def observe(self, target):
        self.observed.append(target)

    def disconnect(self):
        self.connected = False


class FakeHost:
    def __init__(self):
        self.visibility = []
        self.mutations = []

    def visibility_observer(self, callback, root, threshold):
        observer = FakeObserver(callback)
        observer.threshold = threshold
        self.visibility.append(observer)
        return observer

    def mutation_observer(self, callback):
        observer = FakeObserver(callback)
        self.mutations.append(observer)
        return observer


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def tracker(host, scheduler):
    return ViewportReadTracker(host, scheduler, throttle_ms=300, threshold=0.5)


@pytest.fixture
def container():
    root = Element()
    for i in range(1, 4):
        root.append(Element(f"msg-{i}", top=i * 40, height=40))
    return root


def entry(element, visible=True):
    return IntersectionEntry(target=element, is_intersecting=visible, bottom=element.bottom)


def test_find_bottom_most_visible():
    a, b, c = Element("a", 0, 40), Element("b", 40, 40), Element(None, 80, 40)
    entries = [entry(a), entry(b, visible=False), entry(c)]
    assert find_bottom_most_visible(entries) == "a"
    assert find_bottom_most_visible([]) is None


def test_throttle_coalesces_to_latest(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)

    tracker.report("msg-1")
    assert seen == ["msg-1"]

    scheduler.advance(0.05)
    tracker.report("msg-2")
    scheduler.advance(0.05)
    tracker.report("msg-3")
    assert seen == ["msg-1"]
    assert tracker.pending == "msg-3"

    scheduler.advance(0.18)
    assert seen == ["msg-1"]

    scheduler.advance(0.05)
    assert seen == ["msg-1", "msg-3"]

    scheduler.advance(5)
    assert seen == ["msg-1", "msg-3"]


def test_report_after_window_fires_immediately(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    scheduler.advance(0.4)
    tracker.report("msg-2")
    assert seen == ["msg-1", "msg-2"]
    assert scheduler.pending() == 0


def test_repeat_of_last_reported_is_ignored(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    scheduler.advance(0.1)
    tracker.report("msg-2")
    tracker.report("msg-1")
    scheduler.advance(1)
    assert seen == ["msg-1"]


def test_entity_switch_cancels_pending(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    scheduler.advance(0.05)
    tracker.report("msg-2")

    other = []
    tracker.activate(container, "bob", other.append)
    scheduler.advance(1)
    assert seen == ["msg-1"]
    assert other == []
    assert tracker.entity_id == "bob"


def test_entity_switch_resets_throttle(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    tracker.activate(container, "bob", seen.append)
    tracker.report("msg-1")
    assert seen == ["msg-1", "msg-1"]


def test_stale_timer_callback_does_nothing(host, container):
    """A timer that fires after cancellation finds a stale generation."""

    class LeakyScheduler(ManualScheduler):
        def call_later(self, delay, fn):
            handle = super().call_later(delay, fn)
            self.leaked = fn
            return handle

    scheduler = LeakyScheduler()
    tracker = ViewportReadTracker(host, scheduler, throttle_ms=300, threshold=0.5)
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    tracker.report("msg-2")
    tracker.deactivate()

    scheduler.leaked()
    assert seen == ["msg-1"]


def test_deactivate_disconnects_and_cancels(tracker, host, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.report("msg-1")
    tracker.report("msg-2")
    tracker.deactivate()

    assert not tracker.observing
    assert not host.visibility[0].connected
    assert not host.mutations[0].connected
    scheduler.advance(1)
    tracker.report("msg-3")
    assert seen == ["msg-1"]


@pytest.mark.parametrize(
    ("use_container", "callback", "enabled"),
    [(False, True, True), (True, False, True), (True, True, False)],
)
def test_no_observation_when_inputs_missing(
    tracker, host, container, use_container, callback, enabled
):
    started = tracker.activate(
        container if use_container else None,
        "alice",
        (lambda _: None) if callback else None,
        enabled=enabled,
    )
    assert started is False
    assert not tracker.observing
    assert host.visibility == []
    assert host.mutations == []


def test_activate_observes_existing_messages(tracker, host, container):
    tracker.activate(container, "alice", lambda _: None)
    observer = host.visibility[0]
    assert [el.message_id for el in observer.observed] == ["msg-1", "msg-2", "msg-3"]
    assert observer.threshold == 0.5
    assert host.mutations[0].observed == [container]


def test_visibility_recomputes_from_whole_set(tracker, host, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    observer = host.visibility[0]
    m1, m2, m3 = container.children

    observer.callback([entry(m1), entry(m2), entry(m3)])
    assert seen == ["msg-3"]

    scheduler.advance(1)
    observer.callback([entry(m3, visible=False)])
    assert seen == ["msg-3", "msg-2"]


def test_mutation_observes_nested_additions(tracker, host, container):
    tracker.activate(container, "alice", lambda _: None)
    observer = host.visibility[0]

    group = Element()
    group.append(Element("msg-4", top=160, height=40))
    group.append(Element("msg-5", top=200, height=40))
    direct = Element("msg-6", top=240, height=40)
    host.mutations[0].callback([MutationRecord(added_nodes=(group, direct))])

    observed = [el.message_id for el in observer.observed]
    assert observed[-3:] == ["msg-4", "msg-5", "msg-6"]


def test_threshold_and_throttle_default_to_config(host, readstate_home):
    readstate_home.mkdir(parents=True)
    (readstate_home / "config.yaml").write_text(
        "viewport:\n  throttle_ms: 1000\n  visibility_threshold: 0.75\n"
    )
    scheduler = ManualScheduler()
    tracker = ViewportReadTracker(host, scheduler)
    seen = []
    tracker.activate(Element(), "alice", seen.append)
    assert host.visibility[0].threshold == 0.75

    tracker.report("a")
    scheduler.advance(0.5)
    tracker.report("b")
    scheduler.advance(0.4)
    assert seen == ["a"]
    scheduler.advance(0.2)
    assert seen == ["a", "b"]


def test_polling_host_end_to_end(scheduler):
    host = PollingHost()
    view = ScrollContainer(viewport_height=100)
    for i in range(1, 6):
        view.append_message(f"m{i}", height=40)

    seen = []
    tracker = ViewportReadTracker(host, scheduler, throttle_ms=300, threshold=0.5)
    tracker.activate(view, "lobby", seen.append)

    host.tick()
    # m3 spans 80-120: exactly half visible
    assert seen == ["m3"]

    view.scroll_to_bottom()
    host.tick()
    assert seen == ["m3"]
    scheduler.advance(0.3)
    assert seen == ["m3", "m5"]

    scheduler.advance(1)
    view.append_message("m6", height=40)
    view.scroll_to_bottom()
    host.tick()
    assert seen == ["m3", "m5", "m6"]

    tracker.deactivate()
    view.append_message("m7", height=40)
    view.scroll_to_bottom()
    host.tick()
    scheduler.advance(1)
    assert seen == ["m3", "m5", "m6"]


def test_disabled_tracker_does_not_emit(tracker, scheduler, container):
    seen = []
    assert not tracker.activate(container, "alice", seen.append, enabled=False)
    tracker.report("msg-1")
    scheduler.advance(1)
    assert seen == []
    assert scheduler.pending() == 0


def test_reactivating_disabled_drops_previous_callback(tracker, scheduler, container):
    seen = []
    tracker.activate(container, "alice", seen.append)
    tracker.activate(container, "alice", seen.append, enabled=False)
    tracker.report("msg-1")
    assert seen == []
