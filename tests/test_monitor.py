import asyncio

from formsense.config import StabilityConfig
from formsense.dom import parse_html
from formsense.monitor import (
    DynamicContentMonitor,
    ManualChangeFeed,
    MutationRecord,
    NodeSummary,
    classify_record,
)

CONFIG = StabilityConfig()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds * 1000
        if self.on_sleep:
            self.on_sleep()


def _added_field(key="0"):
    return MutationRecord(
        kind="childList",
        target=NodeSummary("div"),
        document_key=key,
        added=[NodeSummary("input")],
    )


def test_loader_removal_and_readiness_raise_confidence():
    removed = MutationRecord(
        kind="childList",
        target=NodeSummary("div"),
        removed=[NodeSummary("div", {"class": "spinner"})],
    )
    class_swap = MutationRecord(
        kind="attributes",
        target=NodeSummary("div"),
        attribute_name="class",
        old_value="panel is-loading",
        new_value="panel",
    )
    enabled = MutationRecord(
        kind="attributes",
        target=NodeSummary("button"),
        attribute_name="disabled",
        old_value="",
        new_value=None,
    )
    assert classify_record(removed, CONFIG) == CONFIG.loader_removed_delta
    assert classify_record(class_swap, CONFIG) == CONFIG.loader_removed_delta
    assert classify_record(enabled, CONFIG) == CONFIG.readiness_delta
    assert classify_record(_added_field(), CONFIG) == CONFIG.readiness_delta


def test_irrelevant_changes_do_not_qualify():
    text_only = MutationRecord(kind="characterData", target=NodeSummary("span"))
    decoration = MutationRecord(
        kind="childList", target=NodeSummary("ul"), added=[NodeSummary("li")]
    )
    loader_word_inside = MutationRecord(
        kind="attributes",
        target=NodeSummary("div"),
        attribute_name="class",
        old_value="uploader",
        new_value="uploader done",
    )
    assert classify_record(text_only, CONFIG) is None
    assert classify_record(decoration, CONFIG) is None
    assert classify_record(loader_word_inside, CONFIG) is None


def test_mutation_payload_from_page():
    record = MutationRecord.from_payload(
        {
            "type": "attributes",
            "documentKey": "0.1",
            "target": {"tag": "DIV", "attrs": {"class": "x"}},
            "attributeName": "aria-busy",
            "oldValue": "true",
            "newValue": "false",
        }
    )
    assert record.target.tag == "div"
    assert record.document_key == "0.1"
    assert classify_record(record, CONFIG) == CONFIG.readiness_delta


def test_confidence_is_clamped():
    clock = FakeClock()
    monitor = DynamicContentMonitor(CONFIG, clock=clock, sleep=clock.sleep)
    feed = ManualChangeFeed()
    doc = parse_html("<form></form>")
    tracker = monitor.watch(doc, feed)

    feed.emit([_added_field() for _ in range(10)])

    assert tracker.confidence == 1.0
    assert tracker.change_count == 10


def test_stability_reached_after_quiet_window():
    clock = FakeClock()
    monitor = DynamicContentMonitor(CONFIG, clock=clock, sleep=clock.sleep)
    doc = parse_html("<form></form>")
    monitor.watch(doc, ManualChangeFeed())

    stable = asyncio.run(monitor.wait_for_stability([doc], 2000))

    assert stable is True
    assert clock.now == CONFIG.quiet_window_ms


def test_stability_wait_never_exceeds_its_bound():
    clock = FakeClock()
    monitor = DynamicContentMonitor(CONFIG, clock=clock, sleep=clock.sleep)
    feed = ManualChangeFeed()
    doc = parse_html("<form></form>")
    monitor.watch(doc, feed)
    clock.on_sleep = lambda: feed.emit([_added_field()])

    stable = asyncio.run(monitor.wait_for_stability([doc], 450))

    assert stable is False
    assert clock.now == 450
    assert max(clock.sleeps) <= CONFIG.poll_interval_ms / 1000


def test_untracked_documents_count_as_stable():
    clock = FakeClock()
    monitor = DynamicContentMonitor(CONFIG, clock=clock, sleep=clock.sleep)
    doc = parse_html("<form></form>")

    assert asyncio.run(monitor.wait_for_stability([doc], 2000)) is True
    assert clock.sleeps == []


def test_listeners_receive_only_qualifying_changes():
    clock = FakeClock()
    monitor = DynamicContentMonitor(CONFIG, clock=clock, sleep=clock.sleep)
    feed = ManualChangeFeed()
    main = parse_html("<form></form>")
    child = parse_html("<form></form>", key="0.0")
    monitor.watch(main, feed)
    monitor.watch(child, feed)
    received = []
    monitor.on_change(lambda key, records: received.append((key, len(records))))

    feed.emit(
        [
            _added_field("0.0"),
            MutationRecord(kind="characterData", target=NodeSummary("p"), document_key="0"),
            _added_field("9"),
        ]
    )

    assert feed.subscriber_count == 1
    assert received == [("0.0", 1)]

    monitor.close()
    assert feed.subscriber_count == 0
    assert monitor.tracked_keys == []
