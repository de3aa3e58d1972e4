import asyncio

from playwright.async_api import Error as PlaywrightError

from formsense.dom import StaticDocumentSource
from formsense.frames import FrameTraversal
from formsense.network_capture import NetworkCapture
from formsense.playwright_host import (
    MUTATION_BINDING,
    OBSERVER_SCRIPT,
    SET_ATTRIBUTE_SCRIPT,
    SNAPSHOT_SCRIPT,
    PlaywrightChangeFeed,
    PlaywrightDocumentSource,
    attach_network_capture,
    frame_key,
    watch_frames,
)

ORIGIN = "https://example.com"


def _snapshot(url, body_children):
    return {
        "url": url,
        "origin": ORIGIN,
        "viewport": {"width": 1280, "height": 800},
        "root": {
            "tag": "html",
            "uid": "fs-1",
            "children": [{"tag": "body", "uid": "fs-2", "children": body_children}],
        },
    }


MAIN_SNAPSHOT = _snapshot(
    f"{ORIGIN}/",
    [
        {
            "tag": "form",
            "uid": "fs-3",
            "rect": {"x": 0, "y": 0, "width": 400, "height": 300},
            "children": [{"tag": "input", "uid": "fs-4", "attrs": {"name": "email"}}],
        },
        {"tag": "iframe", "uid": "fs-5", "attrs": {"src": "/embed"}},
        {"tag": "iframe", "uid": "fs-6", "attrs": {"src": "/blocked"}},
    ],
)
CHILD_SNAPSHOT = _snapshot(
    f"{ORIGIN}/embed", [{"tag": "input", "uid": "fs-3", "attrs": {"name": "phone"}}]
)


class FakeHandle:
    def __init__(self, uid) -> None:
        self.uid = uid

    async def evaluate(self, script):
        return self.uid


class FakeFrame:
    def __init__(self, url, snapshot=None, *, parent=None, host_uid=None, error=None) -> None:
        self.url = url
        self.snapshot = snapshot
        self.parent_frame = parent
        self.child_frames = []
        self.host_uid = host_uid
        self.error = error
        self.writes = []
        self.observed = 0
        if parent is not None:
            parent.child_frames.append(self)

    async def evaluate(self, script, arg=None):
        if self.error:
            raise PlaywrightError(self.error)
        if script == SNAPSHOT_SCRIPT:
            return self.snapshot
        if script == SET_ATTRIBUTE_SCRIPT:
            self.writes.append(arg)
            return True
        if script == OBSERVER_SCRIPT:
            self.observed += 1
        return None

    async def frame_element(self):
        return FakeHandle(self.host_uid)


class FakePage:
    def __init__(self) -> None:
        self.main_frame = FakeFrame(f"{ORIGIN}/", MAIN_SNAPSHOT)
        self.embed = FakeFrame(f"{ORIGIN}/embed", CHILD_SNAPSHOT, parent=self.main_frame, host_uid="fs-5")
        self.blocked = FakeFrame(f"{ORIGIN}/blocked", parent=self.main_frame, host_uid="fs-6", error="blocked")
        self.frames = [self.main_frame, self.embed, self.blocked]
        self.handlers = {}
        self.bindings = {}
        self.init_scripts = []

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.handlers[event].remove(handler)

    off = remove_listener

    async def expose_binding(self, name, callback):
        self.bindings[name] = callback

    async def add_init_script(self, script=None):
        self.init_scripts.append(script)


class FakeResponse:
    def __init__(self, frame) -> None:
        self.frame = frame


def test_frame_keys_are_index_paths():
    page = FakePage()
    assert frame_key(page.main_frame) == "0"
    assert frame_key(page.embed) == "0.0"
    assert frame_key(page.blocked) == "0.1"


def test_snapshot_links_frames_and_records_access_errors():
    page = FakePage()
    source = PlaywrightDocumentSource(page)

    document = asyncio.run(source.load())

    hosts = document.query_all("iframe")
    assert hosts[0].content.key == "0.0"
    assert hosts[0].content.host is hosts[0]
    assert hosts[0].content.query("input").get("name") == "phone"
    assert hosts[1].content is None
    assert "blocked" in hosts[1].content_error

    traversal = FrameTraversal()
    assert len(traversal.collect(document)) == 2
    assert traversal.report.inaccessible_count == 1


def test_attribute_writes_reach_the_owning_frame():
    page = FakePage()
    document = asyncio.run(PlaywrightDocumentSource(page).load())
    embedded = document.query_all("iframe")[0].content

    document.query("input").set_attribute("data-formsense-id", "field-1")
    embedded.query("input").set_attribute("data-formsense-id", "field-2")
    asyncio.run(document.flush())
    asyncio.run(embedded.flush())

    assert page.main_frame.writes == [["fs-4", "data-formsense-id", "field-1"]]
    assert page.embed.writes == [["fs-3", "data-formsense-id", "field-2"]]


def test_depth_limit_skips_child_frames():
    page = FakePage()
    document = asyncio.run(PlaywrightDocumentSource(page, max_depth=0).load())
    assert all(host.content is None for host in document.query_all("iframe"))


def test_change_feed_installs_observer_and_maps_batches():
    page = FakePage()
    feed = PlaywrightChangeFeed(page)
    received = []
    feed.subscribe(received.extend)

    asyncio.run(feed.start())
    asyncio.run(feed.start())

    assert MUTATION_BINDING in page.bindings
    assert page.init_scripts == [OBSERVER_SCRIPT]
    assert page.main_frame.observed == 1

    page.bindings[MUTATION_BINDING](
        {"frame": page.embed},
        [
            {
                "type": "childList",
                "target": {"tag": "DIV", "attrs": {}},
                "added": [{"tag": "input", "attrs": {}, "containsField": True}],
            },
            "junk",
        ],
    )

    assert len(received) == 1
    assert received[0].document_key == "0.0"
    assert received[0].added[0].contains_field


def test_network_capture_keys_responses_by_frame():
    page = FakePage()
    capture = NetworkCapture()

    detach = attach_network_capture(page, capture)

    assert len(page.handlers["response"]) == 1
    assert capture.document_key_for(FakeResponse(page.blocked)) == "0.1"
    detach()
    assert page.handlers["response"] == []


def test_frame_events_refresh_the_traversal():
    page = FakePage()
    traversal = FrameTraversal()
    seen = []
    traversal.on_new_document(seen.append)
    source = StaticDocumentSource("<form><input name=a></form>", url=f"{ORIGIN}/")

    async def scenario():
        detach = watch_frames(page, source, traversal)
        page.handlers["frameattached"][0](page.embed)
        for _ in range(5):
            await asyncio.sleep(0)
        detach()

    asyncio.run(scenario())

    assert len(seen) == 1
    assert page.handlers["frameattached"] == []
    assert page.handlers["framenavigated"] == []
