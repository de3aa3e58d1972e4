"""Adapters that feed a live Playwright page into the detection pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from .dom import DomDocument, DomNode, Rect
from .frames import FrameTraversal
from .monitor import ChangeFeed, MutationCallback, MutationRecord
from .network_capture import NetworkCapture

SNAPSHOT_SCRIPT = """
() => {
  const uids = window.__formsenseUids || (window.__formsenseUids = new WeakMap());
  const byUid = window.__formsenseByUid || (window.__formsenseByUid = new Map());
  const SKIP = new Set(['script', 'style', 'noscript', 'template']);
  let counter = window.__formsenseCounter || 0;
  const snap = (el) => {
    let uid = uids.get(el);
    if (!uid) {
      counter += 1;
      uid = 'fs-' + counter;
      uids.set(el, uid);
      byUid.set(uid, new WeakRef(el));
    }
    const tag = el.tagName.toLowerCase();
    const attrs = {};
    for (const attr of Array.from(el.attributes || [])) attrs[attr.name] = attr.value;
    if ((tag === 'input' || tag === 'textarea') && el.value) attrs.value = el.value;
    if (tag === 'input' && el.checked) attrs.checked = '';
    let text = '';
    for (const node of Array.from(el.childNodes)) {
      if (node.nodeType === 3) text += node.textContent;
    }
    const box = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const children = [];
    if (!SKIP.has(tag)) {
      for (const child of Array.from(el.children)) children.push(snap(child));
      if (el.shadowRoot) {
        for (const child of Array.from(el.shadowRoot.children)) children.push(snap(child));
      }
    }
    return {
      tag,
      attrs,
      text: text.trim().slice(0, 500),
      rect: {x: box.x + window.scrollX, y: box.y + window.scrollY, width: box.width, height: box.height},
      display: style.display,
      visibility: style.visibility,
      uid,
      children,
    };
  };
  const root = snap(document.documentElement);
  window.__formsenseCounter = counter;
  return {
    url: location.href,
    origin: location.origin,
    viewport: {width: window.innerWidth, height: window.innerHeight},
    root,
  };
}
"""

SET_ATTRIBUTE_SCRIPT = """
([uid, name, value]) => {
  const ref = window.__formsenseByUid && window.__formsenseByUid.get(uid);
  const el = ref && ref.deref();
  if (!el) return false;
  if (value === null) el.removeAttribute(name);
  else el.setAttribute(name, value);
  return true;
}
"""

HOST_UID_SCRIPT = "el => (window.__formsenseUids && window.__formsenseUids.get(el)) || null"

MUTATION_BINDING = "__formsenseMutations"

OBSERVER_SCRIPT = """
(() => {
  if (window.__formsenseObserver) return;
  const FIELD = 'input, select, textarea, [contenteditable], [role=textbox], [role=combobox], [role=listbox]';
  const summarize = (node) => {
    if (!node || node.nodeType !== 1) return null;
    const attrs = {};
    for (const attr of Array.from(node.attributes || [])) attrs[attr.name] = attr.value;
    const containsField = !!(node.matches(FIELD) || node.querySelector(FIELD));
    return {tag: node.tagName.toLowerCase(), attrs, containsField};
  };
  let queue = [];
  let scheduled = false;
  const flush = () => {
    scheduled = false;
    const batch = queue;
    queue = [];
    if (batch.length && window.__formsenseMutations) window.__formsenseMutations(batch);
  };
  const observer = new MutationObserver((mutations) => {
    for (const m of mutations) {
      const target = summarize(m.target);
      if (!target) continue;
      queue.push({
        type: m.type,
        target,
        attributeName: m.attributeName,
        oldValue: m.oldValue,
        newValue: m.type === 'attributes' ? m.target.getAttribute(m.attributeName) : null,
        added: Array.from(m.addedNodes).map(summarize).filter(Boolean),
        removed: Array.from(m.removedNodes).map(summarize).filter(Boolean),
      });
    }
    if (!scheduled) {
      scheduled = true;
      setTimeout(flush, 100);
    }
  });
  const start = () => observer.observe(document.documentElement, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeOldValue: true,
    attributeFilter: ['class', 'style', 'hidden', 'disabled', 'aria-disabled', 'aria-busy'],
  });
  window.__formsenseObserver = observer;
  if (document.documentElement) start();
  else document.addEventListener('DOMContentLoaded', start);
})()
"""


def frame_key(frame: Any) -> str:
    """Stable key for a frame: its index path from the main frame."""
    parts: List[str] = []
    current = frame
    while current is not None and current.parent_frame is not None:
        parent = current.parent_frame
        try:
            parts.append(str(parent.child_frames.index(current)))
        except ValueError:
            parts.append("x")
        current = parent
    return ".".join(["0", *reversed(parts)])


class PlaywrightDocumentSource:
    """Snapshots every frame of a page into linked :class:`DomDocument` trees."""

    def __init__(
        self, page: Any, *, max_depth: int = 8, logger: Optional[logging.Logger] = None
    ) -> None:
        self.page = page
        self.max_depth = max_depth
        self.logger = logger or logging.getLogger("formsense.playwright")
        self.loads = 0

    async def load(self) -> DomDocument:
        self.loads += 1
        return await self._snapshot(self.page.main_frame, 0)

    def _sink_for(self, frame: Any):
        async def sink(node: DomNode, name: str, value: Optional[str]) -> None:
            if node.uid is None:
                return
            await frame.evaluate(SET_ATTRIBUTE_SCRIPT, [node.uid, name, value])

        return sink

    async def _snapshot(self, frame: Any, depth: int) -> DomDocument:
        payload = await frame.evaluate(SNAPSHOT_SCRIPT)
        viewport = payload.get("viewport") or {}
        document = DomDocument.from_snapshot(
            payload["root"],
            url=payload.get("url") or frame.url,
            key=frame_key(frame),
            origin=payload.get("origin") or "",
            viewport=Rect(0, 0, float(viewport.get("width", 0)), float(viewport.get("height", 0))),
        )
        document.attribute_sink = self._sink_for(frame)
        if depth >= self.max_depth:
            return document

        by_uid: Dict[str, DomNode] = {
            node.uid: node for node in document.iter_elements() if node.uid
        }
        for child in frame.child_frames:
            host: Optional[DomNode] = None
            try:
                handle = await child.frame_element()
                host_uid = await handle.evaluate(HOST_UID_SCRIPT)
                host = by_uid.get(host_uid) if host_uid else None
            except PlaywrightError as exc:
                self.logger.debug("Unable to locate host for frame %s: %s", child.url, exc)
            if host is None:
                continue
            try:
                content = await self._snapshot(child, depth + 1)
            except Exception as exc:  # noqa: BLE001
                host.content_error = str(exc)
                self.logger.debug("Frame %s is not accessible: %s", child.url, exc)
                continue
            content.host = host
            host.content = content
        return document


class PlaywrightChangeFeed(ChangeFeed):
    """Mutation batches from an injected ``MutationObserver`` in every frame."""

    def __init__(self, page: Any, *, logger: Optional[logging.Logger] = None) -> None:
        self.page = page
        self.logger = logger or logging.getLogger("formsense.playwright")
        self._callbacks: Dict[int, MutationCallback] = {}
        self._next_token = 0
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.page.expose_binding(MUTATION_BINDING, self._on_batch)
        await self.page.add_init_script(script=OBSERVER_SCRIPT)
        for frame in self.page.frames:
            try:
                await frame.evaluate(OBSERVER_SCRIPT)
            except PlaywrightError as exc:
                self.logger.debug("Could not observe frame %s: %s", frame.url, exc)
        self._started = True

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._callbacks[token] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(token, None)

        return unsubscribe

    def _on_batch(self, source: Dict[str, Any], batch: List[dict]) -> None:
        key = frame_key(source["frame"])
        records: List[MutationRecord] = []
        for item in batch or []:
            try:
                records.append(MutationRecord.from_payload({**item, "documentKey": key}))
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.debug("Dropping malformed mutation payload: %s", exc)
        if not records:
            return
        for callback in list(self._callbacks.values()):
            try:
                callback(records)
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Mutation subscriber failed: %s", exc)


def attach_network_capture(page: Any, capture: NetworkCapture) -> Callable[[], None]:
    """Route page responses into ``capture``; returns a detach callable."""
    if capture.document_key_for is None:
        capture.document_key_for = lambda response: frame_key(response.frame)
    capture.page = page
    capture.__enter__()
    return lambda: capture.__exit__(None, None, None)


def watch_frames(
    page: Any,
    source: PlaywrightDocumentSource,
    traversal: FrameTraversal,
    *,
    logger: Optional[logging.Logger] = None,
) -> Callable[[], None]:
    """Re-enumerate documents whenever a frame attaches or navigates."""
    log = logger or logging.getLogger("formsense.playwright")
    pending: set = set()

    async def refresh() -> None:
        try:
            traversal.refresh(await source.load())
        except Exception as exc:  # noqa: BLE001
            log.debug("Frame refresh failed: %s", exc)

    def handler(_frame) -> None:
        task = asyncio.ensure_future(refresh())
        pending.add(task)
        task.add_done_callback(pending.discard)

    page.on("frameattached", handler)
    page.on("framenavigated", handler)

    def detach() -> None:
        page.remove_listener("frameattached", handler)
        page.remove_listener("framenavigated", handler)

    return detach


__all__ = [
    "MUTATION_BINDING",
    "OBSERVER_SCRIPT",
    "PlaywrightChangeFeed",
    "PlaywrightDocumentSource",
    "SET_ATTRIBUTE_SCRIPT",
    "SNAPSHOT_SCRIPT",
    "attach_network_capture",
    "frame_key",
    "watch_frames",
]
