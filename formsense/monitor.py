"""Structural change tracking and the stability wait used between passes."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from .config import StabilityConfig
from .dom import DomDocument

LOADING_PATTERN = re.compile(
    r"(?<![a-z])(loading|loader|spinner|skeleton|shimmer|busy|progress-indicator)(?![a-z])",
    re.IGNORECASE,
)
READINESS_ATTRIBUTES = {"disabled", "aria-disabled", "aria-busy"}
INTERACTIVE_TAGS = {"input", "select", "textarea", "button"}
CONTAINER_TAGS = {"form", "fieldset"}
INTERACTIVE_ROLES = {"textbox", "combobox", "checkbox", "radio", "listbox", "form", "group"}


@dataclass(slots=True)
class NodeSummary:
    """Enough of an added or removed node to classify a change."""

    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    contains_field: bool = False

    @classmethod
    def from_payload(cls, payload: dict) -> "NodeSummary":
        return cls(
            tag=str(payload.get("tag") or "").lower(),
            attrs={str(k): str(v) for k, v in (payload.get("attrs") or {}).items()},
            contains_field=bool(payload.get("containsField")),
        )


@dataclass(slots=True)
class MutationRecord:
    kind: str
    target: NodeSummary
    document_key: str = "0"
    attribute_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    added: List[NodeSummary] = field(default_factory=list)
    removed: List[NodeSummary] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> "MutationRecord":
        return cls(
            kind=str(payload.get("type") or payload.get("kind") or ""),
            target=NodeSummary.from_payload(payload.get("target") or {}),
            document_key=str(payload.get("documentKey") or "0"),
            attribute_name=payload.get("attributeName"),
            old_value=payload.get("oldValue"),
            new_value=payload.get("newValue"),
            added=[NodeSummary.from_payload(item) for item in payload.get("added") or []],
            removed=[NodeSummary.from_payload(item) for item in payload.get("removed") or []],
        )


MutationCallback = Callable[[Sequence[MutationRecord]], None]


class ChangeFeed:
    """Subtree change notifications delivered in batches.

    Host adapters implement :meth:`subscribe`; the returned callable removes
    the subscription.
    """

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        raise NotImplementedError


class ManualChangeFeed(ChangeFeed):
    """In-process feed; batches are pushed with :meth:`emit`."""

    def __init__(self) -> None:
        self._subscribers: Dict[int, MutationCallback] = {}
        self._next_token = 0

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, records: Iterable[MutationRecord]) -> None:
        batch = list(records)
        for callback in list(self._subscribers.values()):
            callback(batch)


def _looks_like_loader(node: NodeSummary) -> bool:
    if node.attrs.get("aria-busy") == "true" or node.attrs.get("role") == "progressbar":
        return True
    marker = " ".join(
        [node.attrs.get("class", ""), node.attrs.get("id", ""), node.attrs.get("data-testid", "")]
    )
    return bool(marker.strip()) and bool(LOADING_PATTERN.search(marker))


def _is_form_material(node: NodeSummary) -> bool:
    if node.contains_field or node.tag in INTERACTIVE_TAGS or node.tag in CONTAINER_TAGS:
        return True
    if node.attrs.get("role", "").lower() in INTERACTIVE_ROLES:
        return True
    return "contenteditable" in node.attrs


def classify_record(record: MutationRecord, config: StabilityConfig) -> Optional[float]:
    """Return the confidence delta for a qualifying record, ``None`` otherwise."""
    if record.kind == "childList":
        delta: Optional[float] = None
        if any(_looks_like_loader(node) for node in record.removed):
            delta = (delta or 0.0) + config.loader_removed_delta
        if any(_looks_like_loader(node) for node in record.added):
            delta = (delta or 0.0) + config.loader_added_delta
        if any(_is_form_material(node) for node in record.added):
            delta = (delta or 0.0) + config.readiness_delta
        return delta
    if record.kind == "attributes":
        name = (record.attribute_name or "").lower()
        if name in READINESS_ATTRIBUTES:
            cleared = record.new_value is None or record.new_value == "false"
            if cleared and record.old_value not in (None, "false"):
                return config.readiness_delta
            return None
        if name == "class":
            old_loader = bool(record.old_value and LOADING_PATTERN.search(record.old_value))
            new_loader = bool(record.new_value and LOADING_PATTERN.search(record.new_value))
            if old_loader and not new_loader:
                return config.loader_removed_delta
            if new_loader and not old_loader:
                return config.loader_added_delta
    return None


class StabilityTracker:
    """Rolling confidence and last qualifying change time for one document."""

    def __init__(self, document_key: str, config: StabilityConfig, now: float) -> None:
        self.document_key = document_key
        self.config = config
        self.confidence = config.initial_confidence
        self.last_change_time = now
        self.change_count = 0

    def apply(self, records: Iterable[MutationRecord], now: float) -> List[MutationRecord]:
        qualifying = []
        for record in records:
            delta = classify_record(record, self.config)
            if delta is None:
                continue
            self.confidence = min(1.0, max(0.0, self.confidence + delta))
            self.last_change_time = now
            self.change_count += 1
            qualifying.append(record)
        return qualifying

    def quiet_for(self, now: float) -> float:
        return now - self.last_change_time


ChangeListener = Callable[[str, Sequence[MutationRecord]], None]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class DynamicContentMonitor:
    """Tracks qualifying structural changes per document.

    ``clock`` returns milliseconds; ``sleep`` takes seconds, like
    :func:`asyncio.sleep`.
    """

    def __init__(
        self,
        config: Optional[StabilityConfig] = None,
        *,
        clock: Callable[[], float] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or StabilityConfig()
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or logging.getLogger("formsense.monitor")
        self._trackers: Dict[str, StabilityTracker] = {}
        self._feeds: Dict[int, Callable[[], None]] = {}
        self._listeners: Dict[int, ChangeListener] = {}
        self._next_token = 0

    def tracker(self, document_key: str) -> Optional[StabilityTracker]:
        return self._trackers.get(document_key)

    @property
    def tracked_keys(self) -> List[str]:
        return list(self._trackers)

    def watch(self, document: DomDocument, feed: ChangeFeed) -> StabilityTracker:
        tracker = self._trackers.get(document.key)
        if tracker is None:
            tracker = StabilityTracker(document.key, self.config, self.clock())
            self._trackers[document.key] = tracker
        if id(feed) not in self._feeds:
            self._feeds[id(feed)] = feed.subscribe(self._handle_batch)
        return tracker

    def unwatch(self, document_key: str) -> None:
        self._trackers.pop(document_key, None)

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def close(self) -> None:
        for unsubscribe in list(self._feeds.values()):
            try:
                unsubscribe()
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Failed to detach change feed: %s", exc)
        self._feeds.clear()
        self._trackers.clear()

    def _handle_batch(self, records: Sequence[MutationRecord]) -> None:
        by_document: Dict[str, List[MutationRecord]] = {}
        for record in records:
            by_document.setdefault(record.document_key, []).append(record)
        now = self.clock()
        for key, batch in by_document.items():
            tracker = self._trackers.get(key)
            if tracker is None:
                continue
            qualifying = tracker.apply(batch, now)
            if not qualifying:
                continue
            self.logger.debug(
                "Document %s: %s qualifying changes, confidence %.2f",
                key,
                len(qualifying),
                tracker.confidence,
            )
            for listener in list(self._listeners.values()):
                try:
                    listener(key, qualifying)
                except Exception as exc:  # noqa: BLE001
                    self.logger.debug("Change listener failed: %s", exc)

    def is_stable(self, documents: Iterable[DomDocument], now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        quiet = self.config.quiet_window_ms
        for document in documents:
            tracker = self._trackers.get(document.key)
            if tracker is not None and tracker.quiet_for(now) < quiet:
                return False
        return True

    async def wait_for_stability(
        self, documents: Sequence[DomDocument], max_wait_ms: float
    ) -> bool:
        """Wait until every tracked document has been quiet for the window.

        Returns ``True`` when stability was observed and ``False`` when
        ``max_wait_ms`` elapsed first; it never raises on timeout.
        """

        start = self.clock()
        documents = list(documents)
        while True:
            now = self.clock()
            if self.is_stable(documents, now):
                return True
            elapsed = now - start
            if elapsed >= max_wait_ms:
                self.logger.debug("Stability wait hit its %.0fms bound", max_wait_ms)
                return False
            step = min(self.config.poll_interval_ms, max_wait_ms - elapsed)
            await self.sleep(max(step, 0.0) / 1000.0)


__all__ = [
    "ChangeFeed",
    "DynamicContentMonitor",
    "ManualChangeFeed",
    "MutationRecord",
    "NodeSummary",
    "StabilityTracker",
    "classify_record",
]
