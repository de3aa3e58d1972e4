"""Enumerate a root document and every reachable nested document."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .dom import DomDocument, DomNode, is_embedded_url

FRAME_HOST_TAGS = ("iframe", "frame", "object", "embed")
INACCESSIBLE_ATTR = "data-formsense-inaccessible"
CROSS_ORIGIN_ATTR = "data-formsense-cross-origin"

DocumentCallback = Callable[[DomDocument], None]


@dataclass(slots=True)
class TraversalReport:
    documents: int = 0
    inaccessible_count: int = 0
    cross_origin_urls: List[str] = field(default_factory=list)
    pending_hosts: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "documents": self.documents,
            "inaccessible_count": self.inaccessible_count,
            "cross_origin_urls": list(self.cross_origin_urls),
            "pending_hosts": self.pending_hosts,
            "errors": list(self.errors),
        }


class FrameTraversal:
    """Breadth-first walk over nested documents with a visited set.

    Documents are identified by ``origin|url|key``. Hosts whose content cannot
    be inspected are flagged with a marker attribute and counted in
    :attr:`report`, never raised.
    """

    def __init__(
        self,
        *,
        same_origin_only: bool = True,
        max_depth: int = 8,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.same_origin_only = same_origin_only
        self.max_depth = max_depth
        self.logger = logger or logging.getLogger("formsense.frames")
        self.report = TraversalReport()
        self._known: Set[str] = set()
        self._callbacks: Dict[int, DocumentCallback] = {}
        self._next_token = 0

    def on_new_document(self, callback: DocumentCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._callbacks[token] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(token, None)

        return unsubscribe

    def reset(self) -> None:
        self._known.clear()
        self.report = TraversalReport()

    def collect(self, root: DomDocument) -> List[DomDocument]:
        documents = self._walk(root)
        self._known.update(document.identity for document in documents)
        return documents

    def refresh(self, root: DomDocument) -> List[DomDocument]:
        """Re-enumerate and notify subscribers about documents not seen before."""
        documents = self._walk(root)
        fresh = [document for document in documents if document.identity not in self._known]
        self._known.update(document.identity for document in documents)
        for document in fresh:
            self.logger.debug("New document discovered: %s", document.url)
            for callback in list(self._callbacks.values()):
                try:
                    callback(document)
                except Exception as exc:  # noqa: BLE001
                    self.logger.debug("New-document callback failed: %s", exc)
        return fresh

    def _walk(self, root: DomDocument) -> List[DomDocument]:
        report = TraversalReport()
        documents: List[DomDocument] = []
        visited: Set[str] = set()
        seen_objects: Set[int] = set()
        queue = deque([(root, 0)])
        while queue:
            document, depth = queue.popleft()
            if document.identity in visited or id(document) in seen_objects:
                continue
            visited.add(document.identity)
            seen_objects.add(id(document))
            documents.append(document)
            if depth >= self.max_depth:
                self.logger.debug("Frame depth limit reached at %s", document.url)
                continue
            for host in self._frame_hosts(document, report):
                child = self._accessible_content(document, host, report)
                if child is not None:
                    queue.append((child, depth + 1))
        report.documents = len(documents)
        self.report = report
        return documents

    def _frame_hosts(self, document: DomDocument, report: TraversalReport) -> List[DomNode]:
        try:
            return [node for node in document.iter_elements() if node.tag in FRAME_HOST_TAGS]
        except Exception as exc:  # noqa: BLE001
            report.errors.append(f"{document.url}: {exc}")
            self.logger.debug("Unable to enumerate frames in %s: %s", document.url, exc)
            return []

    def _accessible_content(
        self, parent: DomDocument, host: DomNode, report: TraversalReport
    ) -> Optional[DomDocument]:
        if host.content_error:
            self._flag(host, INACCESSIBLE_ATTR)
            report.inaccessible_count += 1
            report.errors.append(host.content_error)
            self.logger.debug("Frame host %r is inaccessible: %s", host, host.content_error)
            return None
        child = host.content
        if child is None:
            source = host.get("src") or host.get("data") or ""
            if host.tag in {"iframe", "frame"} and source and not is_embedded_url(source):
                report.pending_hosts += 1
            return None
        if is_embedded_url(child.url):
            return child
        if self.same_origin_only and child.origin != parent.origin:
            self._flag(host, CROSS_ORIGIN_ATTR)
            report.inaccessible_count += 1
            report.cross_origin_urls.append(child.url)
            self.logger.debug("Skipping cross-origin frame %s", child.url)
            return None
        return child

    def _flag(self, host: DomNode, attribute: str) -> None:
        if host.get(attribute) != "true":
            host.set_attribute(attribute, "true")


__all__ = [
    "FRAME_HOST_TAGS",
    "INACCESSIBLE_ATTR",
    "CROSS_ORIGIN_ATTR",
    "TraversalReport",
    "FrameTraversal",
]
