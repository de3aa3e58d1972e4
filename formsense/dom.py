"""Snapshot element model shared by static parsing and live page capture.

Every document keeps a BeautifulSoup mirror of its element tree. Selector
queries run through soupsieve against that mirror and map back to nodes. A
node and its mirror tag share one attribute dict, so attribute writes are
visible to later queries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from itertools import count
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional
from urllib.parse import urljoin, urlparse

import soupsieve
from bs4 import BeautifulSoup, Tag
from bs4.element import NavigableString, PreformattedString

HTML_PARSER = "html.parser"
EMBEDDED_SCHEMES = ("about", "data", "blob")
FRAME_TAGS = {"iframe", "frame", "object", "embed"}
MAX_FRAME_NESTING = 16
DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 720

AttributeSink = Callable[["DomNode", str, Optional[str]], Awaitable[None]]


class SelectorError(ValueError):
    """Raised for selectors soupsieve cannot compile."""


@lru_cache(maxsize=512)
def compile_selector(selector: str) -> soupsieve.SoupSieve:
    if not selector or not selector.strip():
        raise SelectorError("empty selector")
    try:
        return soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as exc:
        raise SelectorError(str(exc)) from exc


def escape_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def attribute_selector(name: str, value: str, tag: str = "") -> str:
    return f'{tag}[{name}="{escape_value(value)}"]'


def _new_soup(markup: str = "") -> BeautifulSoup:
    # class stays a plain string, as in live snapshots
    return BeautifulSoup(markup, HTML_PARSER, multi_valued_attributes=None)


@dataclass(slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 and self.height <= 0


@dataclass(eq=False, slots=True)
class DomNode:
    """One element of a captured document.

    Nodes compare by identity so they can be used directly as dictionary keys
    and set members; two captures of the same page produce distinct nodes.
    """

    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["DomNode"] = field(default_factory=list)
    parent: Optional["DomNode"] = None
    text: str = ""
    rect: Optional[Rect] = None
    display: Optional[str] = None
    visibility: Optional[str] = None
    uid: Optional[str] = None
    document: Optional["DomDocument"] = None
    content: Optional["DomDocument"] = None
    content_error: Optional[str] = None
    element: Optional[Tag] = None

    def __repr__(self) -> str:
        ident = self.attrs.get("id")
        suffix = f"#{ident}" if ident else ""
        return f"<DomNode {self.tag}{suffix} uid={self.uid}>"

    def append(self, child: "DomNode") -> "DomNode":
        child.parent = self
        child.document = self.document
        self.children.append(child)
        if self.document is not None:
            self.document.adopt(child)
        return child

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attrs.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.attrs

    def set_attribute(self, name: str, value: str) -> None:
        self.attrs[name] = value
        if self.document is not None:
            self.document.record_write(self, name, value)

    @property
    def element_id(self) -> Optional[str]:
        return self.attrs.get("id") or None

    @property
    def classes(self) -> List[str]:
        return (self.attrs.get("class") or "").split()

    @property
    def role(self) -> str:
        return (self.attrs.get("role") or "").strip().lower()

    @property
    def depth(self) -> int:
        depth = 0
        node = self.parent
        while node is not None:
            depth += 1
            node = node.parent
        return depth

    def iter_descendants(self) -> Iterator["DomNode"]:
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def ancestors(self) -> Iterator["DomNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def contains(self, other: "DomNode") -> bool:
        node: Optional[DomNode] = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def text_content(self) -> str:
        parts = [self.text] if self.text else []
        for node in self.iter_descendants():
            if node.text:
                parts.append(node.text)
        return " ".join(" ".join(parts).split())

    def _mirror(self) -> Tag:
        if self.element is None or self.document is None:
            raise RuntimeError(f"{self!r} is not attached to a document")
        return self.element

    def matches(self, selector: str) -> bool:
        return compile_selector(selector).match(self._mirror())

    def closest(self, selector: str) -> Optional["DomNode"]:
        found = compile_selector(selector).closest(self._mirror())
        return self.document.node_for(found) if found is not None else None

    def query_all(self, selector: str) -> List["DomNode"]:
        found = compile_selector(selector).select(self._mirror())
        return self.document.nodes_for(found)

    def query(self, selector: str) -> Optional["DomNode"]:
        found = compile_selector(selector).select_one(self._mirror())
        return self.document.node_for(found) if found is not None else None

    def style_hidden(self) -> bool:
        return self.display == "none" or self.visibility in {"hidden", "collapse"}


@dataclass(eq=False)
class DomDocument:
    url: str
    root: DomNode
    origin: str = ""
    key: str = "0"
    viewport: Optional[Rect] = None
    host: Optional[DomNode] = None
    attribute_sink: Optional[AttributeSink] = None
    pending_writes: List[tuple] = field(default_factory=list)
    soup: Optional[BeautifulSoup] = field(default=None, repr=False)
    _by_tag: Dict[int, DomNode] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.origin:
            self.origin = origin_of(self.url)
        if self.soup is None:
            self.soup = _new_soup()
        self.adopt(self.root)

    def __repr__(self) -> str:
        return f"<DomDocument key={self.key} url={self.url}>"

    def adopt(self, node: DomNode) -> None:
        """Attach ``node`` and its subtree, building mirror tags where missing."""
        for member in (node, *node.iter_descendants()):
            member.document = self
            if member.element is None:
                member.element = self.soup.new_tag(member.tag)
                member.element.attrs = member.attrs
                parent_tag = member.parent.element if member.parent is not None else None
                (parent_tag if parent_tag is not None else self.soup).append(member.element)
            self._by_tag[id(member.element)] = member

    def node_for(self, tag: Tag) -> DomNode:
        return self._by_tag[id(tag)]

    def nodes_for(self, tags: Iterable[Tag]) -> List[DomNode]:
        return [self._by_tag[id(tag)] for tag in tags]

    @property
    def body(self) -> DomNode:
        if self.root.tag == "body":
            return self.root
        for node in self.root.iter_descendants():
            if node.tag == "body":
                return node
        return self.root

    @property
    def identity(self) -> str:
        return f"{self.origin}|{self.url}|{self.key}"

    def iter_elements(self) -> Iterator[DomNode]:
        yield self.root
        yield from self.root.iter_descendants()

    def get_element_by_id(self, element_id: str) -> Optional[DomNode]:
        for node in self.iter_elements():
            if node.attrs.get("id") == element_id:
                return node
        return None

    def query_all(self, selector: str) -> List[DomNode]:
        compiled = compile_selector(selector)
        found = self.nodes_for(compiled.select(self.root.element))
        if compiled.match(self.root.element):
            return [self.root, *found]
        return found

    def query(self, selector: str) -> Optional[DomNode]:
        found = self.query_all(selector)
        return found[0] if found else None

    def record_write(self, node: DomNode, name: str, value: Optional[str]) -> None:
        self.pending_writes.append((node, name, value))

    async def flush(self, logger: Optional[logging.Logger] = None) -> int:
        """Mirror pending attribute writes to the host page, if one is attached."""
        writes, self.pending_writes = self.pending_writes, []
        if self.attribute_sink is None:
            return 0
        flushed = 0
        for node, name, value in writes:
            try:
                await self.attribute_sink(node, name, value)
                flushed += 1
            except Exception as exc:  # noqa: BLE001
                if logger:
                    logger.debug("Attribute write %s on %r failed: %s", name, node, exc)
        return flushed

    @classmethod
    def from_snapshot(
        cls,
        payload: Mapping[str, Any],
        *,
        url: str,
        key: str = "0",
        origin: str = "",
        viewport: Optional[Rect] = None,
    ) -> "DomDocument":
        root = node_from_snapshot(payload)
        return cls(url=url, root=root, origin=origin, key=key, viewport=viewport)


def node_from_snapshot(payload: Mapping[str, Any]) -> DomNode:
    rect_payload = payload.get("rect")
    rect = None
    if isinstance(rect_payload, Mapping):
        rect = Rect(
            float(rect_payload.get("x", 0)),
            float(rect_payload.get("y", 0)),
            float(rect_payload.get("width", 0)),
            float(rect_payload.get("height", 0)),
        )
    node = DomNode(
        tag=str(payload.get("tag") or "div").lower(),
        attrs={str(k): str(v) for k, v in (payload.get("attrs") or {}).items()},
        text=str(payload.get("text") or ""),
        rect=rect,
        display=payload.get("display"),
        visibility=payload.get("visibility"),
        uid=payload.get("uid"),
    )
    for child_payload in payload.get("children") or []:
        node.append(node_from_snapshot(child_payload))
    return node


def origin_of(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme in EMBEDDED_SCHEMES or not parsed.scheme:
        return "null"
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{(parsed.hostname or '').lower()}{port}"


def is_embedded_url(url: str) -> bool:
    if not url:
        return True
    return urlparse(url).scheme in EMBEDDED_SCHEMES or url == "about:srcdoc"


def _parse_style(value: str) -> Dict[str, str]:
    declarations: Dict[str, str] = {}
    for chunk in value.split(";"):
        if ":" not in chunk:
            continue
        prop, _, raw = chunk.partition(":")
        declarations[prop.strip().lower()] = raw.strip().lower()
    return declarations


def _px(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    cleaned = value.replace("px", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def _apply_inline_style(node: DomNode) -> None:
    if "hidden" in node.attrs:
        node.display = "none"
    style = node.attrs.get("style")
    if not style:
        return
    declarations = _parse_style(style)
    if "display" in declarations:
        node.display = declarations["display"]
    if "visibility" in declarations:
        node.visibility = declarations["visibility"]
    width = _px(declarations.get("width"))
    height = _px(declarations.get("height"))
    if width is not None and height is not None:
        left = _px(declarations.get("left")) or 0.0
        top = _px(declarations.get("top")) or 0.0
        node.rect = Rect(left, top, width, height)


def _own_text(tag: Tag) -> str:
    pieces = [
        str(child).strip()
        for child in tag.children
        if isinstance(child, NavigableString) and not isinstance(child, PreformattedString)
    ]
    return " ".join(piece for piece in pieces if piece)


def _root_tag(soup: BeautifulSoup) -> Tag:
    html = soup.find("html", recursive=False)
    if isinstance(html, Tag):
        return html
    html = soup.new_tag("html")
    for child in list(soup.contents):
        html.append(child.extract())
    soup.append(html)
    return html


def _tree_from_soup(soup: BeautifulSoup, uid_prefix: str) -> DomNode:
    html = _root_tag(soup)
    root = DomNode(tag="html", attrs=html.attrs, text=_own_text(html), element=html)
    built: Dict[int, DomNode] = {id(html): root}
    uids = count(1)
    for tag in html.descendants:
        if not isinstance(tag, Tag):
            continue
        node = DomNode(
            tag=tag.name.lower(),
            attrs=tag.attrs,
            text=_own_text(tag),
            uid=f"{uid_prefix}{next(uids)}",
            element=tag,
        )
        _apply_inline_style(node)
        built[id(tag.parent)].append(node)
        built[id(tag)] = node
    return root


def parse_html(
    html: str,
    *,
    url: str = "about:blank",
    key: str = "0",
    frames: Optional[Mapping[str, str]] = None,
    origin: str = "",
    _depth: int = 0,
) -> DomDocument:
    """Parse markup into a :class:`DomDocument`.

    Inline ``style`` declarations provide display, visibility and, when both
    ``width`` and ``height`` are given in pixels, a layout box. Nested frames
    are filled from ``srcdoc`` or from ``frames`` (keyed by absolute URL).
    """

    soup = _new_soup(html)
    document = DomDocument(
        url=url,
        root=_tree_from_soup(soup, uid_prefix=f"{key}:"),
        origin=origin,
        key=key,
        viewport=Rect(0, 0, DEFAULT_VIEWPORT_WIDTH, DEFAULT_VIEWPORT_HEIGHT),
        soup=soup,
    )
    if _depth >= MAX_FRAME_NESTING:
        return document
    frame_index = 0
    for node in list(document.iter_elements()):
        if node.tag not in FRAME_TAGS:
            continue
        child_key = f"{key}.{frame_index}"
        frame_index += 1
        if "srcdoc" in node.attrs:
            child = parse_html(
                node.attrs["srcdoc"],
                url="about:srcdoc",
                key=child_key,
                frames=frames,
                origin=document.origin,
                _depth=_depth + 1,
            )
        else:
            source = node.attrs.get("src") or node.attrs.get("data") or ""
            target = urljoin(url, source) if source else "about:blank"
            if frames and target in frames:
                child = parse_html(
                    frames[target],
                    url=target,
                    key=child_key,
                    frames=frames,
                    _depth=_depth + 1,
                )
            elif not source and node.tag in {"iframe", "frame"}:
                child = parse_html(
                    "",
                    url="about:blank",
                    key=child_key,
                    origin=document.origin,
                    _depth=_depth + 1,
                )
            else:
                continue
        child.host = node
        node.content = child
    return document


class StaticDocumentSource:
    """Document source over fixed markup, or over an already built document.

    With ``fresh=True`` the markup is parsed again on every load, the way a
    live page yields a new snapshot each time it is captured.
    """

    def __init__(
        self,
        html: Optional[str] = None,
        *,
        url: str = "about:blank",
        frames: Optional[Mapping[str, str]] = None,
        document: Optional[DomDocument] = None,
        fresh: bool = False,
    ) -> None:
        if html is None and document is None:
            raise ValueError("StaticDocumentSource needs html or a document")
        if fresh and html is None:
            raise ValueError("fresh loads need markup to re-parse")
        self._html = html
        self._url = url
        self._frames = frames
        self._document = document
        self.fresh = fresh
        self.loads = 0

    async def load(self) -> DomDocument:
        self.loads += 1
        if self._document is None or self.fresh:
            self._document = parse_html(self._html or "", url=self._url, frames=self._frames)
        return self._document


__all__ = [
    "Rect",
    "DomNode",
    "DomDocument",
    "SelectorError",
    "compile_selector",
    "attribute_selector",
    "parse_html",
    "origin_of",
    "is_embedded_url",
    "StaticDocumentSource",
]
