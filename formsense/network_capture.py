"""Passively observe responses that look like form schema definitions."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern
from urllib.parse import urlparse

import tldextract

from .schema_payload import InterceptedSchema, normalize_schema_payload

FORM_SCHEMA_URL_PATTERNS = (
    r"/api/(v\d+/)?forms?\b",
    r"/forms?/[^/?#]+/(schema|definition|fields|config|questions)",
    r"form[-_]?(schema|definition|config|builder|data)",
    r"/schemas?/",
    r"/surveys?(/|\?|$)",
    r"/questionnaires?\b",
    r"/wizard\b",
    r"/(steps|flow|onboarding)/",
    r"/fields(\.json)?(\?|$)",
    r"graphql.*form",
    r"docs\.google\.com/forms",
)
FORM_VENDOR_DOMAINS = {
    "typeform.com",
    "jotform.com",
    "formstack.com",
    "hsforms.com",
    "hsforms.net",
    "surveymonkey.com",
    "wufoo.com",
    "cognitoforms.com",
    "formsite.com",
    "tally.so",
    "paperform.co",
    "123formbuilder.com",
    "qualtrics.com",
    "formassembly.com",
    "formio.com",
}
MAX_BODY_CHARS = 2_000_000

_TLD_EXTRACTOR = tldextract.TLDExtract(suffix_list_urls=None)


def _registrable_domain(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return ""
    extracted = _TLD_EXTRACTOR(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


@dataclass(slots=True)
class SchemaSignal:
    url: str
    status: int
    document_key: str
    schema: InterceptedSchema

    def to_dict(self) -> dict:
        payload = self.schema.to_dict()
        payload.update({"status": self.status, "document_key": self.document_key})
        return payload


SchemaCallback = Callable[[SchemaSignal], None]


@dataclass
class NetworkCapture:
    """Response observer that turns schema-like JSON into detection signals.

    Used as a context manager over a Playwright page (or anything exposing
    ``on``/``off`` for ``"response"``), or fed directly through
    :meth:`observe`.
    """

    page: Any = None
    patterns: Iterable[str] = FORM_SCHEMA_URL_PATTERNS
    vendor_domains: Iterable[str] = tuple(FORM_VENDOR_DOMAINS)
    document_key_for: Optional[Callable[[Any], str]] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("formsense.network"))
    signals: List[SchemaSignal] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._compiled: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in self.patterns]
        self._vendors = {domain.lower() for domain in self.vendor_domains}
        self._callbacks: Dict[int, SchemaCallback] = {}
        self._next_token = 0
        self._handler = None
        self._pending: set = set()

    def matches_url(self, url: str) -> bool:
        if not url:
            return False
        if any(pattern.search(url) for pattern in self._compiled):
            return True
        return _registrable_domain(url) in self._vendors

    def on_schema(self, callback: SchemaCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._callbacks[token] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(token, None)

        return unsubscribe

    def has_schema_signal(self, document_key: Optional[str] = None) -> bool:
        if document_key is None:
            return bool(self.signals)
        return any(signal.document_key == document_key for signal in self.signals)

    def clear(self) -> None:
        self.signals.clear()

    def observe(
        self,
        url: str,
        status: int,
        content_type: Optional[str],
        body: Optional[str],
        document_key: str = "0",
    ) -> Optional[SchemaSignal]:
        """Record a signal for a matching 2xx JSON body; failures yield ``None``."""
        try:
            if not self.matches_url(url) or not 200 <= int(status) < 300:
                return None
            if body is None or len(body) > MAX_BODY_CHARS:
                return None
            kind = (content_type or "").lower()
            stripped = body.lstrip()
            if "json" not in kind and not stripped.startswith(("{", "[")):
                return None
            payload = json.loads(body)
            schema = normalize_schema_payload(payload, url=url)
        except (TypeError, ValueError, RecursionError) as exc:
            self.logger.debug("Ignoring unparseable schema response %s: %s", url, exc)
            return None
        if schema is None:
            self.logger.debug("Response %s did not look like a form schema", url)
            return None
        signal = SchemaSignal(url=url, status=int(status), document_key=document_key, schema=schema)
        self.signals.append(signal)
        self.logger.info(
            "Captured form schema from %s (%s fields, %s steps)",
            url,
            schema.field_count,
            len(schema.steps),
        )
        for callback in list(self._callbacks.values()):
            try:
                callback(signal)
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Schema callback failed: %s", exc)
        return signal

    async def observe_response(self, response: Any) -> Optional[SchemaSignal]:
        url = getattr(response, "url", "") or ""
        try:
            if not self.matches_url(url):
                return None
            status = int(getattr(response, "status", 0) or 0)
            if not 200 <= status < 300:
                return None
            headers = getattr(response, "headers", None) or {}
            content_type = headers.get("content-type")
            body = await response.text()
            document_key = "0"
            if self.document_key_for is not None:
                document_key = self.document_key_for(response)
        except Exception as exc:  # noqa: BLE001
            self.logger.debug("Unable to read response %s: %s", url, exc)
            return None
        return self.observe(url, status, content_type, body, document_key)

    def __enter__(self) -> "NetworkCapture":
        if self.page is None:
            raise RuntimeError("NetworkCapture needs a page to attach to")

        def handler(response):
            task = asyncio.ensure_future(self.observe_response(response))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        self._handler = handler
        self.page.on("response", handler)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._handler:
            for method_name in ("off", "remove_listener"):
                remover = getattr(self.page, method_name, None)
                if remover:
                    remover("response", self._handler)
                    break
            self._handler = None

    async def drain(self) -> None:
        """Wait for response bodies still being read."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = [
    "FORM_SCHEMA_URL_PATTERNS",
    "FORM_VENDOR_DOMAINS",
    "NetworkCapture",
    "SchemaSignal",
]
