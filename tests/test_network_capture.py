import asyncio
import json

from formsense.network_capture import NetworkCapture

SCHEMA_BODY = json.dumps(
    {"data": {"fields": [{"name": "email", "type": "email"}, {"name": "message", "type": "long_text"}]}}
)


class DummyPage:
    def __init__(self) -> None:
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    def off(self, event, handler):
        if self.handlers.get(event) is handler:
            del self.handlers[event]


class DummyResponse:
    def __init__(self, url, body, status=200, content_type="application/json") -> None:
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type}
        self._body = body

    async def text(self):
        return self._body


def test_matching_json_response_becomes_a_signal():
    capture = NetworkCapture()
    seen = []
    capture.on_schema(seen.append)

    signal = capture.observe("https://example.com/api/forms/1", 200, "application/json", SCHEMA_BODY)

    assert signal is not None
    assert signal.schema.field_count == 2
    assert seen == [signal]
    assert capture.has_schema_signal()
    assert capture.has_schema_signal("0")
    assert not capture.has_schema_signal("0.1")


def test_unrelated_or_failed_responses_are_ignored():
    capture = NetworkCapture()

    assert capture.observe("https://example.com/static/app.js", 200, "application/json", SCHEMA_BODY) is None
    assert capture.observe("https://example.com/api/forms/1", 404, "application/json", SCHEMA_BODY) is None
    assert capture.observe("https://example.com/api/forms/1", 200, "application/json", "{not json") is None
    assert capture.observe("https://example.com/api/forms/1", 200, "text/html", "<html></html>") is None
    assert capture.observe("https://example.com/api/forms/1", 200, "application/json", '{"ok": true}') is None
    assert not capture.has_schema_signal()


def test_deeply_nested_body_is_ignored():
    capture = NetworkCapture()
    body = "[" * 200_000 + "]" * 200_000

    assert capture.observe("https://example.com/api/forms/1", 200, "application/json", body) is None
    assert not capture.has_schema_signal()


def test_vendor_domains_match_without_url_pattern():
    capture = NetworkCapture()
    assert capture.matches_url("https://api.typeform.com/v1/abc")
    assert not capture.matches_url("https://typeform.example.org/v1/abc")


def test_unsubscribed_callbacks_are_not_called():
    capture = NetworkCapture()
    seen = []
    unsubscribe = capture.on_schema(seen.append)
    unsubscribe()

    capture.observe("https://example.com/api/forms/1", 200, "application/json", SCHEMA_BODY)

    assert seen == []
    assert len(capture.signals) == 1


def test_page_responses_are_observed_while_attached():
    page = DummyPage()

    async def scenario():
        with NetworkCapture(page=page, document_key_for=lambda response: "0.2") as capture:
            page.handlers["response"](DummyResponse("https://example.com/api/forms/1", SCHEMA_BODY))
            page.handlers["response"](DummyResponse("https://example.com/api/forms/2", SCHEMA_BODY, status=500))
            await capture.drain()
        return capture

    capture = asyncio.run(scenario())

    assert [signal.document_key for signal in capture.signals] == ["0.2"]
    assert "response" not in page.handlers
