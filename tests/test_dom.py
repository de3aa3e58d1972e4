import asyncio

import pytest

from formsense.dom import (
    DomDocument,
    Rect,
    SelectorError,
    StaticDocumentSource,
    attribute_selector,
    origin_of,
    parse_html,
)


def test_inline_style_provides_layout_and_visibility():
    doc = parse_html(
        '<div style="left: 10px; top: 20px; width: 300px; height: 40px"></div>'
        '<p hidden></p><span style="visibility: hidden"></span>'
    )
    assert doc.query("div").rect == Rect(10, 20, 300, 40)
    assert doc.query("p").display == "none"
    assert doc.query("span").visibility == "hidden"
    assert doc.query("span").rect is None


def test_frames_are_linked_to_their_hosts():
    doc = parse_html(
        '<iframe id="inline" srcdoc="<form><input name=a></form>"></iframe>'
        '<iframe id="remote" src="/child"></iframe>',
        url="https://example.com/page",
        frames={"https://example.com/child": "<input name=b>"},
    )
    inline = doc.get_element_by_id("inline")
    remote = doc.get_element_by_id("remote")

    assert inline.content.url == "about:srcdoc"
    assert inline.content.origin == "https://example.com"
    assert inline.content.host is inline
    assert inline.content.key == "0.0"
    assert remote.content.url == "https://example.com/child"
    assert remote.content.key == "0.1"
    assert remote.content.query("input").uid == "0.1:1"


def test_origin_of_treats_embedded_schemes_as_opaque():
    assert origin_of("https://Example.com:8443/a?b") == "https://example.com:8443"
    assert origin_of("about:blank") == "null"
    assert origin_of("data:text/html,hi") == "null"


def test_attribute_writes_are_flushed_to_sink():
    doc = parse_html("<form><input name=a></form>")
    written = []

    async def sink(node, name, value):
        written.append((node.tag, name, value))

    doc.attribute_sink = sink
    doc.query("input").set_attribute("data-formsense-id", "field-1")

    flushed = asyncio.run(doc.flush())

    assert flushed == 1
    assert written == [("input", "data-formsense-id", "field-1")]
    assert doc.pending_writes == []


def test_flush_without_sink_drops_pending_writes():
    doc = parse_html("<input name=a>")
    doc.query("input").set_attribute("data-x", "1")
    assert asyncio.run(doc.flush()) == 0
    assert doc.pending_writes == []
    assert doc.query("input").get("data-x") == "1"


def test_static_source_parses_once():
    source = StaticDocumentSource("<form><input></form>", url="https://example.com/")

    async def load_twice():
        return await source.load(), await source.load()

    first, second = asyncio.run(load_twice())
    assert first is second
    assert source.loads == 2


def test_fresh_source_returns_a_new_snapshot_per_load():
    source = StaticDocumentSource("<form><input></form>", fresh=True)

    async def load_twice():
        return await source.load(), await source.load()

    first, second = asyncio.run(load_twice())
    assert first is not second
    assert first.query("input").uid == second.query("input").uid == "0:2"


SELECTOR_DOC = (
    '<div id="wrap" class="Signup-Form">'
    '<form><input name="email" type="email"><input type="text"></form>'
    '<p><input name="q"></p>'
    "</div>"
)


def test_attribute_selectors_respect_case_flag():
    doc = parse_html(SELECTOR_DOC)
    assert doc.query("[class*=signup i]").element_id == "wrap"
    assert doc.query("[class*=signup]") is None
    assert [n.get("name") for n in doc.query_all("input[name^=em]")] == ["email"]
    assert len(doc.query_all('[type$="ail"]')) == 1


def test_combinators_and_negation():
    doc = parse_html(SELECTOR_DOC)
    assert len(doc.query_all("form > input")) == 2
    assert len(doc.query_all("div input")) == 3
    assert doc.query_all("div > input") == []
    assert len(doc.query_all("input:not([type])")) == 1
    assert [node.tag for node in doc.query_all("form, p")] == ["form", "p"]
    assert doc.query("input[name=q]").closest("div").element_id == "wrap"


def test_invalid_selector_raises_value_error():
    doc = parse_html(SELECTOR_DOC)
    with pytest.raises(SelectorError):
        doc.query_all("input:frobnicate")
    with pytest.raises(ValueError):
        doc.query_all("input[")


def test_attribute_writes_are_visible_to_selectors():
    doc = parse_html(SELECTOR_DOC)
    doc.query("input[name=q]").set_attribute("data-formsense-id", "field-9")

    assert doc.query(attribute_selector("data-formsense-id", "field-9")).get("name") == "q"


def test_attribute_selector_escapes_quotes():
    doc = parse_html("<input name='say \"hi\"'><input name='other'>")
    selector = attribute_selector("name", 'say "hi"', "input")
    assert doc.query(selector) is doc.query("input")


def test_snapshot_documents_answer_selectors():
    document = DomDocument.from_snapshot(
        {
            "tag": "html",
            "children": [
                {
                    "tag": "body",
                    "children": [
                        {"tag": "form", "uid": "fs-3", "attrs": {"class": "signup wide"}},
                        {"tag": "input", "uid": "fs-4", "attrs": {"name": "email"}},
                    ],
                }
            ],
        },
        url="https://example.com/",
    )

    assert document.query("form.signup").uid == "fs-3"
    assert document.query("body > input[name=email]").uid == "fs-4"
    assert document.root.matches("html")
