from formsense.config import ScoringWeights
from formsense.dom import parse_html
from formsense.scoring import (
    Candidate,
    CandidateScorer,
    DEFAULT_RULES,
    ScoringContext,
    collect_buttons,
    collect_field_elements,
    evaluate_rules,
    find_expanded_container,
    find_explicit_containers,
    is_visible,
    merge_candidates,
    score_element,
)

ALIGNED = (
    '<div id="block">'
    '<input type="text" name="a" style="left: 0px; top: 0px; width: 200px; height: 30px">'
    '<input type="text" name="b" style="left: 0px; top: 40px; width: 200px; height: 30px">'
    "</div>"
)
SCATTERED = (
    '<div id="block">'
    '<input type="text" name="a" style="left: 0px; top: 0px; width: 200px; height: 30px">'
    '<input type="text" name="b" style="left: 300px; top: 400px; width: 200px; height: 30px">'
    "</div>"
)


def test_hidden_and_disabled_controls_are_not_fields():
    doc = parse_html(
        "<form>"
        '<input name="visible">'
        '<input type="hidden" name="token">'
        '<input name="gone" style="display: none">'
        '<div hidden><input name="inside-hidden"></div>'
        '<input name="off" disabled>'
        '<input name="empty" style="width: 0px; height: 0px">'
        '<button type="submit">Send</button>'
        "</form>"
    )
    names = [node.get("name") for node in collect_field_elements(doc.query("form"))]
    assert names == ["visible"]
    assert len(collect_buttons(doc.query("form"))) == 1


def test_offscreen_field_counts_only_with_visible_label():
    doc = parse_html(
        '<input id="labelled" style="left: -9999px; top: 0px; width: 100px; height: 20px">'
        '<label for="labelled">Email</label>'
        '<input id="bare" style="left: -9999px; top: 0px; width: 100px; height: 20px">'
    )
    assert is_visible(doc.get_element_by_id("labelled"))
    assert not is_visible(doc.get_element_by_id("bare"))


def test_role_widget_wrapping_native_control_is_counted_once():
    doc = parse_html(
        '<div id="scope"><div role="combobox"><input name="city"></div>'
        '<div contenteditable="true"></div></div>'
    )
    fields = collect_field_elements(doc.get_element_by_id("scope"))
    assert [node.tag for node in fields] == ["input", "div"]


def test_visual_consistency_raises_score():
    aligned = score_element(parse_html(ALIGNED).get_element_by_id("block"))
    scattered = score_element(parse_html(SCATTERED).get_element_by_id("block"))

    assert aligned.score == 59
    assert scattered.score == 39
    assert "left edges aligned" in aligned.reasons
    assert "left edges aligned" not in scattered.reasons


def test_visual_layout_decides_retention_at_strict_threshold():
    scorer = CandidateScorer()
    aligned_doc = parse_html(ALIGNED)
    scattered_doc = parse_html(SCATTERED)

    assert [c.element.element_id for c in scorer.score_document(aligned_doc, 0.4)] == ["block"]
    assert len(scorer.score_document(scattered_doc, 0.4)) == 1
    assert [c.element.element_id for c in scorer.score_document(aligned_doc, 0.8)] == ["block"]
    assert scorer.score_document(scattered_doc, 0.8) == []
    assert len(scorer.scan_document(aligned_doc, 0.9)) == 1
    assert scorer.scan_document(aligned_doc, 1.0) == []


def test_visual_lens_is_capped():
    doc = parse_html(ALIGNED)
    weights = ScoringWeights(consistent_spacing=50.0)
    element = doc.get_element_by_id("block")
    context = ScoringContext(
        element=element,
        fields=collect_field_elements(element),
        buttons=[],
        weights=weights,
    )
    _, _, lens_totals = evaluate_rules(DEFAULT_RULES, context)
    assert lens_totals["visual"] == weights.visual_cap


def test_explicit_form_needs_one_field_implicit_needs_two():
    scorer = CandidateScorer()
    form_doc = parse_html('<form><input name="q"></form>')
    div_doc = parse_html('<div><input name="q"></div>')

    kept = scorer.score_document(form_doc, 0.8)
    assert len(kept) == 1 and kept[0].explicit and kept[0].score == 53
    assert scorer.scan_document(div_doc, 0.0) == []


def test_layout_vocabulary_is_penalised():
    doc = parse_html(
        '<div class="site-header"><input type="search" name="q"><input name="x"></div>'
    )
    candidate = score_element(doc.query("div"))
    assert any(reason.startswith("layout vocabulary") for reason in candidate.reasons)


def test_hiding_a_field_never_raises_the_score():
    visible = parse_html(
        '<form><input name="a"><input type="email" name="b"><button>Go</button></form>'
    )
    hidden = parse_html(
        '<form><input name="a"><input type="email" name="b" style="display: none">'
        "<button>Go</button></form>"
    )
    assert score_element(hidden.query("form")).score <= score_element(visible.query("form")).score


def test_merge_keeps_best_score_and_all_reasons():
    doc = parse_html("<form><input></form>")
    form = doc.query("form")
    merged = merge_candidates(
        [Candidate(form, 40.0, 1, ["a"], explicit=True)],
        [Candidate(form, 55.0, 1, ["b", "a"])],
    )
    assert len(merged) == 1
    assert merged[0].score == 55.0
    assert merged[0].reasons == ["a", "b"]
    assert merged[0].explicit


def test_vendor_container_is_boosted_on_its_own_host():
    markup = '<div class="freebirdFormviewerViewFormCard"><input name="q1"><input name="q2"></div>'
    hosted = parse_html(markup, url="https://docs.google.com/forms/d/abc/viewform")
    elsewhere = parse_html(markup, url="https://example.com/forms/d/abc/viewform")

    boosted = score_element(hosted.query("div"))
    plain = score_element(elsewhere.query("div"))

    assert boosted.score - plain.score == 100
    assert "Google Forms container" in boosted.reasons
    assert "Google Forms container" not in plain.reasons


def test_vendor_selector_joins_explicit_discovery():
    markup = '<div data-qa="form"><input name="q1"></div>'
    typeform = parse_html(markup, url="https://acme.typeform.com/to/xyz")
    other = parse_html(markup, url="https://nottypeform.example/to/xyz")

    assert [node.get("data-qa") for node in find_explicit_containers(typeform)] == ["form"]
    assert find_explicit_containers(other) == []


def test_expanded_container_needs_noticeably_more_fields():
    doc = parse_html(
        "<html><body>"
        '<section id="outer"><div id="inner"><input name="a"><input name="b"></div>'
        '<input name="c"></section>'
        '<main id="page"><div id="lone"><input name="d"><input name="e"></div></main>'
        "</body></html>"
    )

    assert find_expanded_container(doc.get_element_by_id("inner")).element_id == "outer"
    assert find_expanded_container(doc.get_element_by_id("lone")) is None
