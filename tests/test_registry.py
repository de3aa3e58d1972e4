import asyncio

from formsense.dom import parse_html
from formsense.field_detection import MARKER_ATTR
from formsense.models import Field, FieldType
from formsense.registry import RegistryState, UnifiedFieldRegistry
from formsense.scoring import CandidateScorer

SIGNUP = (
    '<form id="signup">'
    '<label for="email">Email</label>'
    '<input id="email" type="email" name="email" required>'
    "<fieldset><legend>Plan</legend>"
    '<label><input type="radio" name="plan" value="basic"> Basic</label>'
    '<label><input type="radio" name="plan" value="pro" checked> Pro</label>'
    "</fieldset>"
    '<button type="submit">Join</button>'
    "</form>"
)


def _register(registry, container, container_id="form-0"):
    return asyncio.run(registry.register_container(container, container_id))


def test_register_container_splits_individual_and_grouped_fields():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()

    info = _register(registry, doc.query("form"))

    assert registry.state == RegistryState.POPULATED
    assert info.total_field_count == 3
    assert [f.id for f in info.all_fields] == ["field-1", "field-2", "field-3"]
    assert [f.label for f in info.individual_fields] == ["Email"]
    assert info.individual_fields[0].required
    assert [f.label for f in info.grouped_fields] == ["Plan", "Plan"]
    assert [o.text for o in info.grouped_fields[0].options] == ["Basic", "Pro"]
    assert info.grouped_fields[1].value == "pro"
    assert doc.get_element_by_id("email").get(MARKER_ATTR) == "field-1"


def test_field_buttons_data_has_one_entry_per_field_or_group():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    _register(registry, doc.query("form"))

    data = registry.get_field_buttons_data()

    assert [(d.type, d.group_id) for d in data] == [
        ("individual", None),
        ("grouped", "radio-group-plan"),
    ]
    assert data[0].element is doc.get_element_by_id("email")
    assert data[1].element.get("value") == "basic"
    assert len(data[1].field.options) == 2
    groups = registry.get_grouped_fields("form-0")
    assert len(groups) == 1 and len(groups[0].fields) == 2


def test_repeated_registration_returns_existing_info():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    first = _register(registry, doc.query("form"))
    second = _register(registry, doc.query("form"))

    assert [f.id for f in second.all_fields] == [f.id for f in first.all_fields]
    assert len(registry.get_all_fields()) == 3


def test_ids_survive_a_new_epoch():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    before = [f.id for f in _register(registry, doc.query("form")).all_fields]

    registry.clear()
    assert registry.state == RegistryState.EMPTY
    after = [f.id for f in _register(registry, doc.query("form"), "form-7").all_fields]

    assert after == before


def test_overlapping_container_cannot_claim_registered_elements():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    _register(registry, doc.query("form"))

    overlap = _register(registry, doc.query("fieldset"), "form-1")

    assert overlap.total_field_count == 0
    assert len(registry.get_all_fields()) == 3


def test_unresolved_field_is_retried_with_extended_strategies():
    doc = parse_html('<div id="search"><input placeholder="Search"></div>')

    def detector(container, **_kwargs):
        return [Field(id="ghost", type=FieldType.TEXT, placeholder="Search")]

    registry = UnifiedFieldRegistry(detector=detector)
    _register(registry, doc.get_element_by_id("search"))
    assert registry.get_field("ghost").element is None
    assert registry.diagnostics()["unresolved_fields"] == 1

    data = registry.get_field_buttons_data()

    assert len(data) == 1
    assert data[0].element is doc.query("input")
    assert doc.query("input").get(MARKER_ATTR) == "ghost"
    assert registry.diagnostics()["unresolved_fields"] == 0


def test_queries_return_copies():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    _register(registry, doc.query("form"))

    registry.get_all_fields()[0].label = "changed"
    registry.get_container_info("form-0").all_fields.clear()

    assert registry.get_field("field-1").field.label == "Email"
    assert registry.get_container_info("form-0").total_field_count == 3


def test_markers_are_mirrored_to_the_host():
    doc = parse_html(SIGNUP)
    written = []

    async def sink(node, name, value):
        written.append((name, value))

    doc.attribute_sink = sink
    _register(UnifiedFieldRegistry(), doc.query("form"))

    assert written == [(MARKER_ATTR, "field-1"), (MARKER_ATTR, "field-2"), (MARKER_ATTR, "field-3")]


def test_test_mode_adds_sample_values():
    doc = parse_html(SIGNUP)
    info = _register(UnifiedFieldRegistry(test_mode=True), doc.query("form"))

    assert info.individual_fields[0].test_value == "test@example.com"
    assert info.grouped_fields[0].test_value == "basic"


def test_checkbox_grouping_depends_on_shared_name():
    doc = parse_html(
        "<form>"
        '<input type="checkbox" name="terms">'
        '<input type="checkbox" name="tags" value="a">'
        '<input type="checkbox" name="tags" value="b">'
        "</form>"
    )
    registry = UnifiedFieldRegistry()
    info = _register(registry, doc.query("form"))

    assert [f.name for f in info.individual_fields] == ["terms"]
    assert [f.name for f in info.grouped_fields] == ["tags", "tags"]
    assert [g.group_id for g in registry.get_grouped_fields()] == ["checkbox-group-tags"]


def test_select_and_combobox_details():
    doc = parse_html(
        "<form>"
        '<span id="country-label">Country</span>'
        '<select name="country" aria-labelledby="country-label">'
        '<option value="">Choose</option><option value="us" selected>United States</option>'
        "</select>"
        '<div role="combobox" aria-controls="cities" aria-label="City"></div>'
        '<ul id="cities"><li role="option" data-value="nyc">New York</li></ul>'
        "</form>"
    )
    info = _register(UnifiedFieldRegistry(), doc.query("form"))

    country, city = info.all_fields
    assert country.type == FieldType.SELECT
    assert country.label == "Country"
    assert country.value == "us"
    assert [o.value for o in country.options][-1] == "us"
    assert city.type == FieldType.SELECT
    assert city.label == "City"
    assert [(o.value, o.text) for o in city.options] == [("nyc", "New York")]


def test_diagnostics_summarise_the_epoch():
    doc = parse_html(SIGNUP)
    registry = UnifiedFieldRegistry()
    _register(registry, doc.query("form"))

    diagnostics = registry.diagnostics()

    assert diagnostics["containers"] == 1
    assert diagnostics["groups"] == 1
    assert diagnostics["field_types"] == {"email": 1, "radio": 2}


def test_form_with_text_input_and_radio_pair():
    doc = parse_html(
        "<form>"
        '<input type="text" name="email">'
        '<input type="radio" name="plan" value="a">'
        '<input type="radio" name="plan" value="b">'
        "</form>"
    )
    candidates = CandidateScorer().score_document(doc, 0.8)
    assert [(c.element.tag, c.field_count) for c in candidates] == [("form", 3)]

    registry = UnifiedFieldRegistry()
    _register(registry, candidates[0].element)
    data = registry.get_field_buttons_data()

    assert len(registry.get_all_fields()) == 3
    assert [(d.type, d.field.type, d.group_id) for d in data] == [
        ("individual", FieldType.TEXT, None),
        ("grouped", FieldType.RADIO, "radio-group-plan"),
    ]
    assert data[1].element is doc.query_all("input[type=radio]")[0]
