from formsense.dom import parse_html
from formsense.multistep import detect_multistep_containers, find_step_navigation

WIZARD = (
    '<div id="checkout" class="checkout-wizard"{style}>'
    '<div class="wizard-step" data-step="1"><input name="email"></div>'
    '<div class="wizard-step" data-step="2"><input name="card"></div>'
    '<button type="button">Next</button>'
    "</div>"
)


def test_wizard_container_is_found_once():
    doc = parse_html(WIZARD.format(style=""))

    matches = detect_multistep_containers(doc)

    assert len(matches) == 1
    match = matches[0]
    assert match.element.element_id == "checkout"
    assert match.score == 70
    assert "2 step regions" in match.reasons
    assert "contains step navigation" in match.reasons


def test_small_wizard_is_penalised():
    doc = parse_html(WIZARD.format(style=' style="width: 150px; height: 80px"'))

    match = detect_multistep_containers(doc)[0]

    assert match.score == 40
    assert "implausibly small" in match.reasons
    assert detect_multistep_containers(doc, min_score=41) == []


def test_plain_form_has_no_multistep_signal():
    doc = parse_html('<form><input name="q"><button>Search</button></form>')
    assert detect_multistep_containers(doc) == []


def test_navigation_is_recognised_by_text():
    doc = parse_html(
        '<button>Continue</button><a href="#">Back</a><button>Submit order</button>'
    )
    assert [node.text_content() for node in find_step_navigation(doc)] == ["Continue", "Back"]


def test_step_chrome_without_fields_is_dropped():
    doc = parse_html(
        '<div id="chrome" class="signup-wizard">'
        '<div class="step-indicator">Step 1 of 3</div>'
        '<button type="button">Next</button>'
        "</div>"
        '<form id="real"><input name="email"><input name="name"><button>Send</button></form>'
    )

    assert detect_multistep_containers(doc) == []
    loose = detect_multistep_containers(doc, min_fields=0)
    assert [match.element.element_id for match in loose] == ["chrome"]
