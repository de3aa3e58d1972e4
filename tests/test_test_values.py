from formsense.models import Field, FieldOption, FieldType, FieldValidation
from formsense.test_values import FieldSemantic, classify_field, sample_value


def test_keywords_decide_text_semantics():
    assert classify_field(Field(id="f", type=FieldType.TEXT, name="first_name")).semantic == (
        FieldSemantic.FIRST_NAME
    )
    assert classify_field(Field(id="f", type=FieldType.TEXT, label="Zip code")).semantic == (
        FieldSemantic.POSTAL_CODE
    )
    assert classify_field(Field(id="f", type=FieldType.EMAIL)).semantic == FieldSemantic.EMAIL


def test_sample_values_follow_type_and_semantics():
    assert sample_value(Field(id="f", type=FieldType.TEXT, label="Company")) == "Example Corp"
    assert sample_value(Field(id="f", type=FieldType.TEL, label="Phone")) == "+1 555 010 0100"
    assert sample_value(Field(id="f", type=FieldType.DATE)) == "2024-01-15"
    assert sample_value(Field(id="f", type=FieldType.FILE)) is None


def test_choice_fields_skip_placeholder_options():
    field = Field(
        id="f",
        type=FieldType.SELECT,
        options=[FieldOption("", "Choose one"), FieldOption("fr", "France")],
    )
    assert sample_value(field) == "fr"


def test_numeric_values_respect_bounds():
    assert sample_value(
        Field(id="f", type=FieldType.RANGE, validation=FieldValidation(min="10", max="20"))
    ) == "15"
    assert sample_value(
        Field(id="f", type=FieldType.NUMBER, validation=FieldValidation(min="18"))
    ) == "18"


def test_text_values_fit_length_limits():
    short = Field(id="f", type=FieldType.TEXT, validation=FieldValidation(max_length=4))
    padded = Field(id="f", type=FieldType.TEXT, validation=FieldValidation(min_length=20))

    assert sample_value(short) == "Samp"
    assert len(sample_value(padded)) == 20
