"""Best-effort interpretation of observed form-schema JSON payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models import FieldOption, FieldType, FieldValidation

ENVELOPE_KEYS = ("data", "result", "payload", "response", "body", "form", "schema", "definition")
FIELD_ARRAY_KEYS = ("fields", "questions", "inputs", "elements", "items", "components", "formFields")
STEP_ARRAY_KEYS = ("steps", "pages", "sections", "screens", "stages")
MAX_DEPTH = 6

VENDOR_TYPE_MAP: Dict[str, FieldType] = {
    "short_text": FieldType.TEXT,
    "shorttext": FieldType.TEXT,
    "string": FieldType.TEXT,
    "input": FieldType.TEXT,
    "textfield": FieldType.TEXT,
    "text_field": FieldType.TEXT,
    "single_line_text": FieldType.TEXT,
    "name": FieldType.TEXT,
    "long_text": FieldType.TEXTAREA,
    "longtext": FieldType.TEXTAREA,
    "paragraph": FieldType.TEXTAREA,
    "multi_line_text": FieldType.TEXTAREA,
    "textarea": FieldType.TEXTAREA,
    "email": FieldType.EMAIL,
    "email_address": FieldType.EMAIL,
    "phone": FieldType.TEL,
    "phone_number": FieldType.TEL,
    "phonenumber": FieldType.TEL,
    "tel": FieldType.TEL,
    "website": FieldType.URL,
    "url": FieldType.URL,
    "link": FieldType.URL,
    "number": FieldType.NUMBER,
    "integer": FieldType.NUMBER,
    "numeric": FieldType.NUMBER,
    "decimal": FieldType.NUMBER,
    "rating": FieldType.RANGE,
    "opinion_scale": FieldType.RANGE,
    "nps": FieldType.RANGE,
    "scale": FieldType.RANGE,
    "slider": FieldType.RANGE,
    "range": FieldType.RANGE,
    "date": FieldType.DATE,
    "datepicker": FieldType.DATE,
    "datetime": FieldType.DATETIME_LOCAL,
    "time": FieldType.TIME,
    "multiple_choice": FieldType.RADIO,
    "single_choice": FieldType.RADIO,
    "yes_no": FieldType.RADIO,
    "radio": FieldType.RADIO,
    "radiogroup": FieldType.RADIO,
    "boolean": FieldType.CHECKBOX,
    "legal": FieldType.CHECKBOX,
    "checkbox": FieldType.CHECKBOX,
    "checkboxes": FieldType.CHECKBOX,
    "multi_select": FieldType.CHECKBOX,
    "dropdown": FieldType.SELECT,
    "select": FieldType.SELECT,
    "picklist": FieldType.SELECT,
    "combobox": FieldType.SELECT,
    "file_upload": FieldType.FILE,
    "fileupload": FieldType.FILE,
    "file": FieldType.FILE,
    "upload": FieldType.FILE,
    "password": FieldType.PASSWORD,
    "color": FieldType.COLOR,
    "hidden": FieldType.TEXT,
}


@dataclass(slots=True)
class SchemaField:
    id: Optional[str]
    name: Optional[str]
    type: FieldType
    label: Optional[str] = None
    options: List[FieldOption] = field(default_factory=list)
    required: bool = False
    validation: Optional[FieldValidation] = None


@dataclass(slots=True)
class SchemaStep:
    id: Optional[str]
    title: Optional[str]
    fields: List[SchemaField] = field(default_factory=list)


@dataclass(slots=True)
class InterceptedSchema:
    url: str
    fields: List[SchemaField] = field(default_factory=list)
    steps: List[SchemaStep] = field(default_factory=list)
    source_keys: List[str] = field(default_factory=list)

    @property
    def field_count(self) -> int:
        return len(self.fields) + sum(len(step.fields) for step in self.steps)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "field_count": self.field_count,
            "steps": len(self.steps),
            "source_keys": list(self.source_keys),
        }


def map_vendor_type(value: Any) -> FieldType:
    if not isinstance(value, str) or not value.strip():
        return FieldType.TEXT
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    if normalized in VENDOR_TYPE_MAP:
        return VENDOR_TYPE_MAP[normalized]
    return FieldType.from_input_type(normalized.replace("_", "-"))


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, dict):
        for key in ("text", "label", "title", "value", "en"):
            found = _text(value.get(key))
            if found:
                return found
    return None


def _first(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] not in (None, ""):
            return mapping[key]
    return None


def _options(raw: Dict[str, Any]) -> List[FieldOption]:
    source = _first(raw, "options", "choices", "values", "enum", "items")
    properties = raw.get("properties")
    if source is None and isinstance(properties, dict):
        source = properties.get("choices")
    if not isinstance(source, list):
        return []
    options: List[FieldOption] = []
    for item in source:
        if isinstance(item, dict):
            text = _text(_first(item, "label", "text", "title", "name", "value"))
            value = _text(_first(item, "value", "id", "ref", "label", "text"))
            if text or value:
                options.append(
                    FieldOption(value=value or text or "", text=text or value or "", selected=bool(item.get("selected")))
                )
        else:
            text = _text(item)
            if text:
                options.append(FieldOption(value=text, text=text))
    return options


def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _validation(raw: Dict[str, Any]) -> Optional[FieldValidation]:
    rules = raw.get("validations") or raw.get("validation") or raw.get("constraints") or {}
    if not isinstance(rules, dict):
        rules = {}
    merged = {**raw, **rules}
    validation = FieldValidation(
        pattern=_text(_first(merged, "pattern", "regex")),
        min_length=_int(_first(merged, "minLength", "min_length", "minlength")),
        max_length=_int(_first(merged, "maxLength", "max_length", "maxlength", "max_characters")),
        min=_text(_first(merged, "min", "minimum", "min_value")),
        max=_text(_first(merged, "max", "maximum", "max_value")),
        step=_text(merged.get("step")),
    )
    return None if validation.is_empty() else validation


def _required(raw: Dict[str, Any]) -> bool:
    rules = raw.get("validations") or raw.get("validation")
    if isinstance(rules, dict) and rules.get("required") is True:
        return True
    return raw.get("required") is True or raw.get("isRequired") is True


def _schema_field(raw: Any, key_hint: Optional[str] = None) -> Optional[SchemaField]:
    if not isinstance(raw, dict):
        return None
    kind = _first(raw, "type", "fieldType", "field_type", "inputType", "component", "kind")
    if isinstance(kind, dict):
        kind = _first(kind, "name", "type")
    label = _text(_first(raw, "label", "title", "question", "text", "displayName", "description"))
    ident = _text(_first(raw, "id", "ref", "key", "uuid")) or key_hint
    name = _text(_first(raw, "name", "fieldName", "field_name", "key")) or key_hint
    if kind is None and not label and not name:
        return None
    options = _options(raw)
    field_type = map_vendor_type(kind)
    if field_type == FieldType.TEXT and kind is None and options:
        field_type = FieldType.SELECT
    return SchemaField(
        id=ident,
        name=name,
        type=field_type,
        label=label,
        options=options,
        required=_required(raw),
        validation=_validation(raw),
    )


def _fields_from(container: Dict[str, Any]) -> Tuple[List[SchemaField], Optional[str]]:
    for key in FIELD_ARRAY_KEYS:
        items = container.get(key)
        if isinstance(items, list) and items:
            parsed = [item for item in (_schema_field(raw) for raw in items) if item]
            if parsed:
                return parsed, key
    properties = container.get("properties")
    if isinstance(properties, dict) and properties and all(isinstance(v, dict) for v in properties.values()):
        required = container.get("required") if isinstance(container.get("required"), list) else []
        parsed = []
        for name, raw in properties.items():
            item = _schema_field(raw, key_hint=str(name))
            if item:
                item.required = item.required or name in required
                parsed.append(item)
        if parsed:
            return parsed, "properties"
    return [], None


def _steps_from(container: Dict[str, Any]) -> Tuple[List[SchemaStep], Optional[str]]:
    for key in STEP_ARRAY_KEYS:
        items = container.get(key)
        if not isinstance(items, list):
            continue
        steps: List[SchemaStep] = []
        for raw in items:
            if not isinstance(raw, dict):
                continue
            fields, _ = _fields_from(raw)
            steps.append(
                SchemaStep(
                    id=_text(_first(raw, "id", "key", "name")),
                    title=_text(_first(raw, "title", "name", "label", "heading")),
                    fields=fields,
                )
            )
        if any(step.fields for step in steps):
            return steps, key
    return [], None


def _unwrap(payload: Any, path: List[str], depth: int = 0) -> Optional[InterceptedSchema]:
    if depth > MAX_DEPTH:
        return None
    if isinstance(payload, list):
        parsed = [item for item in (_schema_field(raw) for raw in payload) if item]
        if parsed and len(parsed) >= max(1, len(payload) // 2):
            return InterceptedSchema(url="", fields=parsed, source_keys=path)
        return None
    if not isinstance(payload, dict):
        return None
    fields, field_key = _fields_from(payload)
    steps, step_key = _steps_from(payload)
    if fields or steps:
        keys = [key for key in (field_key, step_key) if key]
        return InterceptedSchema(url="", fields=fields, steps=steps, source_keys=path + keys)
    for key in ENVELOPE_KEYS:
        if key in payload:
            found = _unwrap(payload[key], path + [key], depth + 1)
            if found:
                return found
    return None


def normalize_schema_payload(payload: Any, url: str = "") -> Optional[InterceptedSchema]:
    """Extract field and step descriptors from an arbitrary JSON value.

    Returns ``None`` when the payload has no recognisable fields. Never raises
    for values produced by :func:`json.loads`.
    """

    try:
        schema = _unwrap(payload, [])
    except (TypeError, ValueError, AttributeError, RecursionError):
        return None
    if schema is None:
        return None
    schema.url = url
    return schema


__all__ = [
    "InterceptedSchema",
    "SchemaField",
    "SchemaStep",
    "map_vendor_type",
    "normalize_schema_payload",
]
