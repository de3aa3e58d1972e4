"""Typed field descriptors for the interactive elements of a container."""

from __future__ import annotations

import logging
import re
from itertools import count
from typing import Callable, Dict, List, Optional

from .dom import DomNode, attribute_selector
from .models import Field, FieldOption, FieldType, FieldValidation
from .scoring import collect_field_elements, is_visible
from .test_values import sample_value

logger = logging.getLogger("formsense.fields")

MARKER_ATTR = "data-formsense-id"
ROLE_TYPES = {
    "textbox": FieldType.TEXT,
    "searchbox": FieldType.SEARCH,
    "combobox": FieldType.SELECT,
    "listbox": FieldType.SELECT,
    "checkbox": FieldType.CHECKBOX,
    "switch": FieldType.CHECKBOX,
    "radio": FieldType.RADIO,
    "slider": FieldType.RANGE,
    "spinbutton": FieldType.NUMBER,
}
CHECKABLE_TYPES = {FieldType.CHECKBOX, FieldType.RADIO}
_CSS_IDENT = re.compile(r"^-?[_a-zA-Z][_a-zA-Z0-9-]*$")

IdAllocator = Callable[[DomNode], str]


def field_type_for(element: DomNode) -> FieldType:
    if element.tag == "input":
        return FieldType.from_input_type(element.get("type"))
    if element.tag == "select":
        return FieldType.SELECT
    if element.tag == "textarea":
        return FieldType.TEXTAREA
    if element.role in ROLE_TYPES:
        return ROLE_TYPES[element.role]
    return FieldType.CONTENT_EDITABLE


def _clean(text: Optional[str]) -> str:
    if not text:
        return ""
    collapsed = " ".join(text.split())
    return collapsed.rstrip(" :*").strip()


def _texts_for_ids(element: DomNode, attribute: str) -> str:
    document = element.document
    raw = element.get(attribute)
    if not raw or document is None:
        return ""
    parts = []
    for ident in raw.split():
        target = document.get_element_by_id(ident)
        if target is not None:
            parts.append(target.text_content())
    return _clean(" ".join(parts))


def own_label(element: DomNode) -> str:
    """Label text for a single element, most explicit association first."""
    labelled = _texts_for_ids(element, "aria-labelledby")
    if labelled:
        return labelled
    element_id = element.element_id
    document = element.document
    if element_id and document is not None:
        for node in document.iter_elements():
            if node.tag == "label" and node.get("for") == element_id:
                text = _clean(node.text_content())
                if text:
                    return text
    wrapper = next((node for node in element.ancestors() if node.tag == "label"), None)
    if wrapper is not None:
        text = _clean(wrapper.text_content())
        if text:
            return text
    for attribute in ("aria-label", "title", "placeholder"):
        text = _clean(element.get(attribute))
        if text:
            return text
    return ""


def _group_container(element: DomNode, scope: DomNode) -> Optional[DomNode]:
    for ancestor in element.ancestors():
        if ancestor.tag == "fieldset" or ancestor.role in {"radiogroup", "group"}:
            return ancestor
        if ancestor is scope:
            break
    return None


def group_label(element: DomNode, scope: DomNode) -> str:
    container = _group_container(element, scope)
    if container is None:
        return ""
    legend = next((node for node in container.children if node.tag == "legend"), None)
    if legend is not None and _clean(legend.text_content()):
        return _clean(legend.text_content())
    labelled = _texts_for_ids(container, "aria-labelledby")
    if labelled:
        return labelled
    return _clean(container.get("aria-label"))


def _checkable_members(element: DomNode, field_type: FieldType, scope: DomNode) -> List[DomNode]:
    """Elements that share a choice group with ``element`` inside ``scope``."""
    name = element.get("name")
    kind = field_type.value
    if element.tag == "input" and name:
        return [
            node
            for node in scope.iter_descendants()
            if node.tag == "input"
            and (node.get("type") or "").lower() == kind
            and node.get("name") == name
            and is_visible(node)
        ]
    container = _group_container(element, scope)
    if container is None:
        return [element]
    members = []
    for node in container.iter_descendants():
        if field_type_for(node) != field_type or node.get("name"):
            continue
        if node.tag == "input" or node.role in {"radio", "checkbox", "switch"}:
            members.append(node)
    return members or [element]


def _checkable_option(node: DomNode) -> FieldOption:
    value = node.get("value") or "on"
    text = own_label(node) or node.get("value") or ""
    selected = node.has("checked") or node.get("aria-checked") == "true"
    return FieldOption(value=value, text=text, selected=selected)


def _select_options(element: DomNode) -> List[FieldOption]:
    options: List[FieldOption] = []
    if element.tag == "select":
        for node in element.iter_descendants():
            if node.tag != "option":
                continue
            text = _clean(node.text_content())
            options.append(
                FieldOption(value=node.get("value", text) or text, text=text, selected=node.has("selected"))
            )
        return options
    sources = [element]
    controlled = element.get("aria-controls") or element.get("aria-owns")
    if controlled and element.document is not None:
        target = element.document.get_element_by_id(controlled.split()[0])
        if target is not None:
            sources.append(target)
    for source in sources:
        for node in source.iter_descendants():
            if node.role == "option":
                text = _clean(node.text_content())
                options.append(
                    FieldOption(
                        value=node.get("data-value") or node.get("value") or text,
                        text=text,
                        selected=node.get("aria-selected") == "true",
                    )
                )
    return options


def _validation(element: DomNode) -> Optional[FieldValidation]:
    def as_int(name: str) -> Optional[int]:
        raw = element.get(name)
        try:
            return int(raw) if raw not in (None, "") else None
        except ValueError:
            return None

    validation = FieldValidation(
        pattern=element.get("pattern") or None,
        min_length=as_int("minlength"),
        max_length=as_int("maxlength"),
        min=element.get("min") or element.get("aria-valuemin") or None,
        max=element.get("max") or element.get("aria-valuemax") or None,
        step=element.get("step") or None,
    )
    return None if validation.is_empty() else validation


def _current_value(element: DomNode, field_type: FieldType, options: List[FieldOption]) -> Optional[str]:
    if field_type in CHECKABLE_TYPES:
        if element.has("checked") or element.get("aria-checked") == "true":
            return element.get("value") or "on"
        return None
    if field_type == FieldType.SELECT:
        chosen = next((option for option in options if option.selected), None)
        return chosen.value if chosen else None
    if element.tag == "textarea" or field_type == FieldType.CONTENT_EDITABLE:
        return element.text_content() or None
    return element.get("value") or None


def unique_selectors(element: DomNode, field_type: FieldType) -> List[str]:
    selectors: List[str] = []
    element_id = element.element_id
    if element_id:
        if _CSS_IDENT.match(element_id):
            selectors.append(f"#{element_id}")
        else:
            selectors.append(attribute_selector("id", element_id))
    name = element.get("name")
    if name:
        by_name = attribute_selector("name", name, element.tag)
        if field_type in CHECKABLE_TYPES and element.get("value") is not None:
            selectors.append(by_name + attribute_selector("value", element.get("value") or ""))
        else:
            selectors.append(by_name)
    return selectors


def _description(element: DomNode) -> Optional[str]:
    described = _texts_for_ids(element, "aria-describedby")
    return described or None


def _common_ancestor_key(members: List[DomNode]) -> Optional[str]:
    first, rest = members[0], members[1:]
    for ancestor in first.ancestors():
        if all(ancestor.contains(node) for node in rest):
            return ancestor.element_id or ancestor.uid
    return None


def _default_allocator() -> IdAllocator:
    counter = count(1)
    return lambda _element: f"field-{next(counter)}"


def describe_element(
    element: DomNode,
    field_id: str,
    scope: DomNode,
    *,
    test_mode: bool = False,
) -> Field:
    field_type = field_type_for(element)
    options: List[FieldOption] = []
    label = ""
    group_anchor: Optional[str] = None
    if field_type in CHECKABLE_TYPES:
        members = _checkable_members(element, field_type, scope)
        options = [_checkable_option(node) for node in members]
        if len(members) > 1 or field_type == FieldType.RADIO:
            label = group_label(element, scope)
        label = label or own_label(element)
        if len(members) > 1 and not element.get("name"):
            group_anchor = _common_ancestor_key(members)
    elif field_type == FieldType.SELECT:
        options = _select_options(element)
        label = own_label(element)
    else:
        label = own_label(element)
    name = element.get("name") or None
    field = Field(
        id=field_id,
        type=field_type,
        label=label or (name or ""),
        name=name,
        placeholder=element.get("placeholder") or None,
        title=element.get("title") or None,
        description=_description(element),
        dom_id=element.element_id,
        options=options,
        required=element.has("required") or element.get("aria-required") == "true",
        validation=_validation(element),
        value=_current_value(element, field_type, options),
        unique_selectors=unique_selectors(element, field_type),
        metadata={
            "tag": element.tag,
            "role": element.role or None,
            "uid": element.uid,
            "autocomplete": element.get("autocomplete"),
            "group_anchor": group_anchor,
        },
    )
    if test_mode:
        field.test_value = sample_value(field)
    return field


def detect_fields(
    container: DomNode,
    *,
    allocate_id: Optional[IdAllocator] = None,
    test_mode: bool = False,
) -> List[Field]:
    """Describe every visible interactive element inside ``container``.

    Radio buttons and same-named checkboxes produce one field per element,
    each carrying the option list of its whole group.
    """

    allocate = allocate_id or _default_allocator()
    fields: List[Field] = []
    for element in collect_field_elements(container):
        try:
            fields.append(
                describe_element(element, allocate(element), container, test_mode=test_mode)
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("Skipping field %r: %s", element, exc)
    return fields


def field_type_counts(fields: List[Field]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for field in fields:
        counts[field.type.value] = counts.get(field.type.value, 0) + 1
    return counts


__all__ = [
    "MARKER_ATTR",
    "describe_element",
    "detect_fields",
    "field_type_counts",
    "field_type_for",
    "group_label",
    "own_label",
    "unique_selectors",
]
