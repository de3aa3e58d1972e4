"""Unified field registry: identities, element resolution and grouping."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

from .dom import DomDocument, DomNode, SelectorError, attribute_selector
from .field_detection import MARKER_ATTR, detect_fields, field_type_counts
from .models import TEXT_LIKE_TYPES, Field, FieldOption, FieldType
from .scoring import is_field_element

ResolutionStrategy = Callable[[DomNode, Field], Optional[DomNode]]
FieldDetector = Callable[..., List[Field]]


class RegistryState(str, Enum):
    EMPTY = "empty"
    POPULATING = "populating"
    POPULATED = "populated"


@dataclass(slots=True)
class FieldEntry:
    field: Field
    container: DomNode
    container_id: str
    element: Optional[DomNode] = None
    is_grouped: bool = False
    group_id: Optional[str] = None


@dataclass(slots=True)
class FieldGroup:
    group_id: str
    container_id: str
    group_type: FieldType
    container: DomNode
    fields: List[FieldEntry] = field(default_factory=list)
    options: List[FieldOption] = field(default_factory=list)
    primary_element: Optional[DomNode] = None


@dataclass(slots=True)
class ContainerInfo:
    container_id: str
    container: DomNode
    all_fields: List[Field] = field(default_factory=list)
    individual_fields: List[Field] = field(default_factory=list)
    grouped_fields: List[Field] = field(default_factory=list)

    @property
    def total_field_count(self) -> int:
        return len(self.all_fields)

    def to_dict(self) -> dict:
        return {
            "container_id": self.container_id,
            "tag": self.container.tag,
            "uid": self.container.uid,
            "total_field_count": self.total_field_count,
            "individual": len(self.individual_fields),
            "grouped": len(self.grouped_fields),
            "fields": [item.to_dict() for item in self.all_fields],
        }


@dataclass(slots=True)
class FieldButtonData:
    field: Field
    element: DomNode
    type: str
    group_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "field_id": self.field.id,
            "field_type": self.field.type.value,
            "label": self.field.label,
            "type": self.type,
            "group_id": self.group_id,
            "element_uid": self.element.uid,
        }


# --- resolution strategies ---------------------------------------------------


def _query(container: DomNode, selector: str) -> Optional[DomNode]:
    try:
        if container.matches(selector):
            return container
        return container.query(selector)
    except SelectorError:
        return None


def _query_all(container: DomNode, selector: str) -> List[DomNode]:
    try:
        return container.query_all(selector)
    except SelectorError:
        return []


def _unmarked(candidates: Sequence[DomNode]) -> Optional[DomNode]:
    return next((node for node in candidates if not node.has(MARKER_ATTR)), None)


def by_marker(container: DomNode, item: Field) -> Optional[DomNode]:
    return _query(container, attribute_selector(MARKER_ATTR, item.id))


def by_unique_selector(container: DomNode, item: Field) -> Optional[DomNode]:
    if not item.unique_selectors:
        return None
    return _query(container, item.unique_selectors[0])


def by_name(container: DomNode, item: Field) -> Optional[DomNode]:
    if not item.name:
        return None
    return _query(container, attribute_selector("name", item.name))


def by_dom_id(container: DomNode, item: Field) -> Optional[DomNode]:
    if not item.dom_id or item.dom_id == item.name:
        return None
    return _query(container, attribute_selector("id", item.dom_id))


def by_label_text(container: DomNode, item: Field) -> Optional[DomNode]:
    wanted = (item.label or "").strip().lower()
    if not wanted:
        return None
    for label in _query_all(container, "label"):
        text = label.text_content().strip().lower()
        if not text or (text != wanted and wanted not in text):
            continue
        target_id = label.get("for")
        if target_id and label.document is not None:
            target = label.document.get_element_by_id(target_id)
            if target is not None:
                return target
        nested = next(
            (node for node in label.iter_descendants() if is_field_element(node)),
            None,
        )
        if nested is not None:
            return nested
    return None


def by_placeholder(container: DomNode, item: Field) -> Optional[DomNode]:
    if not item.placeholder:
        return None
    return _query(container, attribute_selector("placeholder", item.placeholder))


TYPE_SELECTORS: Dict[FieldType, str] = {
    FieldType.TEXT: "input[type=text], input:not([type])",
    FieldType.SELECT: "select, [role=combobox], [role=listbox]",
    FieldType.TEXTAREA: "textarea",
    FieldType.CHECKBOX: "input[type=checkbox], [role=checkbox], [role=switch]",
    FieldType.RADIO: "input[type=radio], [role=radio]",
    FieldType.CONTENT_EDITABLE: "[contenteditable]",
}
ROLE_SELECTORS: Dict[FieldType, str] = {
    FieldType.TEXT: "[role=textbox]",
    FieldType.SEARCH: "[role=searchbox]",
    FieldType.SELECT: "[role=combobox], [role=listbox]",
    FieldType.CHECKBOX: "[role=checkbox], [role=switch]",
    FieldType.RADIO: "[role=radio]",
    FieldType.NUMBER: "[role=spinbutton]",
    FieldType.RANGE: "[role=slider]",
    FieldType.TEXTAREA: "[role=textbox][aria-multiline=true]",
    FieldType.CONTENT_EDITABLE: "[role=textbox]",
}


def by_type_selector(container: DomNode, item: Field) -> Optional[DomNode]:
    selector = TYPE_SELECTORS.get(item.type) or f"input[type={item.type.value}]"
    return _unmarked(_query_all(container, selector))


def by_role(container: DomNode, item: Field) -> Optional[DomNode]:
    selector = ROLE_SELECTORS.get(item.type)
    if not selector:
        return None
    return _unmarked(_query_all(container, selector))


def by_content_editable(container: DomNode, item: Field) -> Optional[DomNode]:
    if item.type not in TEXT_LIKE_TYPES:
        return None
    return _query(container, '[contenteditable="true"]')


INITIAL_STRATEGIES: Sequence[ResolutionStrategy] = (
    by_marker,
    by_unique_selector,
    by_name,
    by_dom_id,
)
EXTENDED_STRATEGIES: Sequence[ResolutionStrategy] = (
    by_name,
    by_label_text,
    by_placeholder,
    by_type_selector,
    by_role,
    by_content_editable,
)


def resolve_element(
    container: DomNode, item: Field, strategies: Sequence[ResolutionStrategy]
) -> Optional[DomNode]:
    for strategy in strategies:
        try:
            element = strategy(container, item)
        except Exception:  # noqa: BLE001
            element = None
        if element is not None:
            return element
    return None


def group_id_for(item: Field) -> Optional[str]:
    if item.type == FieldType.RADIO:
        kind = "radio"
    elif item.type == FieldType.CHECKBOX and len(item.options) > 1:
        kind = "checkbox"
    else:
        return None
    anchor = item.name or item.metadata.get("group_anchor") or item.id
    return f"{kind}-group-{anchor}"


# --- registry ----------------------------------------------------------------


class UnifiedFieldRegistry:
    """Owns field identities and element claims for one detection epoch.

    Returned fields and entries are copies; elements are references into the
    current capture.
    """

    def __init__(
        self,
        *,
        detector: FieldDetector = detect_fields,
        test_mode: bool = False,
        initial_strategies: Sequence[ResolutionStrategy] = INITIAL_STRATEGIES,
        extended_strategies: Sequence[ResolutionStrategy] = EXTENDED_STRATEGIES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.detector = detector
        self.test_mode = test_mode
        self.initial_strategies = tuple(initial_strategies)
        self.extended_strategies = tuple(extended_strategies)
        self.logger = logger or logging.getLogger("formsense.registry")
        self._lock = asyncio.Lock()
        self._entries: Dict[str, FieldEntry] = {}
        self._containers: Dict[str, ContainerInfo] = {}
        self._groups: Dict[str, FieldGroup] = {}
        self._claimed: Dict[DomNode, str] = {}
        self._used_ids: Set[str] = set()
        self._counter = 0
        self._state = RegistryState.EMPTY

    @property
    def state(self) -> RegistryState:
        return self._state

    def clear(self) -> None:
        """Start a new epoch."""
        self._entries.clear()
        self._containers.clear()
        self._groups.clear()
        self._claimed.clear()
        self._used_ids.clear()
        self._counter = 0
        self._state = RegistryState.EMPTY

    def _id_allocator(self, container: DomNode) -> Callable[[DomNode], str]:
        document = container.document
        present: Set[str] = set()
        if document is not None:
            present = {
                node.attrs[MARKER_ATTR] for node in document.iter_elements() if MARKER_ATTR in node.attrs
            }

        def allocate(element: DomNode) -> str:
            existing = element.get(MARKER_ATTR)
            if element in self._claimed and existing:
                return existing
            if existing and existing not in self._used_ids:
                self._used_ids.add(existing)
                return existing
            while True:
                self._counter += 1
                candidate = f"field-{self._counter}"
                if candidate not in self._used_ids and candidate not in present:
                    break
            self._used_ids.add(candidate)
            element.set_attribute(MARKER_ATTR, candidate)
            return candidate

        return allocate

    async def register_container(self, container: DomNode, container_id: str) -> ContainerInfo:
        async with self._lock:
            if container_id in self._containers:
                self.logger.debug("Container %s already registered this epoch", container_id)
                return self._copy_info(self._containers[container_id])
            self._state = RegistryState.POPULATING
            try:
                info = self._register(container, container_id)
            finally:
                self._state = RegistryState.POPULATED if self._containers else RegistryState.EMPTY
            document = container.document
            if document is not None:
                await document.flush(self.logger)
            return self._copy_info(info)

    def _register(self, container: DomNode, container_id: str) -> ContainerInfo:
        try:
            fields = self.detector(
                container, allocate_id=self._id_allocator(container), test_mode=self.test_mode
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Field detection failed for %s: %s", container_id, exc)
            fields = []

        info = ContainerInfo(container_id=container_id, container=container)
        for item in fields:
            if item.id in self._entries:
                self.logger.debug("Field %s already registered, skipping", item.id)
                continue
            element = resolve_element(container, item, self.initial_strategies)
            if element is None:
                self.logger.warning(
                    "Could not resolve element for field %s (%s)", item.id, item.canonical_name()
                )
            elif element in self._claimed:
                self.logger.debug(
                    "Element for %s already claimed by %s", item.id, self._claimed[element]
                )
                continue
            else:
                self._claimed[element] = container_id
            entry = FieldEntry(field=item, container=container, container_id=container_id, element=element)
            group_id = group_id_for(item)
            if group_id:
                entry.is_grouped = True
                entry.group_id = group_id
                self._add_to_group(entry, group_id)
                info.grouped_fields.append(item)
            else:
                info.individual_fields.append(item)
            self._entries[item.id] = entry
            info.all_fields.append(item)

        self._containers[container_id] = info
        self.logger.info(
            "Registered %s: %s fields (%s individual, %s grouped)",
            container_id,
            info.total_field_count,
            len(info.individual_fields),
            len(info.grouped_fields),
        )
        return info

    def _add_to_group(self, entry: FieldEntry, group_id: str) -> None:
        group = self._groups.get(group_id)
        if group is None:
            self._groups[group_id] = FieldGroup(
                group_id=group_id,
                container_id=entry.container_id,
                group_type=entry.field.type,
                container=entry.container,
                fields=[entry],
                options=list(entry.field.options),
                primary_element=entry.element,
            )
            return
        group.fields.append(entry)
        if len(entry.field.options) > len(group.options):
            group.options = list(entry.field.options)

    # --- queries -------------------------------------------------------------

    @staticmethod
    def _copy_entry(entry: FieldEntry) -> FieldEntry:
        return replace(entry, field=copy.deepcopy(entry.field))

    @staticmethod
    def _copy_info(info: ContainerInfo) -> ContainerInfo:
        return ContainerInfo(
            container_id=info.container_id,
            container=info.container,
            all_fields=copy.deepcopy(info.all_fields),
            individual_fields=copy.deepcopy(info.individual_fields),
            grouped_fields=copy.deepcopy(info.grouped_fields),
        )

    def _iter_entries(self, container_id: Optional[str] = None) -> List[FieldEntry]:
        return [
            entry
            for entry in self._entries.values()
            if container_id is None or entry.container_id == container_id
        ]

    def get_field(self, field_id: str) -> Optional[FieldEntry]:
        entry = self._entries.get(field_id)
        return self._copy_entry(entry) if entry else None

    def get_all_fields(self, container_id: Optional[str] = None) -> List[Field]:
        return [copy.deepcopy(entry.field) for entry in self._iter_entries(container_id)]

    def get_container_fields(self, container_id: str) -> List[FieldEntry]:
        return [self._copy_entry(entry) for entry in self._iter_entries(container_id)]

    def get_individual_fields(self, container_id: Optional[str] = None) -> List[FieldEntry]:
        return [
            self._copy_entry(entry) for entry in self._iter_entries(container_id) if not entry.is_grouped
        ]

    def get_grouped_fields(self, container_id: Optional[str] = None) -> List[FieldGroup]:
        groups = []
        for group in self._groups.values():
            if container_id is not None and group.container_id != container_id:
                continue
            groups.append(
                replace(
                    group,
                    fields=[self._copy_entry(entry) for entry in group.fields],
                    options=copy.deepcopy(group.options),
                )
            )
        return groups

    def get_container_info(self, container_id: str) -> Optional[ContainerInfo]:
        info = self._containers.get(container_id)
        return self._copy_info(info) if info else None

    def get_registered_containers(self) -> List[DomNode]:
        return [info.container for info in self._containers.values()]

    def get_field_buttons_data(self, container_id: Optional[str] = None) -> List[FieldButtonData]:
        """One actionable entry per individual field and one per group.

        Fields whose element was not resolved at registration are retried with
        the extended strategies; a successful retry claims the element and
        marks it.
        """

        results: List[FieldButtonData] = []
        for entry in self._iter_entries(container_id):
            if entry.is_grouped:
                continue
            element = entry.element or self._retry(entry)
            if element is None:
                self.logger.debug("No element for field %s; no action emitted", entry.field.id)
                continue
            results.append(
                FieldButtonData(field=copy.deepcopy(entry.field), element=element, type="individual")
            )

        for group in self._groups.values():
            if container_id is not None and group.container_id != container_id:
                continue
            element = group.primary_element
            if element is None:
                element = next((member.element for member in group.fields if member.element), None)
            if element is None and group.fields:
                element = resolve_element(group.container, group.fields[0].field, self.extended_strategies)
            if element is None:
                self.logger.debug("No element for group %s; no action emitted", group.group_id)
                continue
            anchor = copy.deepcopy(group.fields[0].field)
            anchor.options = copy.deepcopy(group.options)
            results.append(
                FieldButtonData(field=anchor, element=element, type="grouped", group_id=group.group_id)
            )
        return results

    def _retry(self, entry: FieldEntry) -> Optional[DomNode]:
        element = resolve_element(entry.container, entry.field, self.extended_strategies)
        if element is None or element in self._claimed:
            return None
        self._claimed[element] = entry.container_id
        entry.element = element
        element.set_attribute(MARKER_ATTR, entry.field.id)
        self.logger.debug("Resolved %s on retry", entry.field.id)
        return element

    async def flush(self) -> None:
        """Mirror marker attributes written since the last registration."""
        documents: List[DomDocument] = []
        for info in self._containers.values():
            document = info.container.document
            if document is not None and document not in documents:
                documents.append(document)
        for document in documents:
            await document.flush(self.logger)

    def diagnostics(self) -> dict:
        fields = [entry.field for entry in self._entries.values()]
        return {
            "state": self._state.value,
            "containers": len(self._containers),
            "fields": len(fields),
            "unresolved_fields": sum(1 for entry in self._entries.values() if entry.element is None),
            "groups": len(self._groups),
            "field_types": field_type_counts(fields),
        }


__all__ = [
    "ContainerInfo",
    "EXTENDED_STRATEGIES",
    "FieldButtonData",
    "FieldEntry",
    "FieldGroup",
    "INITIAL_STRATEGIES",
    "RegistryState",
    "UnifiedFieldRegistry",
    "group_id_for",
    "resolve_element",
]
