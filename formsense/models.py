"""Data models shared across detection and the field registry."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class FieldType(str, Enum):
    TEXT = "text"
    PASSWORD = "password"
    EMAIL = "email"
    TEL = "tel"
    URL = "url"
    SEARCH = "search"
    DATE = "date"
    DATETIME_LOCAL = "datetime-local"
    MONTH = "month"
    WEEK = "week"
    TIME = "time"
    NUMBER = "number"
    RANGE = "range"
    COLOR = "color"
    FILE = "file"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    TEXTAREA = "textarea"
    BUTTON = "button"
    CONTENT_EDITABLE = "contentEditable"
    FIELDSET = "fieldset"

    @classmethod
    def from_input_type(cls, value: Optional[str]) -> "FieldType":
        normalized = (value or "text").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.TEXT


TEXT_LIKE_TYPES = {
    FieldType.TEXT,
    FieldType.PASSWORD,
    FieldType.EMAIL,
    FieldType.TEL,
    FieldType.URL,
    FieldType.SEARCH,
    FieldType.TEXTAREA,
    FieldType.CONTENT_EDITABLE,
}


@dataclass(slots=True)
class FieldOption:
    value: str
    text: str
    selected: bool = False


@dataclass(slots=True)
class FieldValidation:
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[str] = None
    max: Optional[str] = None
    step: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__slots__)


@dataclass(slots=True)
class Field:
    id: str
    type: FieldType
    label: str = ""
    name: Optional[str] = None
    placeholder: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    dom_id: Optional[str] = None
    options: List[FieldOption] = field(default_factory=list)
    required: bool = False
    validation: Optional[FieldValidation] = None
    value: Optional[str] = None
    test_value: Optional[str] = None
    unique_selectors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def canonical_name(self) -> str:
        for candidate in (self.name, self.dom_id, self.label, self.placeholder):
            if candidate:
                return candidate
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        return payload


__all__ = [
    "FieldType",
    "TEXT_LIKE_TYPES",
    "FieldOption",
    "FieldValidation",
    "Field",
]
