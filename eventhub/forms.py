"""Admin-configured enquiry form fields and response validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

MIN_MOBILE_LENGTH = 10


class FieldKind(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"


STORED_FIELD_TYPES = {
    "text": FieldKind.TEXT,
    "textarea": FieldKind.TEXTAREA,
    "select": FieldKind.SINGLE_CHOICE,
    "radio": FieldKind.SINGLE_CHOICE,
    "checkbox": FieldKind.MULTI_CHOICE,
}

CHOICE_KINDS = (FieldKind.SINGLE_CHOICE, FieldKind.MULTI_CHOICE)


class FormValidationError(Exception):
    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)


@dataclass(frozen=True)
class FormField:
    id: str
    label: str
    kind: FieldKind
    options: tuple[str, ...] = ()
    required: bool = True
    order: int = 0
    visible_when: Optional[tuple[str, str]] = None


def parse_field_kind(field_type: str, options: Optional[Iterable[str]] = None) -> FieldKind:
    kind = STORED_FIELD_TYPES.get(field_type)
    if kind is None:
        raise FormValidationError(f"Unknown field type: {field_type}")
    if kind in CHOICE_KINDS and not list(options or []):
        raise FormValidationError(f"Field type {field_type} needs at least one option")
    return kind


def field_from_row(row: Any) -> FormField:
    """Build a ``FormField`` from a ``StallEnquiryField`` row."""
    options = tuple(row.options or ())
    visible_when = None
    if row.show_conditional_on:
        visible_when = (str(row.show_conditional_on), row.conditional_value or "")
    return FormField(
        id=str(row.id),
        label=row.field_label,
        kind=parse_field_kind(row.field_type, options),
        options=options,
        required=bool(row.is_required),
        order=row.display_order or 0,
        visible_when=visible_when,
    )


def is_visible(form_field: FormField, responses: Mapping[str, Any]) -> bool:
    if form_field.visible_when is None:
        return True
    field_id, expected = form_field.visible_when
    return responses.get(field_id) == expected


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def validate_responses(fields: Iterable[FormField], responses: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    for form_field in sorted(fields, key=lambda f: f.order):
        if not is_visible(form_field, responses):
            continue
        value = responses.get(form_field.id)
        if _is_blank(value):
            if form_field.required:
                errors.append(f"{form_field.label} is required")
            continue
        if form_field.kind is FieldKind.SINGLE_CHOICE and value not in form_field.options:
            errors.append(f"{form_field.label}: invalid option {value!r}")
        elif form_field.kind is FieldKind.MULTI_CHOICE:
            chosen = value if isinstance(value, (list, tuple)) else [value]
            unknown = [v for v in chosen if v not in form_field.options]
            if unknown:
                errors.append(f"{form_field.label}: invalid options {unknown!r}")
    return errors


def visible_responses(fields: Iterable[FormField], responses: Mapping[str, Any]) -> dict[str, Any]:
    fields = list(fields)
    known = {f.id for f in fields if is_visible(f, responses)}
    return {key: value for key, value in responses.items() if key in known}


def validate_contact(
    name: str,
    mobile: str,
    panchayath_id: Optional[int],
    ward_id: Optional[int],
) -> list[str]:
    errors: list[str] = []
    if not (name or "").strip():
        errors.append("name is required")
    if len((mobile or "").strip()) < MIN_MOBILE_LENGTH:
        errors.append("a valid mobile number is required")
    if not panchayath_id:
        errors.append("panchayath is required")
    if not ward_id:
        errors.append("ward is required")
    return errors
