"""Typed field values.

Raw values arrive from the signing client as strings. They are parsed into a
tagged union keyed by field type, then stored twice: the normalized typed
value (JSON) for logic, and the original string for display fidelity.
"""

from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError as PydanticValidationError

from esign.db.models import FieldType
from esign.services.esign_exceptions import ValidationError

MAX_TEXT_LENGTH = 10000
MAX_IMAGE_REFERENCE_LENGTH = 2_000_000  # data URLs of drawn signatures can be large

# Formats the signing UI has historically produced besides ISO dates
_FALLBACK_DATE_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%d %B %Y", "%B %d, %Y")


class SignatureValue(BaseModel):
    field_type: Literal["signature"] = "signature"
    image_ref: str = Field(..., description="Drawn, typed or uploaded signature image reference")


class InitialsValue(BaseModel):
    field_type: Literal["initials"] = "initials"
    image_ref: str = Field(..., description="Initials image reference")


class DateValue(BaseModel):
    field_type: Literal["date"] = "date"
    value: date


class TextValue(BaseModel):
    field_type: Literal["text"] = "text"
    text: str


class CheckboxValue(BaseModel):
    field_type: Literal["checkbox"] = "checkbox"
    checked: bool


class DropdownValue(BaseModel):
    field_type: Literal["dropdown"] = "dropdown"
    choice: str


FieldValue = Annotated[
    Union[SignatureValue, InitialsValue, DateValue, TextValue, CheckboxValue, DropdownValue],
    Field(discriminator="field_type"),
]

_field_value_adapter = TypeAdapter(FieldValue)
_bool_adapter = TypeAdapter(bool)
_date_adapter = TypeAdapter(date)


class NormalizedFieldValue(BaseModel):
    """A validated value ready to be persisted on a field row."""
    typed: FieldValue
    raw: str

    @property
    def stored(self) -> Dict[str, Any]:
        return self.typed.model_dump(mode="json")


def load_field_value(data: Optional[Dict[str, Any]]) -> Optional[FieldValue]:
    """Rebuild the typed value from its stored JSON form."""
    if data is None:
        return None
    return _field_value_adapter.validate_python(data)


def display_text(value: Optional[FieldValue]) -> Optional[str]:
    """What the signed rendition prints for a typed value."""
    if value is None:
        return None
    if isinstance(value, (SignatureValue, InitialsValue)):
        return value.image_ref
    if isinstance(value, DateValue):
        return value.value.strftime("%m/%d/%Y")
    if isinstance(value, TextValue):
        return value.text
    if isinstance(value, CheckboxValue):
        return "X" if value.checked else ""
    return value.choice


def _parse_date(raw: str) -> date:
    try:
        return _date_adapter.validate_python(raw)
    except PydanticValidationError:
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"'{raw}' is not a valid calendar date")


def _require_image_reference(raw: str, field_type: str) -> str:
    if not raw:
        raise ValidationError(f"A {field_type} field needs a signature image")
    if len(raw) > MAX_IMAGE_REFERENCE_LENGTH:
        raise ValidationError(f"{field_type.capitalize()} image reference is too large")
    return raw


def normalize_field_value(
    field_type: str,
    raw_value: Any,
    options: Optional[List[str]] = None,
) -> NormalizedFieldValue:
    """
    Type-check a raw value against a field type.

    Args:
        field_type: One of FieldType values
        raw_value: Value as received from the signing client
        options: Allowed choices for dropdown fields

    Returns:
        NormalizedFieldValue with the typed value and the original string

    Raises:
        ValidationError: If the value does not fit the field type
    """
    if raw_value is None:
        raise ValidationError("Field value is required")
    if isinstance(raw_value, bool):
        raw = "true" if raw_value else "false"
    else:
        raw = str(raw_value)
    stripped = raw.strip()

    try:
        kind = FieldType(field_type)
    except ValueError:
        raise ValidationError(f"Unknown field type: {field_type}")

    if kind == FieldType.SIGNATURE:
        typed = SignatureValue(image_ref=_require_image_reference(stripped, kind.value))
    elif kind == FieldType.INITIALS:
        typed = InitialsValue(image_ref=_require_image_reference(stripped, kind.value))
    elif kind == FieldType.DATE:
        if not stripped:
            raise ValidationError("Date field cannot be empty")
        typed = DateValue(value=_parse_date(stripped))
    elif kind == FieldType.TEXT:
        if len(raw) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Text value exceeds {MAX_TEXT_LENGTH} characters")
        if not stripped:
            raise ValidationError("Text field cannot be empty; clear the field instead")
        typed = TextValue(text=raw)
    elif kind == FieldType.CHECKBOX:
        try:
            checked = _bool_adapter.validate_python(stripped.lower())
        except PydanticValidationError:
            raise ValidationError(f"'{raw}' is not a valid checkbox value")
        typed = CheckboxValue(checked=checked)
    else:
        if stripped not in (options or []):
            raise ValidationError(f"'{raw}' is not one of the allowed options: {options or []}")
        typed = DropdownValue(choice=stripped)

    return NormalizedFieldValue(typed=typed, raw=raw)


def validate_dropdown_options(options: Optional[List[str]]) -> List[str]:
    """Return a cleaned, non-empty, duplicate-free option list."""
    if not options:
        raise ValidationError("Dropdown fields need a non-empty option set")
    cleaned = []
    for option in options:
        text = str(option).strip() if option is not None else ""
        if not text:
            raise ValidationError("Dropdown options cannot be blank")
        if text in cleaned:
            raise ValidationError(f"Duplicate dropdown option: {text}")
        cleaned.append(text)
    return cleaned
