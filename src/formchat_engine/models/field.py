"""Field kind models for conversational forms.

Each field kind is a closed variant carrying its own metadata payload, and
maps to a specific validation rule and prompt presentation:

  Free input:
    - short_text / long_text: optional min/max length bounds
    - email, phone, url, date: format-checked text
    - number: float with optional min/max bounds
    - rating: integer from 1 up to ``scale``

  Choice:
    - single_select: exactly one configured option
    - multi_select: one or more configured options

  Media:
    - file: an uploaded image or document, optionally type-restricted

The discriminated ``FieldSpec`` union uses ``field_type`` as its
discriminator.  ``field_from_row`` builds the right variant from a stored
``form_fields`` row, whose metadata is a free-form JSON bag.
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from formchat_engine.constants import DEFAULT_RATING_SCALE
from formchat_engine.errors import FieldDefinitionError, UnknownFieldTypeError


class FieldType(str, enum.Enum):
    """Every field kind the engine can validate and prompt for."""

    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    URL = "url"
    DATE = "date"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    RATING = "rating"
    FILE = "file"


# Type names written by the form builder that differ from ours.
FIELD_TYPE_ALIASES: dict[str, FieldType] = {
    "text": FieldType.SHORT_TEXT,
    "textarea": FieldType.LONG_TEXT,
    "select": FieldType.SINGLE_SELECT,
    "multiselect": FieldType.MULTI_SELECT,
}


# --- Shared models ---

class Option(BaseModel):
    """A selectable option with an id and display label."""

    id: str
    label: str


class BaseField(BaseModel):
    """Attributes shared by all field kinds."""

    id: str
    key: str
    label: str
    required: bool = False
    order: int = 0


class _BoundedTextField(BaseField):
    """Text input with optional length bounds."""

    min_length: Optional[int] = None
    max_length: Optional[int] = None

    @model_validator(mode="after")
    def _chk_bounds(self):
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise ValueError("min_length must be <= max_length")
        return self


# --- Free input kinds ---

class ShortTextField(_BoundedTextField):
    """Single-line text."""

    field_type: Literal["short_text"] = "short_text"


class LongTextField(_BoundedTextField):
    """Multi-line text."""

    field_type: Literal["long_text"] = "long_text"


class EmailField(BaseField):
    field_type: Literal["email"] = "email"


class PhoneField(BaseField):
    field_type: Literal["phone"] = "phone"


class UrlField(BaseField):
    field_type: Literal["url"] = "url"


class DateField(BaseField):
    field_type: Literal["date"] = "date"


class NumberField(BaseField):
    """Numeric input with optional inclusive bounds."""

    field_type: Literal["number"] = "number"
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    @model_validator(mode="after")
    def _chk_bounds(self):
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError("min_value must be <= max_value")
        return self


class RatingField(BaseField):
    """Integer rating from 1 to ``scale``."""

    field_type: Literal["rating"] = "rating"
    scale: int = Field(DEFAULT_RATING_SCALE, ge=1)


# --- Choice kinds ---

class SingleSelectField(BaseField):
    """Pick exactly one option."""

    field_type: Literal["single_select"] = "single_select"
    options: List[Option] = Field(default_factory=list)


class MultiSelectField(BaseField):
    """Pick one or more options."""

    field_type: Literal["multi_select"] = "multi_select"
    options: List[Option] = Field(default_factory=list)


# --- Media kinds ---

class FileField(BaseField):
    """An uploaded file, delivered by the provider as a media id."""

    field_type: Literal["file"] = "file"
    allowed_types: List[str] = Field(default_factory=list)
    max_size_mb: Optional[float] = None


# --- Discriminated union of all field kinds ---

FieldSpec = Annotated[
    Union[
        ShortTextField,
        LongTextField,
        EmailField,
        PhoneField,
        NumberField,
        UrlField,
        DateField,
        SingleSelectField,
        MultiSelectField,
        RatingField,
        FileField,
    ],
    Field(discriminator="field_type"),
]

# Maps field_type string → Pydantic class for building fields from DB rows.
field_mapper: dict[str, type[BaseField]] = {
    "short_text": ShortTextField,
    "long_text": LongTextField,
    "email": EmailField,
    "phone": PhoneField,
    "number": NumberField,
    "url": UrlField,
    "date": DateField,
    "single_select": SingleSelectField,
    "multi_select": MultiSelectField,
    "rating": RatingField,
    "file": FileField,
}


def resolve_field_type(raw: str) -> FieldType:
    """Map a stored type name (canonical, hyphenated, or legacy) to ``FieldType``.

    Raises:
        UnknownFieldTypeError: if the name matches no known kind.
    """
    name = (raw or "").strip().lower()
    if name in FIELD_TYPE_ALIASES:
        return FIELD_TYPE_ALIASES[name]
    try:
        return FieldType(name.replace("-", "_"))
    except ValueError:
        raise UnknownFieldTypeError(f"Unknown field type: {raw!r}") from None


def _coerce_options(raw_options: Any) -> list[dict[str, str]]:
    """Accept ``[{id, label}]`` dicts or bare strings (id == label)."""
    options: list[dict[str, str]] = []
    for opt in raw_options or []:
        if isinstance(opt, dict):
            opt_id = opt.get("id", opt.get("value", opt.get("label")))
            label = opt.get("label", opt_id)
            options.append({"id": str(opt_id), "label": str(label)})
        else:
            options.append({"id": str(opt), "label": str(opt)})
    return options


def field_from_row(row: Any) -> BaseField:
    """Build a typed field model from a ``form_fields`` row.

    The row's ``meta`` bag is read at its top level and from its nested
    ``validations`` object; nested values win.  A field counts as required
    if either ``is_required`` or ``meta.validations.required`` is set.

    Raises:
        UnknownFieldTypeError: the row's type is not a known kind.
        FieldDefinitionError: the metadata is inconsistent (e.g. min > max).
    """
    field_type = resolve_field_type(row.type)
    meta = dict(row.meta or {})
    validations = meta.pop("validations", None) or {}
    merged = {**meta, **validations}

    data: dict[str, Any] = {
        "id": str(row.id),
        "key": row.field_key,
        "label": row.label,
        "required": bool(row.is_required) or bool(validations.get("required")),
        "order": row.order_idx,
        "field_type": field_type.value,
    }

    if field_type in (FieldType.SHORT_TEXT, FieldType.LONG_TEXT):
        # The builder writes a 0 minimum by default; treat it as "no bound"
        data["min_length"] = merged.get("min_length") or None
        data["max_length"] = merged.get("max_length")
    elif field_type == FieldType.NUMBER:
        data["min_value"] = merged.get("min", merged.get("min_value"))
        data["max_value"] = merged.get("max", merged.get("max_value"))
    elif field_type in (FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT):
        data["options"] = _coerce_options(merged.get("options"))
    elif field_type == FieldType.RATING:
        data["scale"] = merged.get("scale", DEFAULT_RATING_SCALE)
    elif field_type == FieldType.FILE:
        data["allowed_types"] = list(merged.get("allowed_types") or [])
        data["max_size_mb"] = merged.get("max_size_mb")

    try:
        return field_mapper[field_type.value].model_validate(data)
    except ValidationError as exc:
        raise FieldDefinitionError(
            f"Invalid definition for field {row.field_key!r}: {exc}"
        ) from exc
