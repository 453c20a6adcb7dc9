"""Validator — decides whether a raw reply satisfies a field.

Pure and synchronous: given a typed field model and the respondent's raw
reply, returns either ``Accepted`` with the normalized value that gets
persisted, or ``Rejected`` with a label-specific error message.  No I/O.

Dispatch is an exhaustive table over ``FieldType``; adding a field kind
without a rule fails at import time.

Empty replies are handled before dispatch:
  - required field → rejected with "<label> is required"
  - optional field → accepted with value ``None``
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Callable, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel

from formchat_engine.constants import MIN_PHONE_DIGITS
from formchat_engine.models.field import (
    BaseField,
    DateField,
    EmailField,
    FieldType,
    FileField,
    LongTextField,
    MultiSelectField,
    NumberField,
    Option,
    PhoneField,
    RatingField,
    ShortTextField,
    SingleSelectField,
    UrlField,
)

logger = logging.getLogger(__name__)

RawValue = Union[str, list[str], None]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-+()]+$")

# Day-first forms tried after ISO; "%d %B %Y" covers "5 March 2024"
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d %B %Y", "%d %b %Y")


class Accepted(BaseModel):
    """The reply satisfies the field; ``value`` is what gets persisted."""

    accepted: bool = True
    value: Any = None


class Rejected(BaseModel):
    """The reply does not satisfy the field."""

    accepted: bool = False
    error: str


ValidationResult = Union[Accepted, Rejected]


def _is_empty(raw: RawValue) -> bool:
    if raw is None:
        return True
    if isinstance(raw, list):
        return not any(str(v).strip() for v in raw)
    return not raw.strip()


def _as_text(raw: RawValue) -> str:
    if isinstance(raw, list):
        return ", ".join(str(v).strip() for v in raw if str(v).strip())
    return (raw or "").strip()


def _fmt_number(value: float) -> str:
    """Render 5.0 as "5" and 2.5 as "2.5" in error messages."""
    return str(int(value)) if float(value).is_integer() else str(value)


def _match_option(reply: str, options: list[Option]) -> Optional[Option]:
    """Match by exact id first, then by case-insensitive label."""
    for opt in options:
        if opt.id == reply:
            return opt
    lowered = reply.casefold()
    for opt in options:
        if opt.label.casefold() == lowered:
            return opt
    return None


class Validator:
    """Validates raw replies against typed field models."""

    def __init__(self) -> None:
        self._rules: dict[FieldType, Callable[..., ValidationResult]] = {
            FieldType.SHORT_TEXT: self._validate_text,
            FieldType.LONG_TEXT: self._validate_text,
            FieldType.EMAIL: self._validate_email,
            FieldType.PHONE: self._validate_phone,
            FieldType.NUMBER: self._validate_number,
            FieldType.URL: self._validate_url,
            FieldType.DATE: self._validate_date,
            FieldType.SINGLE_SELECT: self._validate_single_select,
            FieldType.MULTI_SELECT: self._validate_multi_select,
            FieldType.RATING: self._validate_rating,
            FieldType.FILE: self._validate_file,
        }
        missing = set(FieldType) - set(self._rules)
        if missing:
            raise RuntimeError(f"No validation rule for field types: {missing}")

    def validate(
        self,
        raw: RawValue,
        field: BaseField,
        *,
        media_type: str | None = None,
        media_size: int | None = None,
    ) -> ValidationResult:
        """Validate ``raw`` against ``field``.

        Args:
            raw: the reply (typed text, tapped option id, list of ids, or
                a media id for file fields)
            field: the typed field model awaiting an answer
            media_type: MIME type of an uploaded file, when known
            media_size: size of an uploaded file in bytes, when known

        Returns:
            ``Accepted`` with the normalized value, or ``Rejected`` with a
            message naming the field's label.
        """
        if _is_empty(raw):
            if field.required:
                return Rejected(error=f"{field.label} is required")
            return Accepted(value=None)

        rule = self._rules[FieldType(field.field_type)]
        if isinstance(field, FileField):
            return rule(raw, field, media_type, media_size)
        return rule(raw, field)

    # ------------------------------------------------------------------
    # Free input
    # ------------------------------------------------------------------

    def _validate_text(
        self, raw: RawValue, field: Union[ShortTextField, LongTextField]
    ) -> ValidationResult:
        text = _as_text(raw)
        if field.min_length is not None and len(text) < field.min_length:
            return Rejected(
                error=f"{field.label} must be at least {field.min_length} characters"
            )
        if field.max_length is not None and len(text) > field.max_length:
            return Rejected(
                error=f"{field.label} must be at most {field.max_length} characters"
            )
        return Accepted(value=text)

    def _validate_email(self, raw: RawValue, field: EmailField) -> ValidationResult:
        text = _as_text(raw)
        if not _EMAIL_RE.match(text):
            return Rejected(error=f"{field.label} must be a valid email")
        local, _, domain = text.rpartition("@")
        return Accepted(value=f"{local}@{domain.lower()}")

    def _validate_phone(self, raw: RawValue, field: PhoneField) -> ValidationResult:
        text = _as_text(raw)
        digits = re.sub(r"\D", "", text)
        if not _PHONE_RE.match(text) or len(digits) < MIN_PHONE_DIGITS:
            return Rejected(error=f"{field.label} must be a valid phone number")
        prefix = "+" if text.startswith("+") else ""
        return Accepted(value=prefix + digits)

    def _validate_number(self, raw: RawValue, field: NumberField) -> ValidationResult:
        text = _as_text(raw)
        try:
            number = float(text)
        except ValueError:
            number = None
        if number is not None and not math.isfinite(number):
            number = None

        lo, hi = field.min_value, field.max_value
        out_of_range = number is not None and (
            (lo is not None and number < lo) or (hi is not None and number > hi)
        )
        if number is None or out_of_range:
            msg = f"{field.label} must be a valid number"
            if lo is not None and hi is not None:
                msg += f" between {_fmt_number(lo)} and {_fmt_number(hi)}"
            elif lo is not None:
                msg += f" at least {_fmt_number(lo)}"
            elif hi is not None:
                msg += f" at most {_fmt_number(hi)}"
            return Rejected(error=msg)
        return Accepted(value=number)

    def _validate_url(self, raw: RawValue, field: UrlField) -> ValidationResult:
        text = _as_text(raw)
        parsed = urlparse(text)
        # Absolute URL: a scheme plus a host (or a path for schemes like mailto:)
        if not parsed.scheme or not (parsed.netloc or parsed.path) or " " in text:
            return Rejected(error=f"{field.label} must be a valid URL")
        if parsed.scheme in ("http", "https") and not parsed.netloc:
            return Rejected(error=f"{field.label} must be a valid URL")
        return Accepted(value=text)

    def _validate_date(self, raw: RawValue, field: DateField) -> ValidationResult:
        text = _as_text(raw)
        parsed: date | None = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt).date()
                break
            except ValueError:
                continue
        if parsed is None:
            return Rejected(error=f"{field.label} must be a valid date")
        return Accepted(value=parsed.isoformat())

    def _validate_rating(self, raw: RawValue, field: RatingField) -> ValidationResult:
        text = _as_text(raw)
        try:
            rating = int(text)
        except ValueError:
            rating = None
        if rating is None or not 1 <= rating <= field.scale:
            return Rejected(error=f"{field.label} must be between 1 and {field.scale}")
        return Accepted(value=rating)

    # ------------------------------------------------------------------
    # Choice
    # ------------------------------------------------------------------

    def _validate_single_select(
        self, raw: RawValue, field: SingleSelectField
    ) -> ValidationResult:
        text = _as_text(raw)
        if not field.options:
            return Accepted(value=text)
        opt = _match_option(text, field.options)
        if opt is None:
            return Rejected(error=f"{field.label} must be a valid option")
        return Accepted(value=opt.id)

    def _validate_multi_select(
        self, raw: RawValue, field: MultiSelectField
    ) -> ValidationResult:
        if isinstance(raw, list):
            parts = [str(v).strip() for v in raw]
        else:
            parts = [p.strip() for p in (raw or "").split(",")]
        parts = [p for p in parts if p]

        if not field.options:
            return Accepted(value=list(dict.fromkeys(parts)))

        ids: list[str] = []
        for part in parts:
            opt = _match_option(part, field.options)
            if opt is None:
                return Rejected(error=f"{field.label} contains invalid options")
            ids.append(opt.id)
        # De-duplicate, keeping first-seen order
        return Accepted(value=list(dict.fromkeys(ids)))

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _validate_file(
        self,
        raw: RawValue,
        field: FileField,
        media_type: str | None,
        media_size: int | None,
    ) -> ValidationResult:
        media_id = _as_text(raw)
        if field.allowed_types and media_type and media_type not in field.allowed_types:
            allowed = ", ".join(field.allowed_types)
            return Rejected(error=f"{field.label} must be one of: {allowed}")
        if (
            field.max_size_mb is not None
            and media_size is not None
            and media_size > field.max_size_mb * 1024 * 1024
        ):
            return Rejected(
                error=f"{field.label} must be at most {_fmt_number(field.max_size_mb)} MB"
            )
        return Accepted(value={"media_id": media_id, "mime_type": media_type})


_default_validator = Validator()


def validate(
    raw: RawValue,
    field: BaseField,
    *,
    media_type: str | None = None,
    media_size: int | None = None,
) -> ValidationResult:
    """Module-level shortcut for ``Validator().validate``."""
    return _default_validator.validate(
        raw, field, media_type=media_type, media_size=media_size
    )
