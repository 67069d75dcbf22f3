"""Per-type field strategies: parameter normalisation and value validation.

Each field type has a strategy that knows its parameters (default,
minimum/maximum, length, regular expressions), how to clamp and validate
them, and how to check, store and present an issue's value for the field.
Strategies are pure; anything that needs the database (list items, issue
existence) arrives through :class:`ValueContext`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

from etraxis.db_base import FieldValidationError, _now_ts
from etraxis.models import Field

MAX_PCRE = 500

_BLANK_MESSAGE = "This value should not be blank."


@dataclass(frozen=True)
class ValueContext:
    """Inputs a strategy needs beyond the value itself.

    *timestamp* anchors relative date ranges (event time, or now for new values).
    """

    timestamp: int
    list_values: frozenset[int] = frozenset()
    issue_exists: Callable[[int], bool] | None = None


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def to_integer(value: Any, minimum: int | None = None, maximum: int | None = None) -> int | None:
    """Coerce to int and clamp into [minimum, maximum]. None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        value = int(value)
    try:
        result = int(value)
    except (TypeError, ValueError):
        msg = f"Expected an integer, got {value!r}"
        raise ValueError(msg) from None
    if minimum is not None and result < minimum:
        result = minimum
    if maximum is not None and result > maximum:
        result = maximum
    return result


def to_string(value: Any, maximum: int | None = None) -> str | None:
    """Coerce to str and truncate to *maximum* characters. None stays None."""
    if value is None:
        return None
    result = str(value)
    if maximum is not None and len(result) > maximum:
        result = result[:maximum]
    return result


def to_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _as_text(value: Any) -> str | None:
    """Scalar to str for regex checks; booleans and containers are rejected."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class FieldStrategy:
    """Base strategy: required fields reject blanks, nothing else is checked."""

    type: ClassVar[str] = ""
    parameter_names: ClassVar[tuple[str, ...]] = ()

    def __init__(self, field: Field) -> None:
        self.field = field

    def parameter(self, name: str) -> Any:
        return self.normalize_parameters(self.field.parameters).get(name)

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Return the cleaned parameter set; unknown keys are discarded."""
        return {}

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        """Raise ValueError when normalised parameters are inconsistent."""

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        """Type-specific check of a non-blank value. Returns an error message or None."""
        return None

    def validate(self, value: Any, ctx: ValueContext) -> str | None:
        if _is_blank(value):
            return _BLANK_MESSAGE if self.field.required else None
        return self.check_value(value, ctx)

    def to_storage(self, value: Any) -> Any:
        """Convert a validated value into its column representation."""
        if _is_blank(value):
            return None
        return value

    def from_storage(self, stored: Any) -> Any:
        return stored

    def render(self, value: Any) -> Any:
        """Display form of a value read back from storage."""
        return value


class CheckboxStrategy(FieldStrategy):
    type = "checkbox"
    parameter_names = ("default",)

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {"default": bool(to_boolean(raw.get("default")))}

    def validate(self, value: Any, ctx: ValueContext) -> str | None:
        if value is None:
            return _BLANK_MESSAGE if self.field.required else None
        if not isinstance(value, (bool, int)) or isinstance(value, int) and value not in (0, 1):
            return "This value should be of type boolean."
        return None

    def to_storage(self, value: Any) -> Any:
        if value is None:
            return None
        return 1 if value else 0

    def from_storage(self, stored: Any) -> Any:
        return None if stored is None else bool(stored)


class DateStrategy(FieldStrategy):
    """Dates with a range expressed in days relative to the event time."""

    type = "date"
    parameter_names = ("default", "minimum", "maximum")

    MIN_VALUE = -0x80000000
    MAX_VALUE = 0x7FFFFFFF

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        minimum = to_integer(raw.get("minimum"), self.MIN_VALUE, self.MAX_VALUE)
        maximum = to_integer(raw.get("maximum"), self.MIN_VALUE, self.MAX_VALUE)
        return {
            "default": to_integer(raw.get("default"), self.MIN_VALUE, self.MAX_VALUE),
            "minimum": self.MIN_VALUE if minimum is None else minimum,
            "maximum": self.MAX_VALUE if maximum is None else maximum,
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        if params["maximum"] < params["minimum"]:
            msg = "Maximum value should be greater then minimum one."
            raise ValueError(msg)
        default = params["default"]
        if default is not None and not params["minimum"] <= default <= params["maximum"]:
            msg = f"Default value should be in range from {params['minimum']} to {params['maximum']}."
            raise ValueError(msg)

    @staticmethod
    def shift(timestamp: int, days: int) -> date:
        """The calendar date *days* after *timestamp*, saturating at date.min/date.max."""
        base = datetime.fromtimestamp(timestamp, UTC).date()
        try:
            return base + timedelta(days=days)
        except OverflowError:
            return date.max if days > 0 else date.min

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        if not isinstance(value, str) or not re.fullmatch(r"\d{4}-[0-1]\d-[0-3]\d", value):
            return "This value is not valid."
        try:
            parsed = date.fromisoformat(value)
        except ValueError:
            return "This value is not valid."
        params = self.normalize_parameters(self.field.parameters)
        lower = self.shift(ctx.timestamp, params["minimum"])
        upper = self.shift(ctx.timestamp, params["maximum"])
        if not lower <= parsed <= upper:
            return f"'{self.field.name}' should be in range from {lower.isoformat()} to {upper.isoformat()}."
        return None


class DecimalStrategy(FieldStrategy):
    type = "decimal"
    parameter_names = ("default", "minimum", "maximum")

    MIN_VALUE = "-9999999999.9999999999"
    MAX_VALUE = "9999999999.9999999999"
    PRECISION = 10
    _PATTERN = re.compile(r"^(-|\+)?\d{1,10}(\.\d{1,10})?$")

    @classmethod
    def to_decimal(cls, value: Any) -> str | None:
        """Parse, clamp into [MIN_VALUE, MAX_VALUE] and render without exponent."""
        if value is None:
            return None
        if isinstance(value, bool):
            msg = f"Expected a decimal number, got {value!r}"
            raise ValueError(msg)
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            msg = f"Expected a decimal number, got {value!r}"
            raise ValueError(msg) from None
        if not number.is_finite():
            msg = f"Expected a decimal number, got {value!r}"
            raise ValueError(msg)
        number = max(Decimal(cls.MIN_VALUE), min(Decimal(cls.MAX_VALUE), number))
        number = number.quantize(Decimal(1).scaleb(-cls.PRECISION))
        text = format(number.normalize(), "f")
        return "0" if text in {"-0", "+0"} else text

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "default": self.to_decimal(raw.get("default")),
            "minimum": self.to_decimal(raw.get("minimum")) or self.MIN_VALUE,
            "maximum": self.to_decimal(raw.get("maximum")) or self.MAX_VALUE,
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        minimum, maximum = Decimal(params["minimum"]), Decimal(params["maximum"])
        if maximum < minimum:
            msg = "Maximum value should be greater then minimum one."
            raise ValueError(msg)
        default = params["default"]
        if default is not None and not minimum <= Decimal(default) <= maximum:
            msg = f"Default value should be in range from {params['minimum']} to {params['maximum']}."
            raise ValueError(msg)

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        text = _as_text(value)
        if text is None or not self._PATTERN.match(text):
            return "This value is not valid."
        params = self.normalize_parameters(self.field.parameters)
        if not Decimal(params["minimum"]) <= Decimal(text) <= Decimal(params["maximum"]):
            return f"'{self.field.name}' should be in range from {params['minimum']} to {params['maximum']}."
        return None

    def to_storage(self, value: Any) -> Any:
        if _is_blank(value):
            return None
        return self.to_decimal(value)


class DurationStrategy(FieldStrategy):
    """Durations entered as H:MM and stored as minutes."""

    type = "duration"
    parameter_names = ("default", "minimum", "maximum")

    MIN_VALUE = 0  # 0:00
    MAX_VALUE = 59999999  # 999999:59
    _PATTERN = re.compile(r"^\d{1,6}:[0-5]\d$")

    @classmethod
    def int2hhmm(cls, value: int | None) -> str | None:
        if value is None:
            return None
        minutes = to_integer(value, cls.MIN_VALUE, cls.MAX_VALUE) or 0
        return f"{minutes // 60}:{minutes % 60:02d}"

    @classmethod
    def hhmm2int(cls, value: Any) -> int | None:
        if not isinstance(value, str) or not cls._PATTERN.match(value):
            return None
        hh, mm = value.split(":")
        return int(hh) * 60 + int(mm)

    def _clamped(self, value: Any, fallback: int | None) -> str | None:
        minutes = to_integer(self.hhmm2int(value), self.MIN_VALUE, self.MAX_VALUE)
        return self.int2hhmm(fallback if minutes is None else minutes)

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "default": self._clamped(raw.get("default"), None),
            "minimum": self._clamped(raw.get("minimum"), self.MIN_VALUE),
            "maximum": self._clamped(raw.get("maximum"), self.MAX_VALUE),
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        minimum = self.hhmm2int(params["minimum"]) or 0
        maximum = self.hhmm2int(params["maximum"]) or 0
        if maximum < minimum:
            msg = "Maximum value should be greater then minimum one."
            raise ValueError(msg)
        default = self.hhmm2int(params["default"])
        if default is not None and not minimum <= default <= maximum:
            msg = f"Default value should be in range from {params['minimum']} to {params['maximum']}."
            raise ValueError(msg)

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        minutes = self.hhmm2int(value)
        if minutes is None:
            return "This value is not valid."
        params = self.normalize_parameters(self.field.parameters)
        if not self.hhmm2int(params["minimum"]) <= minutes <= self.hhmm2int(params["maximum"]):  # type: ignore[operator]
            return f"'{self.field.name}' should be in range from {params['minimum']} to {params['maximum']}."
        return None

    def to_storage(self, value: Any) -> Any:
        if _is_blank(value):
            return None
        return self.hhmm2int(value)

    def from_storage(self, stored: Any) -> Any:
        return self.int2hhmm(stored)


class IssueStrategy(FieldStrategy):
    """A reference to another issue by its numeric id."""

    type = "issue"

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        text = _as_text(value)
        if text is None or not re.fullmatch(r"\d+", text) or int(text) <= 0:
            return "This value is not valid."
        if ctx.issue_exists is not None and not ctx.issue_exists(int(text)):
            return f"Unknown issue: {text}"
        return None

    def to_storage(self, value: Any) -> Any:
        if _is_blank(value):
            return None
        return int(value)


class ListStrategy(FieldStrategy):
    """Values are the ``value`` numbers of the field's list items."""

    type = "list"
    parameter_names = ("default",)

    MIN_VALUE = 1

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {"default": to_integer(raw.get("default"), self.MIN_VALUE)}

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        text = _as_text(value)
        if text is None or not re.fullmatch(r"\d+", text) or int(text) <= 0:
            return "This value is not valid."
        if int(text) not in ctx.list_values:
            return "The value you selected is not a valid choice."
        return None

    def to_storage(self, value: Any) -> Any:
        if _is_blank(value):
            return None
        return int(value)


class NumberStrategy(FieldStrategy):
    type = "number"
    parameter_names = ("default", "minimum", "maximum")

    MIN_VALUE = -1000000000
    MAX_VALUE = 1000000000
    _PATTERN = re.compile(r"^(-|\+)?\d+$")

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        minimum = to_integer(raw.get("minimum"), self.MIN_VALUE, self.MAX_VALUE)
        maximum = to_integer(raw.get("maximum"), self.MIN_VALUE, self.MAX_VALUE)
        return {
            "default": to_integer(raw.get("default"), self.MIN_VALUE, self.MAX_VALUE),
            "minimum": self.MIN_VALUE if minimum is None else minimum,
            "maximum": self.MAX_VALUE if maximum is None else maximum,
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        if params["maximum"] < params["minimum"]:
            msg = "Maximum value should be greater then minimum one."
            raise ValueError(msg)
        default = params["default"]
        if default is not None and not params["minimum"] <= default <= params["maximum"]:
            msg = f"Default value should be in range from {params['minimum']} to {params['maximum']}."
            raise ValueError(msg)

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        text = _as_text(value)
        if text is None or not self._PATTERN.match(text):
            return "This value is not valid."
        params = self.normalize_parameters(self.field.parameters)
        if not params["minimum"] <= int(text) <= params["maximum"]:
            return f"'{self.field.name}' should be in range from {params['minimum']} to {params['maximum']}."
        return None

    def to_storage(self, value: Any) -> Any:
        if _is_blank(value):
            return None
        return int(value)


class StringStrategy(FieldStrategy):
    type = "string"
    parameter_names = ("default", "length", "pcre_check", "pcre_search", "pcre_replace")

    MIN_LENGTH = 1
    MAX_LENGTH = 250

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        length = to_integer(raw.get("length"), self.MIN_LENGTH, self.MAX_LENGTH)
        return {
            "default": to_string(raw.get("default"), self.MAX_LENGTH),
            "length": self.MAX_LENGTH if length is None else length,
            "pcre_check": to_string(raw.get("pcre_check"), MAX_PCRE) or None,
            "pcre_search": to_string(raw.get("pcre_search"), MAX_PCRE) or None,
            "pcre_replace": to_string(raw.get("pcre_replace"), MAX_PCRE) or None,
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        default = params["default"]
        if default is not None and len(default) > params["length"]:
            msg = f"This value is too long. It should have {params['length']} characters or less."
            raise ValueError(msg)
        for key in ("pcre_check", "pcre_search"):
            if params[key]:
                try:
                    re.compile(params[key])
                except re.error as exc:
                    msg = f"Invalid regular expression in {key}: {exc}"
                    raise ValueError(msg) from None

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        if not isinstance(value, str):
            return "This value should be of type string."
        params = self.normalize_parameters(self.field.parameters)
        if len(value) > params["length"]:
            return f"This value is too long. It should have {params['length']} characters or less."
        if params["pcre_check"] and not re.fullmatch(params["pcre_check"], value):
            return "This value is not valid."
        return None

    def render(self, value: Any) -> Any:
        """Apply the search/replace pair used to turn values into links."""
        params = self.normalize_parameters(self.field.parameters)
        if value is None or not params["pcre_search"] or params["pcre_replace"] is None:
            return value
        return re.sub(params["pcre_search"], params["pcre_replace"], value)


class TextStrategy(FieldStrategy):
    type = "text"
    parameter_names = ("default", "length")

    MIN_LENGTH = 1
    MAX_LENGTH = 10000

    def normalize_parameters(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        length = to_integer(raw.get("length"), self.MIN_LENGTH, self.MAX_LENGTH)
        return {
            "default": to_string(raw.get("default"), self.MAX_LENGTH),
            "length": self.MAX_LENGTH if length is None else length,
        }

    def check_parameters(self, params: Mapping[str, Any]) -> None:
        default = params["default"]
        if default is not None and len(default) > params["length"]:
            msg = f"This value is too long. It should have {params['length']} characters or less."
            raise ValueError(msg)

    def check_value(self, value: Any, ctx: ValueContext) -> str | None:
        if not isinstance(value, str):
            return "This value should be of type string."
        length = self.normalize_parameters(self.field.parameters)["length"]
        if len(value) > length:
            return f"This value is too long. It should have {length} characters or less."
        return None


STRATEGIES: dict[str, type[FieldStrategy]] = {
    cls.type: cls
    for cls in (
        CheckboxStrategy,
        DateStrategy,
        DecimalStrategy,
        DurationStrategy,
        IssueStrategy,
        ListStrategy,
        NumberStrategy,
        StringStrategy,
        TextStrategy,
    )
}


def get_strategy(field: Field) -> FieldStrategy:
    try:
        return STRATEGIES[field.type](field)
    except KeyError:
        msg = f"Unknown field type '{field.type}'"
        raise ValueError(msg) from None


def prepare_parameters(field_type: str, raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Normalise and check the parameters of a field about to be saved."""
    if field_type not in STRATEGIES:
        msg = f"Unknown field type '{field_type}'. Valid types: {', '.join(sorted(STRATEGIES))}"
        raise ValueError(msg)
    probe = Field(id=0, state_id=0, name="", type=field_type)
    strategy = STRATEGIES[field_type](probe)
    params = strategy.normalize_parameters(raw or {})
    strategy.check_parameters(params)
    return params


def normalize_value_keys(values: Mapping[Any, Any] | None) -> dict[Any, Any]:
    """Map JSON-style string keys ("12") onto integer field ids."""
    result: dict[Any, Any] = {}
    for key, value in (values or {}).items():
        if isinstance(key, str) and key.strip().isdigit():
            result[int(key)] = value
        else:
            result[key] = value
    return result


def validate_field_values(
    fields: list[Field],
    values: Mapping[Any, Any] | None,
    contexts: Mapping[int, ValueContext] | None = None,
) -> dict[int, Any]:
    """Validate a whole set of values against *fields* at once.

    Keys are field ids. Unexpected keys are rejected, missing keys count as
    None. Every violation is collected and raised together as a
    :class:`FieldValidationError`. Returns the complete id -> value mapping.
    """
    normalized = normalize_value_keys(values)
    known = {f.id for f in fields}
    errors: dict[str, str] = {}
    for key in normalized:
        if key not in known:
            errors[str(key)] = "This field was not expected."

    default_ctx = ValueContext(timestamp=_now_ts())
    result: dict[int, Any] = {}
    for f in fields:
        value = normalized.get(f.id)
        ctx = (contexts or {}).get(f.id, default_ctx)
        message = get_strategy(f).validate(value, ctx)
        if message is not None:
            errors[str(f.id)] = message
        result[f.id] = value

    if errors:
        raise FieldValidationError(errors)
    return result
