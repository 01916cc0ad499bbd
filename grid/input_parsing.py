"""
Operator input parsing for hourly grid cells.

Operators type numbers in the Indonesian convention: `.` groups thousands and
`,` is the decimal separator (`1.234,5`). Plain international input (`255.2`)
is accepted too, which makes a single dot ambiguous. The rule applied:

- a comma is present: every dot is a thousands separator, the comma is decimal
- several dots and no comma: thousands separators (`1.000.000`)
- one dot and no comma, policy `thousands` (default): the dot groups thousands
  only when exactly three digits follow it and the integer part is 1-3 digits
  other than `0` (`1.234` -> 1234, `0.125` -> 0.125, `12.5` -> 12.5,
  `1234.567` -> 1234.567)
- one dot and no comma, policy `decimal`: the dot is always decimal
"""

import re

from record_store.records import PARAMETER_TYPE_NUMBER
from runtime.parsing import finite_float, is_blank


SINGLE_DOT_POLICIES = {"thousands", "decimal"}

_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")
_GROUPED_THOUSANDS = re.compile(r"^[+-]?\d{1,3}(\.\d{3})+$")
_MEASUREMENT_UNIT = re.compile(r"\(([^()]*)\)\s*$")

_HIGH_PRECISION_UNITS = ("bar", "psi", "kpa", "mpa", "m³/h", "kg/h", "t/h", "l/h", "ml/h")
_MEDIUM_PRECISION_UNITS = ("°c", "°f", "°k", "%", "kg", "ton", "m³", "l", "ml")
_LOW_PRECISION_UNITS = ("unit", "pcs", "buah", "batch", "shift")


class InputValidationError(ValueError):
    """Raised when operator input is rejected before any store call."""

    def __init__(self, message, *, code="invalid_input", value=None):
        super().__init__(message)
        self.code = code
        self.value = value


def parse_numeric_input(value, single_dot_policy="thousands"):
    """Parse operator input to float; return None when it is not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return finite_float(value)
    if value is None:
        return None

    text = str(value).strip().replace(" ", "")
    if not text:
        return None

    if "," in text:
        if text.count(",") > 1:
            return None
        normalized = text.replace(".", "").replace(",", ".")
    else:
        dot_count = text.count(".")
        if dot_count > 1:
            if not _GROUPED_THOUSANDS.match(text):
                return None
            normalized = text.replace(".", "")
        elif dot_count == 1 and single_dot_policy == "thousands":
            integer_part, fraction_part = text.split(".")
            digits = integer_part.lstrip("+-")
            if len(fraction_part) == 3 and 1 <= len(digits) <= 3 and digits != "0":
                normalized = text.replace(".", "")
            else:
                normalized = text
        else:
            normalized = text

    if not _PLAIN_NUMBER.match(normalized):
        return None
    return finite_float(normalized)


def _bounds_for(definition, variant=None):
    if variant:
        bounds = (definition.get("variant_bounds") or {}).get(str(variant).upper())
        if bounds is not None:
            return bounds
    return definition.get("min_value"), definition.get("max_value")


def check_bounds(number, definition, variant=None):
    low, high = _bounds_for(definition, variant)
    if low is not None and number < low:
        raise InputValidationError(
            f"Value {number} is below the minimum {low} for '{definition.get('parameter')}'.",
            code="out_of_range",
            value=number,
        )
    if high is not None and number > high:
        raise InputValidationError(
            f"Value {number} is above the maximum {high} for '{definition.get('parameter')}'.",
            code="out_of_range",
            value=number,
        )


def coerce_cell_value(raw_value, definition, *, single_dot_policy="thousands", variant=None):
    """
    Turn raw cell input into the value persisted for a parameter.

    Returns None for a cleared cell, a float for numeric input, or the stripped
    text for text parameters whose input is not a number.

    Raises:
        InputValidationError: Numeric parameter with unparseable or out-of-range input
    """
    if is_blank(raw_value):
        return None

    number = parse_numeric_input(raw_value, single_dot_policy)
    if definition.get("data_type", PARAMETER_TYPE_NUMBER) != PARAMETER_TYPE_NUMBER:
        return number if number is not None else str(raw_value).strip()

    if number is None:
        raise InputValidationError(
            f"'{raw_value}' is not a number for '{definition.get('parameter')}'.",
            code="not_a_number",
            value=raw_value,
        )
    check_bounds(number, definition, variant)
    return number


def measurement_unit(parameter_name):
    """Return the measurement unit written in parentheses at the end of a parameter name."""
    match = _MEASUREMENT_UNIT.search(str(parameter_name or ""))
    return match.group(1).strip() if match else ""


def precision_for_unit(unit):
    if not unit:
        return 1
    lower_unit = str(unit).lower()
    if any(token in lower_unit for token in _HIGH_PRECISION_UNITS):
        return 2
    if any(token in lower_unit for token in _MEDIUM_PRECISION_UNITS):
        return 1
    if any(token in lower_unit for token in _LOW_PRECISION_UNITS):
        return 0
    return 1


def format_number(value, precision=1):
    """Format a number the way operators read it: `1.234,5`."""
    number = finite_float(value)
    if number is None:
        return ""
    text = f"{number:,.{int(precision)}f}"
    return text.replace(",", "\u0000").replace(".", ",").replace("\u0000", ".")
