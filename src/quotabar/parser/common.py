import json
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from quotabar.errors import ParseError
from quotabar.models import RawResponse

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")

# epoch values above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 10_000_000_000


def load_object(raw: "RawResponse") -> "dict[str, Any]":
    """
    decodes a JSON object payload, anything else is a ParseError.
    """
    try:
        data = json.loads(raw.body)
    except ValueError as exc:
        raise ParseError(f"{raw.provider} payload is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ParseError(f"{raw.provider} payload is not a JSON object")
    return data


def load_list(raw: "RawResponse") -> "list[Any]":
    try:
        data = json.loads(raw.body)
    except ValueError as exc:
        raise ParseError(f"{raw.provider} payload is not valid JSON") from exc

    if not isinstance(data, list):
        raise ParseError(f"{raw.provider} payload is not a JSON list")
    return data


def section(data: "Mapping[str, Any]", key: "str") -> "dict[str, Any]":
    """
    returns a nested object, or an empty dict when it is absent.
    A present value of the wrong type is a ParseError.
    """
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"field {key!r} is not an object")
    return value


def to_number(value: "Any", name: "str") -> "float":
    if isinstance(value, bool):
        raise ParseError(f"field {name!r} is not numeric")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise ParseError(f"field {name!r} is not numeric") from exc
    else:
        raise ParseError(f"field {name!r} is not numeric")

    if number != number or number < 0:
        raise ParseError(f"field {name!r} must be a non-negative number")
    return number


def optional_number(data: "Mapping[str, Any]", *keys: "str") -> "float | None":
    """
    returns the first present key as a number. Missing fields
    stay None, they are never defaulted to zero.
    """
    for key in keys:
        value = data.get(key)
        if value is not None:
            return to_number(value, key)
    return None


def required_number(data: "Mapping[str, Any]", *keys: "str") -> "float":
    value = optional_number(data, *keys)
    if value is None:
        raise ParseError(f"missing required field {keys[0]!r}")
    return value


def optional_str(data: "Mapping[str, Any]", *keys: "str") -> "str | None":
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def to_decimal(value: "Any", name: "str") -> "Decimal":
    """
    parses a non-negative monetary amount exactly.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ParseError(f"field {name!r} is not a monetary amount")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ParseError(f"field {name!r} is not a monetary amount") from exc

    if not amount.is_finite() or amount < 0:
        raise ParseError(f"field {name!r} must be a non-negative amount")
    return amount


def to_minor_units(value: "Any", name: "str", exponent: "int" = 2) -> "int":
    """
    converts a major-unit amount (e.g. 12.345 dollars) to integer
    minor units, rounding half up. Decimal is used so repeated
    conversions of the same input never drift.
    """
    amount = to_decimal(value, name)
    scaled = (amount * (Decimal(10) ** exponent)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def minor_units(value: "Any", name: "str") -> "int":
    """
    validates an amount that is already in minor units.
    """
    number = to_number(value, name)
    if number != int(number):
        raise ParseError(f"field {name!r} must be a whole number of minor units")
    return int(number)


def parse_timestamp(value: "Any") -> "datetime | None":
    """
    accepts ISO-8601 strings, epoch seconds and epoch
    milliseconds. Unparseable values become None since reset
    times are informational.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str) and value:
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    return None


def strip_ansi(text: "str") -> "str":
    return _ANSI_RE.sub("", text)
