from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
)

UNIT_NAMES = {
    1: "second",
    2: "minute",
    3: "hour",
    4: "day",
    5: "month",
    6: "year",
}


def _window_name(limit: "dict") -> "str":
    number = limit.get("number", 1)
    unit = UNIT_NAMES.get(limit.get("unit", 0), "window")
    kind = str(limit.get("type", "limit")).lower()
    return f"{kind}_{number}_{unit}"


def parse_zai(raw: "RawResponse") -> "UsageRecord":
    """
    parses the coding plan quota limits. TOKENS_LIMIT entries
    only carry a percentage, TIME_LIMIT entries carry counts.
    """
    data = load_object(raw)
    if data.get("success") is False:
        raise ParseError(f"zai reported failure: {data.get('msg', 'unknown error')}")

    body = section(data, "data")
    limits = body.get("limits")
    if not isinstance(limits, list) or not limits:
        raise ParseError("zai payload has no limits")

    quota = None
    windows = []
    for limit in limits:
        if not isinstance(limit, dict):
            raise ParseError("zai limit entry is not an object")
        resets_at = parse_timestamp(limit.get("nextResetTime"))

        if limit.get("type") == "TIME_LIMIT":
            total = optional_number(limit, "usage")
            used = optional_number(limit, "currentValue")
            remaining = optional_number(limit, "remaining")
            unit = "requests"
        else:
            used = optional_number(limit, "percentage")
            total = 100.0
            remaining = max(0.0, 100.0 - used) if used is not None else None
            unit = "percent"

        if used is None:
            raise ParseError(f"zai limit {_window_name(limit)} has no usage value")

        windows.append(
            RateWindow(name=_window_name(limit), remaining=remaining, resets_at=resets_at)
        )
        # the token window is the one that throttles coding sessions
        if quota is None or limit.get("type") == "TOKENS_LIMIT":
            quota = QuotaMetric(used=used, limit=total, unit=unit)

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=quota,
        windows=tuple(windows),
        plan=optional_str(body, "level"),
    )
