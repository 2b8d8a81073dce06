import json
from datetime import datetime
from typing import Any

from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, StrategyKind, UsageRecord
from quotabar.parser.common import (
    load_list,
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
)

USAGE_KEY = "cursorAuth/cachedUsage"
EMAIL_KEY = "cursorAuth/cachedEmail"
PLAN_KEY = "cursorAuth/stripeMembershipType"


def _next_month(start: "datetime") -> "datetime":
    year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    # clamp days that do not exist in the following month
    for day in (start.day, 30, 29, 28):
        try:
            return start.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ParseError("cannot compute cursor billing period")


def _record(
    raw: "RawResponse",
    usage: "dict[str, Any]",
    period_start: "Any",
    plan: "str | None",
    account: "str | None",
) -> "UsageRecord":
    used = optional_number(usage, "numRequests", "gpt4_requests", "requests")
    if used is None:
        raise ParseError("cursor usage has no request count")
    limit = optional_number(usage, "maxRequestUsage", "maxRequests", "gpt4_limit")

    start = parse_timestamp(period_start)
    window = RateWindow(
        name="monthly",
        remaining=max(0.0, limit - used) if limit is not None else None,
        resets_at=_next_month(start) if start is not None else None,
    )
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=used, limit=limit, unit="requests"),
        windows=(window,),
        plan=plan,
        account=account,
    )


def parse_cursor(raw: "RawResponse") -> "UsageRecord":
    if raw.source == StrategyKind.LOCAL_DB:
        return _parse_rows(raw)
    return _parse_api(raw)


def _parse_api(raw: "RawResponse") -> "UsageRecord":
    data = load_object(raw)
    usage = section(data, "gpt-4")
    return _record(raw, usage, data.get("startOfMonth"), plan=None, account=None)


def _parse_rows(raw: "RawResponse") -> "UsageRecord":
    """
    rows come from the editor's ItemTable: one key/value pair per
    row, values are JSON documents or plain strings.
    """
    items: "dict[str, Any]" = {}
    for row in load_list(raw):
        if isinstance(row, dict) and isinstance(row.get("key"), str):
            items[row["key"]] = row.get("value")

    cached = items.get(USAGE_KEY)
    if not isinstance(cached, str):
        raise ParseError("cursor state has no cached usage entry")
    try:
        usage = json.loads(cached)
    except ValueError as exc:
        raise ParseError("cursor cached usage is not valid JSON") from exc
    if not isinstance(usage, dict):
        raise ParseError("cursor cached usage is not an object")

    return _record(
        raw,
        usage,
        usage.get("startOfMonth"),
        plan=optional_str(items, PLAN_KEY),
        account=optional_str(items, EMAIL_KEY),
    )
