import json
from dataclasses import replace
from typing import Any

from quotabar.errors import ParseError
from quotabar.models import (
    QuotaMetric,
    RateWindow,
    RawResponse,
    StrategyKind,
    UsageRecord,
)
from quotabar.parser.common import (
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
    strip_ansi,
)


def parse_codex(raw: "RawResponse") -> "UsageRecord":
    if raw.source == StrategyKind.CLI:
        data = _cli_object(raw)
    else:
        data = load_object(raw)

    if "rate_limit" in data:
        return _parse_rate_limit(raw, data)
    return _parse_cli(raw, data)


def _cli_object(raw: "RawResponse") -> "dict[str, Any]":
    """
    the CLI may print a banner around its JSON, keep the
    outermost object only.
    """
    text = strip_ansi(raw.text())
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        raise ParseError("codex output contains no JSON object")
    try:
        data = json.loads(text[start : end + 1])
    except ValueError as exc:
        raise ParseError("codex output is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ParseError("codex output is not a JSON object")
    return data


def _window(
    name: "str",
    data: "dict[str, Any]",
    reset_key: "str",
) -> "tuple[float, RateWindow] | None":
    used = optional_number(data, "used_percent", "usage_percent", "percent")
    if used is None:
        return None
    return used, RateWindow(
        name=name,
        remaining=max(0.0, 100.0 - used),
        resets_at=parse_timestamp(data.get(reset_key)),
    )


def _build(
    raw: "RawResponse",
    windows: "list[tuple[float, RateWindow]]",
    plan: "str | None",
    account: "str | None",
) -> "UsageRecord":
    if not windows:
        raise ParseError("codex payload has no rate limit windows")
    used, _ = windows[0]
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=used, limit=100.0, unit="percent"),
        windows=tuple(w for _, w in windows),
        plan=plan,
        account=account,
    )


def _parse_cli(raw: "RawResponse", data: "dict[str, Any]") -> "UsageRecord":
    windows = []
    for name in ("session", "weekly"):
        parsed = _window(name, section(data, name), "resets_at")
        if parsed is not None:
            windows.append(parsed)

    account = section(data, "account")
    return _build(
        raw,
        windows,
        plan=optional_str(account, "plan"),
        account=optional_str(account, "email"),
    )


def _parse_rate_limit(raw: "RawResponse", data: "dict[str, Any]") -> "UsageRecord":
    limits = section(data, "rate_limit")
    windows = []
    for key, name in (("primary_window", "session"), ("secondary_window", "weekly")):
        parsed = _window(name, section(limits, key), "reset_at")
        if parsed is not None:
            windows.append(parsed)

    record = _build(
        raw,
        windows,
        plan=optional_str(data, "plan_type"),
        account=optional_str(data, "email"),
    )

    # prepaid credits have no reset, they show up as an extra window
    balance = optional_number(section(data, "credits"), "balance")
    if balance is None:
        return record
    credits = RateWindow(name="credits", remaining=balance)
    return replace(record, windows=record.windows + (credits,))
