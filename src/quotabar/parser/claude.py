from typing import Any

from quotabar.errors import ParseError
from quotabar.models import CostMetric, QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    minor_units,
    optional_number,
    parse_timestamp,
    section,
    to_minor_units,
)

# utilization windows reported by the OAuth usage endpoint,
# the first one present becomes the record's quota
WINDOWS = ("five_hour", "seven_day", "seven_day_opus", "seven_day_sonnet")


def parse_claude(raw: "RawResponse") -> "UsageRecord":
    """
    handles both Anthropic payloads: the cents-based usage report
    served to API keys and the utilization windows served to
    OAuth tokens.
    """
    data = load_object(raw)
    if "used_usd_cents" in data:
        return _parse_usage_report(raw, data)
    return _parse_oauth_usage(raw, data)


def _parse_usage_report(raw: "RawResponse", data: "dict[str, Any]") -> "UsageRecord":
    used = minor_units(data["used_usd_cents"], "used_usd_cents")
    limit = data.get("limit_usd_cents")
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        cost=CostMetric(
            amount=used,
            limit=minor_units(limit, "limit_usd_cents") if limit is not None else None,
            currency="USD",
        ),
    )


def _parse_oauth_usage(raw: "RawResponse", data: "dict[str, Any]") -> "UsageRecord":
    quota = None
    windows = []
    for name in WINDOWS:
        window = section(data, name)
        utilization = optional_number(window, "utilization")
        if utilization is None:
            continue
        if quota is None:
            quota = QuotaMetric(used=utilization, limit=100.0, unit="percent")
        windows.append(
            RateWindow(
                name=name,
                remaining=max(0.0, 100.0 - utilization),
                resets_at=parse_timestamp(window.get("resets_at")),
            )
        )

    cost = None
    extra = section(data, "extra_usage")
    if extra.get("is_enabled") and extra.get("used_credits") is not None:
        limit = extra.get("monthly_limit")
        cost = CostMetric(
            # credits are reported in cents
            amount=to_minor_units(extra["used_credits"], "used_credits", exponent=0),
            limit=minor_units(limit, "monthly_limit") if limit is not None else None,
            currency="USD",
        )

    if quota is None and cost is None:
        raise ParseError("claude payload has no usage windows")

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=quota,
        cost=cost,
        windows=tuple(windows),
    )
