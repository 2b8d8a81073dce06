from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
    to_number,
)


def parse_gemini(raw: "RawResponse") -> "UsageRecord":
    """
    the Code Assist quota endpoint returns one bucket per model
    with the fraction still available; the CLI reports a plain
    request counter instead.
    """
    data = load_object(raw)
    if "buckets" in data:
        return _parse_buckets(raw, data)

    requests = section(data, "requests")
    used = optional_number(requests, "used")
    if used is None:
        raise ParseError("gemini payload has neither buckets nor request counts")
    limit = optional_number(requests, "limit")
    window = RateWindow(
        name="daily",
        remaining=max(0.0, limit - used) if limit is not None else None,
        resets_at=parse_timestamp(requests.get("reset_at")),
    )
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=used, limit=limit, unit="requests"),
        windows=(window,),
    )


def _parse_buckets(raw: "RawResponse", data: "dict") -> "UsageRecord":
    buckets = data["buckets"]
    if not isinstance(buckets, list) or not buckets:
        raise ParseError("gemini quota buckets are empty")

    windows = []
    for bucket in buckets:
        if not isinstance(bucket, dict):
            raise ParseError("gemini quota bucket is not an object")
        fraction = to_number(bucket.get("remainingFraction"), "remainingFraction")
        remaining = round(min(fraction, 1.0) * 100.0, 2)
        windows.append(
            RateWindow(
                name=optional_str(bucket, "modelId") or "default",
                remaining=remaining,
                resets_at=parse_timestamp(bucket.get("resetTime")),
            )
        )

    worst = min(w.remaining for w in windows if w.remaining is not None)
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        # the most exhausted model bounds what the user can still do
        quota=QuotaMetric(used=round(100.0 - worst, 2), limit=100.0, unit="percent"),
        windows=tuple(windows),
    )
