from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
)


def parse_minimax(raw: "RawResponse") -> "UsageRecord":
    data = load_object(raw)
    tokens = section(data, "tokens")
    credits = section(data, "credits")
    user = section(data, "user")

    quota = None
    windows = []
    used = optional_number(tokens, "used")
    if used is not None:
        limit = optional_number(tokens, "limit")
        quota = QuotaMetric(used=used, limit=limit, unit="tokens")
        windows.append(
            RateWindow(
                name="tokens",
                remaining=max(0.0, limit - used) if limit is not None else None,
                resets_at=parse_timestamp(tokens.get("reset_at")),
            )
        )

    credits_used = optional_number(credits, "used")
    credits_total = optional_number(credits, "total")
    if credits_used is not None and credits_total is not None:
        windows.append(
            RateWindow(name="credits", remaining=max(0.0, credits_total - credits_used))
        )
        if quota is None:
            quota = QuotaMetric(used=credits_used, limit=credits_total, unit="credits")

    if quota is None:
        raise ParseError("minimax payload has no token or credit usage")

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=quota,
        windows=tuple(windows),
        plan=optional_str(user, "plan"),
        account=optional_str(user, "email"),
    )
