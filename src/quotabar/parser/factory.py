from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    optional_number,
    optional_str,
    parse_timestamp,
    section,
)


def parse_factory(raw: "RawResponse") -> "UsageRecord":
    data = load_object(raw)
    usage = section(data, "usage")
    user = section(data, "user")

    windows = []
    for name, key in (("session", "session_percent"), ("monthly", "monthly_percent")):
        percent = optional_number(usage, key)
        if percent is not None:
            windows.append(
                (
                    percent,
                    RateWindow(
                        name=name,
                        remaining=max(0.0, 100.0 - percent),
                        resets_at=parse_timestamp(usage.get(f"{name}_resets_at")),
                    ),
                )
            )

    if not windows:
        raise ParseError("factory payload has no usage percentages")

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=windows[0][0], limit=100.0, unit="percent"),
        windows=tuple(w for _, w in windows),
        plan=optional_str(user, "plan"),
        account=optional_str(user, "email"),
    )
