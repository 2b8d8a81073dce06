from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import (
    load_object,
    optional_str,
    parse_timestamp,
    section,
    to_number,
)

PRIMARY_SNAPSHOT = "premium_interactions"


def parse_copilot(raw: "RawResponse") -> "UsageRecord":
    """
    GitHub reports remaining entitlement per quota snapshot.
    remaining goes negative once overage billing kicks in, which
    shows up as an inconsistent record.
    """
    data = load_object(raw)
    snapshots = section(data, "quota_snapshots")
    if not snapshots:
        raise ParseError("copilot payload has no quota snapshots")

    resets_at = parse_timestamp(data.get("quota_reset_date"))
    quota = None
    windows = []
    for name, snapshot in sorted(snapshots.items()):
        if not isinstance(snapshot, dict):
            raise ParseError(f"copilot snapshot {name!r} is not an object")
        if snapshot.get("unlimited"):
            windows.append(RateWindow(name=name, remaining=None, resets_at=resets_at))
            continue

        entitlement = to_number(snapshot.get("entitlement"), "entitlement")
        remaining = snapshot.get("remaining")
        if isinstance(remaining, (int, float)) and not isinstance(remaining, bool):
            left = float(remaining)
        else:
            raise ParseError(f"copilot snapshot {name!r} has no remaining count")

        windows.append(RateWindow(name=name, remaining=max(0.0, left), resets_at=resets_at))
        if name == PRIMARY_SNAPSHOT:
            used = max(0.0, entitlement - left)
            quota = QuotaMetric(used=used, limit=entitlement, unit="requests")

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=quota,
        windows=tuple(windows),
        plan=optional_str(data, "copilot_plan", "access_type_sku"),
        account=optional_str(data, "login"),
    )
