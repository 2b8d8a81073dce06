from decimal import Decimal

from quotabar.errors import ParseError
from quotabar.models import CostMetric, RawResponse, UsageRecord
from quotabar.parser.common import load_object, to_decimal, to_minor_units


def parse_openai(raw: "RawResponse") -> "UsageRecord":
    """
    sums the organization costs report into one month-to-date
    amount. Amounts are added as Decimal and converted to minor
    units once, so rounding never accumulates across buckets.
    """
    data = load_object(raw)
    buckets = data.get("data")
    if not isinstance(buckets, list):
        raise ParseError("openai costs payload has no data list")

    total = Decimal(0)
    currencies: "set[str]" = set()
    for bucket in buckets:
        if not isinstance(bucket, dict):
            raise ParseError("openai cost bucket is not an object")
        results = bucket.get("results", [])
        if not isinstance(results, list):
            raise ParseError("openai cost bucket results is not a list")
        for result in results:
            amount = result.get("amount") if isinstance(result, dict) else None
            if not isinstance(amount, dict) or amount.get("value") is None:
                raise ParseError("openai cost result has no amount")
            total += to_decimal(amount["value"], "amount.value")
            currencies.add(str(amount.get("currency", "usd")).upper())

    if len(currencies) > 1:
        raise ParseError(f"openai costs mix currencies: {sorted(currencies)}")

    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        cost=CostMetric(
            amount=to_minor_units(total, "amount"),
            limit=None,
            currency=currencies.pop() if currencies else "USD",
        ),
    )
