import re

from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import parse_timestamp, strip_ansi

CREDITS_RE = re.compile(r"credits?\s*:?\s*([\d,.]+)\s*/\s*([\d,.]+)", re.IGNORECASE)
PERCENT_RE = re.compile(r"([\d.]+)\s*%\s*used", re.IGNORECASE)
EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
PLAN_RE = re.compile(r"plan\s*:\s*([\w .-]+)", re.IGNORECASE)
RESET_RE = re.compile(r"resets?\s*(?:on|at)?\s*:?\s*(\d{4}-\d{2}-\d{2}[\w:.+-]*)", re.IGNORECASE)


def _number(text: "str") -> "float":
    try:
        return float(text.replace(",", ""))
    except ValueError as exc:
        raise ParseError(f"kiro value {text!r} is not numeric") from exc


def parse_kiro(raw: "RawResponse") -> "UsageRecord":
    """
    parses the human readable `kiro-cli usage` report, e.g.

        Plan: Pro
        Credits: 500/1000
        Resets on 2026-11-01
    """
    text = strip_ansi(raw.text())

    quota = None
    if match := CREDITS_RE.search(text):
        quota = QuotaMetric(
            used=_number(match.group(1)), limit=_number(match.group(2)), unit="credits"
        )
    elif match := PERCENT_RE.search(text):
        quota = QuotaMetric(used=_number(match.group(1)), limit=100.0, unit="percent")

    if quota is None:
        raise ParseError("kiro output has no credit or percentage usage")

    reset = RESET_RE.search(text)
    plan = PLAN_RE.search(text)
    email = EMAIL_RE.search(text)
    window = RateWindow(
        name="monthly",
        remaining=max(0.0, quota.limit - quota.used) if quota.limit is not None else None,
        resets_at=parse_timestamp(reset.group(1)) if reset else None,
    )
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=quota,
        windows=(window,),
        plan=plan.group(1).strip() if plan else None,
        account=email.group(0) if email else None,
    )
