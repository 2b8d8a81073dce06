import json
import re
from html.parser import HTMLParser
from typing import Any

from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RateWindow, RawResponse, UsageRecord
from quotabar.parser.common import optional_number, optional_str, parse_timestamp, section

# fallback for pages rendered without the embedded state blob,
# e.g. "1,234 of 4,000 messages used"
_USAGE_TEXT_RE = re.compile(
    r"([\d][\d,]*)\s+of\s+([\d][\d,]*)\s+(messages|credits|requests)",
    re.IGNORECASE,
)


class _StateExtractor(HTMLParser):
    """
    collects the JSON text of the page's __NEXT_DATA__ script and
    the visible text of the document.
    """

    def __init__(self) -> "None":
        super().__init__(convert_charrefs=True)
        self.state: "str | None" = None
        self.text: "list[str]" = []
        self._in_state = False
        self._skip = 0

    def handle_starttag(self, tag: "str", attrs: "list[tuple[str, str | None]]") -> "None":
        if tag == "script" and dict(attrs).get("id") == "__NEXT_DATA__":
            self._in_state = True
            self.state = ""
        elif tag in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag: "str") -> "None":
        if tag == "script" and self._in_state:
            self._in_state = False
        elif tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data: "str") -> "None":
        if self._in_state:
            self.state = (self.state or "") + data
        elif not self._skip:
            self.text.append(data)


def _from_state(raw: "RawResponse", state: "str") -> "UsageRecord | None":
    try:
        blob = json.loads(state)
    except ValueError as exc:
        raise ParseError("augment page state is not valid JSON") from exc
    if not isinstance(blob, dict):
        return None

    usage: "dict[str, Any]" = section(section(section(blob, "props"), "pageProps"), "usage")
    used = optional_number(usage, "completionsUsed", "messagesUsed")
    if used is None:
        return None
    limit = optional_number(usage, "completionLimit", "messageLimit")
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=used, limit=limit, unit="messages"),
        windows=(
            RateWindow(
                name="billing_period",
                remaining=max(0.0, limit - used) if limit is not None else None,
                resets_at=parse_timestamp(usage.get("resetAt")),
            ),
        ),
        plan=optional_str(usage, "plan"),
        account=optional_str(usage, "email"),
    )


def parse_augment(raw: "RawResponse") -> "UsageRecord":
    """
    scrapes the subscription page. The embedded page state is
    preferred, the rendered "N of M" text is the fallback.
    """
    extractor = _StateExtractor()
    extractor.feed(raw.text())
    extractor.close()

    if extractor.state:
        record = _from_state(raw, extractor.state)
        if record is not None:
            return record

    match = _USAGE_TEXT_RE.search(" ".join(extractor.text))
    if match is None:
        raise ParseError("augment page shows no usage")

    used = float(match.group(1).replace(",", ""))
    limit = float(match.group(2).replace(",", ""))
    return UsageRecord(
        provider=raw.provider,
        captured_at=raw.received_at,
        quota=QuotaMetric(used=used, limit=limit, unit=match.group(3).lower()),
        windows=(RateWindow(name="billing_period", remaining=max(0.0, limit - used)),),
    )
