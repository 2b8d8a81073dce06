import json
from typing import Callable

import pytest

from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RawResponse, StrategyKind
from quotabar.parser.codex import parse_codex


class TestCodexCli:
    def test_json_with_banner(self, make_raw: "Callable[..., RawResponse]") -> "None":
        output = (
            "\x1b[2mcodex v0.50\x1b[0m\n"
            + json.dumps(
                {
                    "session": {"used_percent": 22, "resets_at": 1790000000},
                    "weekly": {"used_percent": 61},
                    "account": {"email": "dev@example.com", "plan": "plus"},
                }
            )
            + "\n"
        )
        record = parse_codex(make_raw("codex", output, StrategyKind.CLI, "text/plain"))

        assert record.quota == QuotaMetric(used=22.0, limit=100.0, unit="percent")
        assert [w.name for w in record.windows] == ["session", "weekly"]
        assert record.windows[1].remaining == 39.0
        assert record.account == "dev@example.com"
        assert record.plan == "plus"

    def test_no_json(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse_codex(make_raw("codex", "please log in", StrategyKind.CLI))


class TestCodexOAuth:
    def test_rate_limit_payload(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {
            "plan_type": "pro",
            "email": "dev@example.com",
            "rate_limit": {
                "primary_window": {"used_percent": 5, "reset_at": 1790000000},
                "secondary_window": {"used_percent": 40, "reset_at": 1790500000},
            },
            "credits": {"balance": 12.5},
        }
        record = parse_codex(make_raw("codex", json.dumps(payload), StrategyKind.OAUTH))

        assert record.quota == QuotaMetric(used=5.0, limit=100.0, unit="percent")
        assert [w.name for w in record.windows] == ["session", "weekly", "credits"]
        assert record.windows[2].remaining == 12.5
        assert record.plan == "pro"

    def test_no_windows(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse_codex(make_raw("codex", '{"rate_limit": {}}', StrategyKind.OAUTH))
