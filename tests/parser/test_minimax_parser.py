import json
from typing import Callable

import pytest

from quotabar.errors import ParseError
from quotabar.models import QuotaMetric, RawResponse
from quotabar.parser.minimax import parse_minimax


class TestMinimaxParser:
    def test_tokens_and_credits(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {
            "tokens": {"used": 1500, "limit": 10000},
            "credits": {"used": 2, "total": 10},
            "user": {"email": "dev@example.com", "plan": "starter"},
        }
        record = parse_minimax(make_raw("minimax", json.dumps(payload)))

        assert record.quota == QuotaMetric(used=1500.0, limit=10000.0, unit="tokens")
        assert [w.name for w in record.windows] == ["tokens", "credits"]
        assert record.windows[1].remaining == 8.0
        assert record.account == "dev@example.com"

    def test_credits_only(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {"credits": {"used": 3, "total": 5}}
        record = parse_minimax(make_raw("minimax", json.dumps(payload)))
        assert record.quota == QuotaMetric(used=3.0, limit=5.0, unit="credits")

    def test_nothing_usable(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse_minimax(make_raw("minimax", '{"user": {}}'))
