import json
from typing import Callable

import pytest

from quotabar.errors import ParseError
from quotabar.models import CostMetric, RawResponse
from quotabar.parser.openai import parse_openai


def _bucket(*amounts: "tuple[object, str]") -> "dict":
    return {
        "object": "bucket",
        "results": [
            {"object": "organization.costs.result", "amount": {"value": v, "currency": c}}
            for v, c in amounts
        ],
    }


class TestOpenAIParser:
    def test_sums_buckets_without_drift(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {
            "object": "page",
            "data": [_bucket((0.1, "usd"), (0.2, "usd")), _bucket((12.345, "usd")), _bucket()],
        }
        record = parse_openai(make_raw("openai", json.dumps(payload)))
        # 0.1 + 0.2 + 12.345 = 12.645 -> 1265 cents, half up
        assert record.cost == CostMetric(amount=1265, limit=None, currency="USD")
        assert record.quota is None

    def test_empty_month(self, make_raw: "Callable[..., RawResponse]") -> "None":
        record = parse_openai(make_raw("openai", '{"data": []}'))
        assert record.cost == CostMetric(amount=0, limit=None, currency="USD")

    def test_mixed_currencies(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {"data": [_bucket((1, "usd"), (1, "eur"))]}
        with pytest.raises(ParseError):
            parse_openai(make_raw("openai", json.dumps(payload)))

    def test_missing_amount(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {"data": [{"results": [{"line_item": "x"}]}]}
        with pytest.raises(ParseError):
            parse_openai(make_raw("openai", json.dumps(payload)))

    def test_non_numeric_amount(self, make_raw: "Callable[..., RawResponse]") -> "None":
        payload = {"data": [{"results": [{"amount": {"value": "n/a"}}]}]}
        with pytest.raises(ParseError):
            parse_openai(make_raw("openai", json.dumps(payload)))

    def test_null_results(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse_openai(make_raw("openai", '{"data": [{"results": null}]}'))
