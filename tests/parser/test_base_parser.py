from typing import Callable

import pytest

from quotabar.errors import ParseError
from quotabar.models import RawResponse
from quotabar.parser.base import PARSERS, parse
from quotabar.registry import default_descriptors


class TestParseDispatch:
    def test_every_provider_has_a_parser(self) -> "None":
        assert {d.id for d in default_descriptors()} == set(PARSERS)

    def test_unknown_provider(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse("nope", make_raw("nope", "{}"))

    def test_provider_mismatch(self, make_raw: "Callable[..., RawResponse]") -> "None":
        with pytest.raises(ParseError):
            parse("claude", make_raw("zai", '{"used_usd_cents": 1}'))

    def test_idempotent(self, make_raw: "Callable[..., RawResponse]") -> "None":
        raw = make_raw("claude", '{"used_usd_cents": 1200, "limit_usd_cents": 5000}')
        assert parse("claude", raw) == parse("claude", raw)

    @pytest.mark.parametrize("provider", sorted(PARSERS))
    def test_invalid_payload_is_parse_error(
        self, provider: "str", make_raw: "Callable[..., RawResponse]"
    ) -> "None":
        with pytest.raises(ParseError):
            parse(provider, make_raw(provider, "not json, no usage here"))
