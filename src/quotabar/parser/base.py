from typing import Callable, Mapping

from quotabar.errors import ParseError
from quotabar.models import ProviderId, RawResponse, UsageRecord
from quotabar.parser.augment import parse_augment
from quotabar.parser.claude import parse_claude
from quotabar.parser.codex import parse_codex
from quotabar.parser.copilot import parse_copilot
from quotabar.parser.cursor import parse_cursor
from quotabar.parser.factory import parse_factory
from quotabar.parser.gemini import parse_gemini
from quotabar.parser.kiro import parse_kiro
from quotabar.parser.minimax import parse_minimax
from quotabar.parser.openai import parse_openai
from quotabar.parser.zai import parse_zai

Parser = Callable[["RawResponse"], "UsageRecord"]

# each parser is the only code that understands its provider's
# payload shape
PARSERS: "Mapping[ProviderId, Parser]" = {
    "augment": parse_augment,
    "claude": parse_claude,
    "codex": parse_codex,
    "copilot": parse_copilot,
    "cursor": parse_cursor,
    "factory": parse_factory,
    "gemini": parse_gemini,
    "kiro": parse_kiro,
    "minimax": parse_minimax,
    "openai": parse_openai,
    "zai": parse_zai,
}


def parse(provider_id: "ProviderId", raw: "RawResponse") -> "UsageRecord":
    parser = PARSERS.get(provider_id)
    if parser is None:
        raise ParseError(f"no parser for provider {provider_id!r}")
    if raw.provider != provider_id:
        raise ParseError(f"payload from {raw.provider!r} handed to {provider_id!r} parser")
    return parser(raw)
