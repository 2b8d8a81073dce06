import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping

from quotabar.errors import DuplicateProviderError, UnknownProviderError
from quotabar.models import ProviderId, StrategyKind
from quotabar.parser.base import PARSERS, Parser
from quotabar.parser.cursor import EMAIL_KEY, PLAN_KEY, USAGE_KEY
from quotabar.ratelimit import RateLimit
from quotabar.strategy.api_key import ApiKeyStrategy
from quotabar.strategy.base import Strategy
from quotabar.strategy.cli import CliStrategy
from quotabar.strategy.local_db import LocalDbStrategy
from quotabar.strategy.oauth import OAuthStrategy
from quotabar.strategy.web_session import WebSessionStrategy

# bumped whenever a provider is added, removed or re-routed
REGISTRY_VERSION = 1


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    ProviderDescriptor is the static description of one provider:
    display metadata, its strategies in priority order, the
    parser for its payloads and the hosts it may contact.
    """

    id: "ProviderId"
    display_name: "str"
    strategies: "tuple[Strategy, ...]"
    parser: "Parser"
    # SSRF allowlist: requests may only go to these domains or
    # their subdomains
    hosts: "frozenset[str]" = frozenset()
    rate_limit: "RateLimit | None" = None

    @property
    def strategy_kinds(self) -> "tuple[StrategyKind, ...]":
        return tuple(s.kind for s in self.strategies)


class ProviderRegistry:
    """
    ProviderRegistry is the immutable lookup table built once at
    startup and handed to the orchestrator. A duplicate id is a
    programming error and fails construction.
    """

    def __init__(
        self,
        descriptors: "Iterable[ProviderDescriptor]",
        version: "int" = REGISTRY_VERSION,
    ) -> "None":
        table: "dict[ProviderId, ProviderDescriptor]" = {}
        for descriptor in descriptors:
            if descriptor.id in table:
                raise DuplicateProviderError(f"provider {descriptor.id!r} registered twice")
            table[descriptor.id] = descriptor
        self._table: "Mapping[ProviderId, ProviderDescriptor]" = table
        self._order: "tuple[ProviderDescriptor, ...]" = tuple(table.values())
        self.version = version

    def __contains__(self, provider_id: "object") -> "bool":
        return provider_id in self._table

    def __len__(self) -> "int":
        return len(self._order)

    def lookup(self, provider_id: "ProviderId") -> "ProviderDescriptor":
        try:
            return self._table[provider_id]
        except KeyError:
            raise UnknownProviderError(f"unknown provider {provider_id!r}") from None

    def list(self) -> "tuple[ProviderDescriptor, ...]":
        return self._order

    def ids(self) -> "tuple[ProviderId, ...]":
        return tuple(d.id for d in self._order)

    def allowed_hosts(self) -> "dict[ProviderId, frozenset[str]]":
        return {d.id: d.hosts for d in self._order}

    def rate_limits(self) -> "dict[ProviderId, RateLimit]":
        return {d.id: d.rate_limit for d in self._order if d.rate_limit is not None}


def cursor_state_db() -> "Path | None":
    """
    location of the Cursor editor's global state database.
    """
    home = Path.home()
    if sys.platform == "darwin":
        base = home / "Library" / "Application Support" / "Cursor"
    elif sys.platform == "win32":
        base = home / "AppData" / "Roaming" / "Cursor"
    else:
        base = home / ".config" / "Cursor"
    return base / "User" / "globalStorage" / "state.vscdb"


def _month_to_date() -> "dict[str, str]":
    now = datetime.now(timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return {
        "start_time": str(int(start.timestamp())),
        "bucket_width": "1d",
        "limit": "31",
    }


def default_descriptors(cursor_db: "Path | None" = None) -> "list[ProviderDescriptor]":
    """
    the closed provider table, primary providers first.
    """
    return [
        ProviderDescriptor(
            id="codex",
            display_name="Codex",
            strategies=(
                CliStrategy(command=("codex", "usage", "--json")),
                OAuthStrategy(
                    url="https://chatgpt.com/backend-api/wham/usage",
                    token_url="https://auth.openai.com/oauth/token",
                    client_id="app_EMoamEEZ73f0CkXaXp7hrann",
                ),
            ),
            parser=PARSERS["codex"],
            hosts=frozenset({"chatgpt.com", "auth.openai.com"}),
        ),
        ProviderDescriptor(
            id="claude",
            display_name="Claude",
            strategies=(
                OAuthStrategy(
                    url="https://api.anthropic.com/api/oauth/usage",
                    token_url="https://console.anthropic.com/v1/oauth/token",
                    client_id="9d1c250a-e61b-44d9-88ed-5944d1962f5e",
                    headers={"anthropic-beta": "oauth-2025-04-20"},
                ),
                ApiKeyStrategy(
                    url="https://api.anthropic.com/v1/organizations/usage",
                    header="x-api-key",
                    scheme="",
                    headers={"anthropic-version": "2023-06-01"},
                ),
            ),
            parser=PARSERS["claude"],
            hosts=frozenset({"api.anthropic.com", "console.anthropic.com"}),
            # the OAuth usage endpoint throttles aggressively
            rate_limit=RateLimit(capacity=2, refill_per_second=0.2),
        ),
        ProviderDescriptor(
            id="cursor",
            display_name="Cursor",
            strategies=(
                LocalDbStrategy(
                    path=(lambda: cursor_db) if cursor_db else cursor_state_db,
                    # only the usage rows, never the auth tokens stored alongside
                    query="SELECT key, value FROM ItemTable WHERE key IN (?, ?, ?)",
                    params=(USAGE_KEY, EMAIL_KEY, PLAN_KEY),
                ),
                WebSessionStrategy(
                    url="https://cursor.com/api/usage",
                    cookie_name="WorkosCursorSessionToken",
                ),
            ),
            parser=PARSERS["cursor"],
            hosts=frozenset({"cursor.com"}),
        ),
        ProviderDescriptor(
            id="copilot",
            display_name="Copilot",
            strategies=(
                # GitHub tokens do not expire, there is nothing to refresh
                OAuthStrategy(
                    url="https://api.github.com/copilot_internal/user",
                    headers={"X-GitHub-Api-Version": "2025-04-01"},
                ),
            ),
            parser=PARSERS["copilot"],
            hosts=frozenset({"api.github.com"}),
        ),
        ProviderDescriptor(
            id="gemini",
            display_name="Gemini",
            strategies=(
                OAuthStrategy(
                    url="https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota",
                    token_url="https://oauth2.googleapis.com/token",
                    method="POST",
                    json={},
                ),
                CliStrategy(command=("gemini", "usage", "--json")),
            ),
            parser=PARSERS["gemini"],
            hosts=frozenset({"cloudcode-pa.googleapis.com", "oauth2.googleapis.com"}),
        ),
        ProviderDescriptor(
            id="openai",
            display_name="OpenAI API",
            strategies=(
                ApiKeyStrategy(
                    url="https://api.openai.com/v1/organization/costs",
                    params=_month_to_date,
                ),
            ),
            parser=PARSERS["openai"],
            hosts=frozenset({"api.openai.com"}),
        ),
        ProviderDescriptor(
            id="factory",
            display_name="Droid",
            strategies=(
                WebSessionStrategy(
                    url="https://app.factory.ai/api/usage",
                    cookie_name="__session",
                    headers={"Accept": "application/json"},
                ),
            ),
            parser=PARSERS["factory"],
            hosts=frozenset({"app.factory.ai"}),
        ),
        ProviderDescriptor(
            id="zai",
            display_name="z.ai",
            strategies=(
                ApiKeyStrategy(url="https://api.z.ai/api/monitor/usage/quota/limit"),
            ),
            parser=PARSERS["zai"],
            hosts=frozenset({"api.z.ai"}),
        ),
        ProviderDescriptor(
            id="augment",
            display_name="Augment",
            strategies=(
                WebSessionStrategy(
                    url="https://app.augmentcode.com/account/subscription",
                    cookie_name="_session",
                    headers={"Accept": "text/html"},
                ),
            ),
            parser=PARSERS["augment"],
            hosts=frozenset({"app.augmentcode.com"}),
        ),
        ProviderDescriptor(
            id="kiro",
            display_name="Kiro",
            strategies=(CliStrategy(command=("kiro-cli", "usage")),),
            parser=PARSERS["kiro"],
        ),
        ProviderDescriptor(
            id="minimax",
            display_name="MiniMax",
            strategies=(ApiKeyStrategy(url="https://api.minimax.chat/v1/usage"),),
            parser=PARSERS["minimax"],
            hosts=frozenset({"api.minimax.chat"}),
        ),
    ]


def build_registry(cursor_db: "Path | None" = None) -> "ProviderRegistry":
    return ProviderRegistry(default_descriptors(cursor_db=cursor_db))
