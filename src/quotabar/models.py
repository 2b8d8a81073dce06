import enum
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Union

# stable provider identifier, unique across the registry
ProviderId = str


class StrategyKind(str, enum.Enum):
    """
    StrategyKind tags the closed set of acquisition methods
    a provider descriptor can list.
    """

    API_KEY = "api_key"
    OAUTH = "oauth"
    CLI = "cli"
    LOCAL_DB = "local_db"
    WEB_SESSION = "web_session"


class CredentialKind(str, enum.Enum):
    API_KEY = "api_key"
    OAUTH_TOKEN = "oauth_token"
    SESSION_COOKIE = "session_cookie"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Credential holds one secret for a provider. The secret and
    refresh material never show up in repr() output.
    """

    provider: "ProviderId"
    kind: "CredentialKind"
    secret: "str" = field(repr=False)
    # unix timestamp in seconds, None means no known expiry
    expires_at: "float | None" = None
    refresh_token: "str | None" = field(default=None, repr=False)

    def is_expired(self, now: "float", skew: "float" = 0.0) -> "bool":
        if self.expires_at is None:
            return False
        return self.expires_at - skew <= now

    def redacted(self) -> "dict[str, Any]":
        """
        returns a log-safe view of the credential.
        """
        return {
            "provider": self.provider,
            "kind": self.kind.value,
            "secret": "***",
            "expires_at": self.expires_at,
            "has_refresh_token": self.refresh_token is not None,
        }


@dataclass(frozen=True, slots=True)
class FetchRequest:
    provider: "ProviderId"
    # restricts the strategy chain to a single kind
    strategy: "StrategyKind | None" = None
    # seconds, None means the orchestrator default
    timeout: "float | None" = None


@dataclass(frozen=True, slots=True)
class RawResponse:
    """
    RawResponse is the provider-specific payload produced by a
    strategy, before parsing.
    """

    provider: "ProviderId"
    source: "StrategyKind"
    body: "bytes" = field(repr=False)
    # HTTP status for network strategies, exit code for CLI ones
    status: "int | None" = None
    content_type: "str" = ""
    elapsed: "float" = 0.0
    received_at: "datetime" = field(default_factory=lambda: datetime.now().astimezone())

    def text(self) -> "str":
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> "Any":
        return json.loads(self.body)


@dataclass(frozen=True, slots=True)
class QuotaMetric:
    used: "float"
    limit: "float | None"
    # e.g. "percent", "requests", "credits", "tokens"
    unit: "str"


@dataclass(frozen=True, slots=True)
class CostMetric:
    # integer minor units (cents for USD)
    amount: "int"
    limit: "int | None"
    currency: "str" = "USD"


@dataclass(frozen=True, slots=True)
class RateWindow:
    name: "str"
    remaining: "float | None" = None
    resets_at: "datetime | None" = None


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is the provider-agnostic usage snapshot every
    parser produces. Quota and cost are both optional since not
    all providers expose both.

    Negative values are rejected at construction. A record whose
    used value exceeds its limit is kept and reported through
    the inconsistent property.
    """

    provider: "ProviderId"
    captured_at: "datetime"
    quota: "QuotaMetric | None" = None
    cost: "CostMetric | None" = None
    windows: "tuple[RateWindow, ...]" = ()
    plan: "str | None" = None
    account: "str | None" = None
    fresh: "bool" = True

    def __post_init__(self) -> "None":
        values: "list[float | int | None]" = []
        if self.quota is not None:
            values += [self.quota.used, self.quota.limit]
        if self.cost is not None:
            values += [self.cost.amount, self.cost.limit]
        values += [w.remaining for w in self.windows]

        for value in values:
            if value is not None and value < 0:
                raise ValueError(
                    f"negative usage value {value!r} for provider {self.provider}"
                )

    @property
    def inconsistent(self) -> "bool":
        if self.quota is not None and self.quota.limit is not None:
            if self.quota.used > self.quota.limit:
                return True
        if self.cost is not None and self.cost.limit is not None:
            if self.cost.amount > self.cost.limit:
                return True
        return False

    def as_stale(self) -> "UsageRecord":
        return replace(self, fresh=False)

    def to_dict(self) -> "dict[str, Any]":
        data: "dict[str, Any]" = {
            "provider": self.provider,
            "captured_at": self.captured_at.isoformat(),
            "fresh": self.fresh,
            "inconsistent": self.inconsistent,
            "quota": None,
            "cost": None,
            "windows": [
                {
                    "name": w.name,
                    "remaining": w.remaining,
                    "resets_at": w.resets_at.isoformat() if w.resets_at else None,
                }
                for w in self.windows
            ],
            "plan": self.plan,
            "account": self.account,
        }
        if self.quota is not None:
            data["quota"] = {
                "used": self.quota.used,
                "limit": self.quota.limit,
                "unit": self.quota.unit,
            }
        if self.cost is not None:
            data["cost"] = {
                "amount": self.cost.amount,
                "limit": self.cost.limit,
                "currency": self.cost.currency,
            }
        return data


@dataclass(frozen=True, slots=True)
class Success:
    provider: "ProviderId"
    record: "UsageRecord"
    strategy: "StrategyKind | None" = None
    kind: "str" = field(default="success", init=False)


@dataclass(frozen=True, slots=True)
class AuthRequired:
    provider: "ProviderId"
    reason: "str"
    stale: "UsageRecord | None" = None
    kind: "str" = field(default="auth_required", init=False)


@dataclass(frozen=True, slots=True)
class RateLimited:
    provider: "ProviderId"
    # seconds, None when the provider gave no hint
    retry_after: "float | None" = None
    stale: "UsageRecord | None" = None
    kind: "str" = field(default="rate_limited", init=False)


@dataclass(frozen=True, slots=True)
class TransientError:
    provider: "ProviderId"
    cause: "str"
    stale: "UsageRecord | None" = None
    kind: "str" = field(default="transient_error", init=False)


@dataclass(frozen=True, slots=True)
class PermanentError:
    provider: "ProviderId"
    cause: "str"
    stale: "UsageRecord | None" = None
    kind: "str" = field(default="permanent_error", init=False)


FetchResult = Union[Success, AuthRequired, RateLimited, TransientError, PermanentError]


def result_to_dict(result: "FetchResult") -> "dict[str, Any]":
    """
    converts any FetchResult variant into a JSON-ready mapping.
    """
    data: "dict[str, Any]" = {"provider": result.provider, "kind": result.kind}
    if isinstance(result, Success):
        data["strategy"] = result.strategy.value if result.strategy else None
        data["record"] = result.record.to_dict()
        return data

    if isinstance(result, AuthRequired):
        data["reason"] = result.reason
    elif isinstance(result, RateLimited):
        data["retry_after"] = result.retry_after
    else:
        data["cause"] = result.cause

    data["stale"] = result.stale.to_dict() if result.stale else None
    return data
