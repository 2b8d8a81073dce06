from dataclasses import dataclass, field
from typing import Callable, ClassVar, Mapping

from quotabar.credentials import CredentialStore
from quotabar.models import CredentialKind, ProviderId, RawResponse, StrategyKind
from quotabar.strategy.base import scoped_credential
from quotabar.transport import HttpExecutor, HttpRequest


@dataclass(frozen=True)
class ApiKeyStrategy:
    """
    ApiKeyStrategy reads a stored API key and issues one
    authenticated call with it.
    """

    kind: "ClassVar[StrategyKind]" = StrategyKind.API_KEY

    url: "str"
    header: "str" = "Authorization"
    # prefix put before the key, empty for raw key headers
    scheme: "str" = "Bearer"
    headers: "Mapping[str, str]" = field(default_factory=dict)
    # computed per call so time-windowed endpoints stay current
    params: "Callable[[], Mapping[str, str]] | None" = None

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse":
        async with scoped_credential(credentials, provider, CredentialKind.API_KEY) as cred:
            value = f"{self.scheme} {cred.secret}" if self.scheme else cred.secret
            request = HttpRequest(
                provider=provider,
                url=self.url,
                headers={**self.headers, self.header: value, "Accept": "application/json"},
                params=self.params() if self.params else None,
                source=self.kind,
            )
            return await http.execute(request)
