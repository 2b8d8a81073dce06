import time
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Mapping

from quotabar.credentials import CredentialStore
from quotabar.errors import AuthRequiredError, RedirectError
from quotabar.models import CredentialKind, ProviderId, RawResponse, StrategyKind
from quotabar.strategy.base import scoped_credential
from quotabar.transport import HttpExecutor, HttpRequest


@dataclass(frozen=True)
class WebSessionStrategy:
    """
    WebSessionStrategy fetches an authenticated page with a
    stored browser session cookie. An expired or missing session
    is reported as AuthRequiredError; recovering it (browser
    login, cookie import) is left to the user.
    """

    kind: "ClassVar[StrategyKind]" = StrategyKind.WEB_SESSION

    url: "str"
    cookie_name: "str"
    headers: "Mapping[str, str]" = field(default_factory=dict)
    # page fragments that only appear on a login screen
    login_markers: "tuple[str, ...]" = ('type="password"', "/login?")
    clock: "Callable[[], float]" = field(default=time.time, repr=False)

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse":
        async with scoped_credential(
            credentials, provider, CredentialKind.SESSION_COOKIE
        ) as cred:
            if cred.is_expired(self.clock()):
                raise AuthRequiredError(f"{provider} session expired")

            request = HttpRequest(
                provider=provider,
                url=self.url,
                headers={
                    **self.headers,
                    "Cookie": f"{self.cookie_name}={cred.secret}",
                },
                source=self.kind,
            )
            try:
                raw = await http.execute(request)
            except RedirectError as exc:
                # sites bounce stale sessions to their sign-in page
                raise AuthRequiredError(f"{provider} session redirected to login") from exc

        if "html" in raw.content_type:
            page = raw.text()
            if any(marker in page for marker in self.login_markers):
                raise AuthRequiredError(f"{provider} served a login page")
        return raw
