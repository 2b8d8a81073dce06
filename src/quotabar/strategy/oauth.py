import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping

import structlog

from quotabar.credentials import CredentialStore
from quotabar.errors import AuthRequiredError, HostNotAllowedError, PermanentFetchError
from quotabar.models import Credential, CredentialKind, ProviderId, RawResponse, StrategyKind
from quotabar.strategy.base import scoped_credential
from quotabar.transport import HttpExecutor, HttpRequest

logger = structlog.get_logger()


@dataclass(frozen=True)
class OAuthStrategy:
    """
    OAuthStrategy calls a usage endpoint with a stored bearer
    token. When the stored expiry has passed (minus refresh_skew)
    the token is refreshed exactly once against token_url, the
    new token is persisted, and only then is the endpoint called.

    Providers without a refresh endpoint leave token_url unset;
    an expired token then simply asks for re-authentication.
    """

    kind: "ClassVar[StrategyKind]" = StrategyKind.OAUTH

    url: "str"
    token_url: "str | None" = None
    client_id: "str | None" = None
    method: "str" = "GET"
    json: "Any" = None
    headers: "Mapping[str, str]" = field(default_factory=dict)
    # seconds before expiry at which a token counts as expired
    refresh_skew: "float" = 60.0
    clock: "Callable[[], float]" = field(default=time.time, repr=False)

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse":
        async with scoped_credential(
            credentials, provider, CredentialKind.OAUTH_TOKEN
        ) as cred:
            if cred.is_expired(self.clock(), self.refresh_skew):
                cred = await self.refresh(provider, cred, credentials, http)

            request = HttpRequest(
                provider=provider,
                url=self.url,
                method=self.method,
                headers={
                    **self.headers,
                    "Authorization": f"Bearer {cred.secret}",
                    "Accept": "application/json",
                },
                json=self.json,
                source=self.kind,
            )
            return await http.execute(request)

    async def refresh(
        self,
        provider: "ProviderId",
        cred: "Credential",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "Credential":
        """
        exchanges the refresh token for a new access token and
        stores it. A rejected refresh deletes the stored token and
        surfaces as AuthRequiredError; transient failures propagate
        unchanged and keep it.
        """
        if not self.token_url or not cred.refresh_token:
            raise AuthRequiredError(f"{provider} token expired and cannot be refreshed")

        form = {"grant_type": "refresh_token", "refresh_token": cred.refresh_token}
        if self.client_id:
            form["client_id"] = self.client_id

        logger.info("oauth_token_refresh", provider=provider)
        try:
            raw = await http.execute(
                HttpRequest(
                    provider=provider,
                    url=self.token_url,
                    method="POST",
                    headers={"Accept": "application/json"},
                    data=form,
                    source=self.kind,
                )
            )
        except HostNotAllowedError:
            raise
        except (AuthRequiredError, PermanentFetchError) as exc:
            await self._invalidate(provider, credentials)
            raise AuthRequiredError(f"{provider} token refresh was rejected") from exc

        try:
            payload = raw.json()
        except ValueError as exc:
            await self._invalidate(provider, credentials)
            raise AuthRequiredError(f"{provider} token refresh returned garbage") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            await self._invalidate(provider, credentials)
            raise AuthRequiredError(f"{provider} token refresh returned no access token")

        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = self.clock() + float(expires_in)

        refresh_token = payload.get("refresh_token")
        refreshed = Credential(
            provider=provider,
            kind=CredentialKind.OAUTH_TOKEN,
            secret=access_token,
            expires_at=expires_at,
            refresh_token=refresh_token if isinstance(refresh_token, str) else cred.refresh_token,
        )
        await asyncio.to_thread(
            credentials.put, provider, CredentialKind.OAUTH_TOKEN, refreshed
        )
        return refreshed

    @staticmethod
    async def _invalidate(provider: "ProviderId", credentials: "CredentialStore") -> "None":
        # a rejected refresh token fails the same way on every retry
        logger.warning("oauth_token_invalidated", provider=provider)
        await asyncio.to_thread(credentials.delete, provider, CredentialKind.OAUTH_TOKEN)
