import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, ClassVar, Protocol

from quotabar.credentials import CredentialStore
from quotabar.errors import AuthRequiredError, CredentialNotFound
from quotabar.models import Credential, CredentialKind, ProviderId, RawResponse, StrategyKind
from quotabar.transport import HttpExecutor


class Strategy(Protocol):
    """
    Strategy stands as the common capability every acquisition
    method satisfies.

    acquire() returns the provider's raw payload. Anything other
    than success is raised as a quotabar.errors.FetchError
    subclass, which the orchestrator turns into a FetchResult.
    """

    kind: "ClassVar[StrategyKind]"

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse": ...


@asynccontextmanager
async def scoped_credential(
    credentials: "CredentialStore",
    provider: "ProviderId",
    kind: "CredentialKind",
) -> "AsyncIterator[Credential]":
    """
    reads one credential for the duration of a single fetch. The
    store lookup runs off the event loop since the backing secret
    service may shell out. A missing credential means the user
    has to authenticate.
    """
    try:
        credential = await asyncio.to_thread(credentials.get, provider, kind)
    except CredentialNotFound as exc:
        raise AuthRequiredError(str(exc)) from exc

    try:
        yield credential
    finally:
        del credential
