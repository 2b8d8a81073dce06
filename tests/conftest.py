from datetime import datetime, timezone
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

from quotabar.credentials import CredentialStore, MemoryBackend
from quotabar.models import RawResponse, StrategyKind
from quotabar.ratelimit import RateLimiter
from quotabar.transport import HttpExecutor

CAPTURED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


async def _no_sleep(_delay: "float") -> "None":
    return None


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def credentials() -> "CredentialStore":
    return CredentialStore(MemoryBackend())


@pytest.fixture()
def make_http() -> "Callable[..., HttpExecutor]":
    """
    builds executors that never actually sleep between retries.
    """

    def _make(hosts: "dict[str, frozenset[str]]", **kwargs: "object") -> "HttpExecutor":
        kwargs.setdefault("limiter", RateLimiter(sleep=_no_sleep))
        kwargs.setdefault("sleep", _no_sleep)
        kwargs.setdefault("rand", lambda: 0.5)
        return HttpExecutor(hosts, **kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture()
def make_raw() -> "Callable[..., RawResponse]":
    """
    builds a RawResponse with a fixed receive time.
    """

    def _make(
        provider: "str",
        body: "str | bytes",
        source: "StrategyKind" = StrategyKind.API_KEY,
        content_type: "str" = "application/json",
    ) -> "RawResponse":
        return RawResponse(
            provider=provider,
            source=source,
            body=body.encode() if isinstance(body, str) else body,
            status=200,
            content_type=content_type,
            received_at=CAPTURED_AT,
        )

    return _make
