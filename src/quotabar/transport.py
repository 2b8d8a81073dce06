import asyncio
import email.utils
import random
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

import httpx
import structlog

from quotabar.errors import (
    AuthRequiredError,
    HostNotAllowedError,
    PermanentFetchError,
    RateLimitedError,
    RedirectError,
    TransientFetchError,
)
from quotabar.models import ProviderId, RawResponse, StrategyKind
from quotabar.ratelimit import RateLimiter

logger = structlog.get_logger()

USER_AGENT = "quotabar/0.1"


@dataclass(frozen=True, slots=True)
class HttpRequest:
    provider: "ProviderId"
    url: "str"
    method: "str" = "GET"
    # headers carry credentials, keep them out of repr()
    headers: "Mapping[str, str]" = field(default_factory=dict, repr=False)
    params: "Mapping[str, str] | None" = None
    json: "Any" = field(default=None, repr=False)
    data: "Mapping[str, str] | None" = field(default=None, repr=False)
    # seconds, None means the executor default
    timeout: "float | None" = None
    source: "StrategyKind" = StrategyKind.API_KEY


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    RetryPolicy bounds how transient failures and 429 responses
    are retried.
    """

    max_attempts: "int" = 3
    base_delay: "float" = 0.5
    max_delay: "float" = 8.0
    # relative jitter, 0.25 spreads delays over +/-25%
    jitter: "float" = 0.25
    # upper bound for a single wait on a retry-after hint
    max_retry_after: "float" = 30.0

    def backoff(self, attempt: "int", rand: "Callable[[], float]" = random.random) -> "float":
        """
        exponential delay before retry number `attempt` (1-based).
        """
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        spread = 1.0 + self.jitter * (2.0 * rand() - 1.0)
        return max(0.0, delay * spread)


def parse_retry_after(value: "str | None", now: "float | None" = None) -> "float | None":
    """
    parses a retry-after header given as delta-seconds or as an
    HTTP date. Returns None when absent or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now if now is not None else time.time()
    return max(0.0, when.timestamp() - current)


def host_allowed(host: "str", domains: "frozenset[str]") -> "bool":
    host = host.lower().rstrip(".")
    for domain in domains:
        if host == domain or host.endswith("." + domain):
            return True
    return False


def create_ssl_context() -> "ssl.SSLContext":
    """
    verifies certificates against the system trust store and
    refuses anything older than TLS 1.2; TLS 1.3 is negotiated
    whenever the server offers it.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class HttpExecutor:
    """
    HttpExecutor is the single outbound request path. It enforces
    https and the per-provider host allowlist before dispatch,
    takes a rate limiter token for every attempt, and retries
    transient failures with exponential backoff and jitter.
    """

    def __init__(
        self,
        allowed_hosts: "Mapping[ProviderId, frozenset[str]]",
        limiter: "RateLimiter | None" = None,
        retry: "RetryPolicy" = RetryPolicy(),
        timeout: "float" = 10.0,
        client: "httpx.AsyncClient | None" = None,
        sleep: "Callable[[float], Awaitable[object]]" = asyncio.sleep,
        rand: "Callable[[], float]" = random.random,
    ) -> "None":
        self._allowed_hosts = {k: frozenset(v) for k, v in allowed_hosts.items()}
        self._limiter = limiter or RateLimiter()
        self._retry = retry
        self._timeout = timeout
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            verify=create_ssl_context(),
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        )
        self._sleep = sleep
        self._rand = rand

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    def check_destination(self, request: "HttpRequest") -> "httpx.URL":
        """
        validates scheme and host before anything is sent.
        """
        try:
            url = httpx.URL(request.url)
        except httpx.InvalidURL as exc:
            raise HostNotAllowedError(f"invalid url for {request.provider}") from exc

        if url.scheme != "https":
            raise HostNotAllowedError(
                f"refusing non-https request for {request.provider}"
            )

        domains = self._allowed_hosts.get(request.provider, frozenset())
        if not url.host or not host_allowed(url.host, domains):
            raise HostNotAllowedError(
                f"host {url.host!r} is not allowed for {request.provider}"
            )
        return url

    async def execute(self, request: "HttpRequest") -> "RawResponse":
        url = self.check_destination(request)
        timeout = request.timeout if request.timeout is not None else self._timeout
        attempt = 0
        rate_limit_retried = False

        while True:
            attempt += 1
            await self._limiter.acquire(request.provider)
            logger.debug(
                "http_request",
                provider=request.provider,
                method=request.method,
                host=url.host,
                path=url.path,
                attempt=attempt,
            )

            started = time.monotonic()
            try:
                resp = await self._client.request(
                    request.method,
                    url,
                    headers=dict(request.headers),
                    params=request.params,
                    json=request.json,
                    data=request.data,
                    timeout=timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                # log the exception type only, messages may echo the url
                logger.warning(
                    "http_transport_error",
                    provider=request.provider,
                    host=url.host,
                    attempt=attempt,
                    error=type(exc).__name__,
                )
                if attempt >= self._retry.max_attempts:
                    raise TransientFetchError(
                        f"{type(exc).__name__} after {attempt} attempts"
                    ) from exc
                await self._sleep(self._retry.backoff(attempt, self._rand))
                continue

            elapsed = time.monotonic() - started
            status = resp.status_code

            if status == 429:
                hint = parse_retry_after(resp.headers.get("retry-after"))
                logger.info(
                    "http_rate_limited",
                    provider=request.provider,
                    host=url.host,
                    retry_after=hint,
                )
                if rate_limit_retried:
                    raise RateLimitedError(
                        f"{request.provider} is rate limiting requests", retry_after=hint
                    )
                rate_limit_retried = True
                wait = hint if hint is not None else self._retry.base_delay
                await self._sleep(min(wait, self._retry.max_retry_after))
                # the 429 retry does not consume a transient attempt
                attempt -= 1
                continue

            if status >= 500:
                logger.warning(
                    "http_server_error",
                    provider=request.provider,
                    host=url.host,
                    status=status,
                    attempt=attempt,
                )
                if attempt >= self._retry.max_attempts:
                    raise TransientFetchError(
                        f"server error {status} after {attempt} attempts"
                    )
                await self._sleep(self._retry.backoff(attempt, self._rand))
                continue

            if status in (401, 403):
                raise AuthRequiredError(f"{request.provider} rejected credentials ({status})")

            if status >= 400:
                raise PermanentFetchError(f"{request.provider} returned {status}")

            if 300 <= status < 400:
                raise RedirectError(
                    f"{request.provider} redirected ({status})",
                    location=resp.headers.get("location"),
                )

            logger.debug(
                "http_response",
                provider=request.provider,
                host=url.host,
                status=status,
                elapsed=round(elapsed, 3),
            )
            return RawResponse(
                provider=request.provider,
                source=request.source,
                body=resp.content,
                status=status,
                content_type=resp.headers.get("content-type", ""),
                elapsed=elapsed,
                received_at=datetime.now().astimezone(),
            )
