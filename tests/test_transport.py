from typing import Callable

import httpx
import pytest
import respx

from quotabar.errors import (
    AuthRequiredError,
    HostNotAllowedError,
    PermanentFetchError,
    RateLimitedError,
    RedirectError,
    TransientFetchError,
)
from quotabar.models import StrategyKind
from quotabar.transport import (
    HttpExecutor,
    HttpRequest,
    RetryPolicy,
    host_allowed,
    parse_retry_after,
)

HOSTS = {"zai": frozenset({"api.z.ai"})}
URL = "https://api.z.ai/api/monitor/usage/quota/limit"


class RecordingLimiter:
    def __init__(self) -> "None":
        self.calls: "list[str]" = []

    async def acquire(self, provider: "str") -> "float":
        self.calls.append(provider)
        return 0.0


class TestHostAllowed:
    def test_exact_and_subdomain(self) -> "None":
        domains = frozenset({"cursor.com"})
        assert host_allowed("cursor.com", domains)
        assert host_allowed("www.cursor.com", domains)

    def test_lookalike_rejected(self) -> "None":
        domains = frozenset({"cursor.com"})
        assert not host_allowed("evilcursor.com", domains)
        assert not host_allowed("cursor.com.evil.io", domains)


class TestParseRetryAfter:
    def test_seconds(self) -> "None":
        assert parse_retry_after("12") == 12.0

    def test_http_date(self) -> "None":
        # Wed, 21 Oct 2015 07:28:00 GMT
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=1445412470.0) == 10.0

    def test_garbage(self) -> "None":
        assert parse_retry_after("soon") is None
        assert parse_retry_after(None) is None


class TestRetryPolicy:
    def test_backoff_grows_and_caps(self) -> "None":
        policy = RetryPolicy(base_delay=0.5, max_delay=2.0, jitter=0.0)
        assert policy.backoff(1) == 0.5
        assert policy.backoff(2) == 1.0
        assert policy.backoff(5) == 2.0

    def test_jitter_bounds(self) -> "None":
        policy = RetryPolicy(base_delay=1.0, jitter=0.25)
        assert policy.backoff(1, rand=lambda: 0.0) == pytest.approx(0.75)
        assert policy.backoff(1, rand=lambda: 1.0) == pytest.approx(1.25)


class TestDestinationChecks:
    @pytest.mark.asyncio
    @respx.mock
    async def test_disallowed_host_never_dispatched(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        route = respx.get("https://evil.example.com/steal").mock(
            return_value=httpx.Response(200)
        )
        http = make_http(HOSTS)
        with pytest.raises(HostNotAllowedError):
            await http.execute(HttpRequest(provider="zai", url="https://evil.example.com/steal"))
        assert not route.called

    @pytest.mark.asyncio
    async def test_plain_http_rejected(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        http = make_http(HOSTS)
        with pytest.raises(HostNotAllowedError):
            await http.execute(HttpRequest(provider="zai", url="http://api.z.ai/x"))

    @pytest.mark.asyncio
    async def test_unknown_provider_has_no_hosts(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        http = make_http(HOSTS)
        with pytest.raises(HostNotAllowedError):
            await http.execute(HttpRequest(provider="minimax", url=URL))


class TestExecute:
    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        respx.get(URL).mock(return_value=httpx.Response(200, json={"ok": True}))
        http = make_http(HOSTS)
        raw = await http.execute(
            HttpRequest(provider="zai", url=URL, source=StrategyKind.API_KEY)
        )
        assert raw.status == 200
        assert raw.json() == {"ok": True}
        assert raw.source == StrategyKind.API_KEY
        await http.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_server_errors(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        route = respx.get(URL).mock(
            side_effect=[httpx.Response(502), httpx.Response(503), httpx.Response(200, json={})]
        )
        limiter = RecordingLimiter()
        http = make_http(HOSTS, limiter=limiter)
        raw = await http.execute(HttpRequest(provider="zai", url=URL))
        assert raw.status == 200
        assert route.call_count == 3
        # every attempt takes a token
        assert limiter.calls == ["zai", "zai", "zai"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_gives_up_after_max_attempts(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        route = respx.get(URL).mock(return_value=httpx.Response(500))
        http = make_http(HOSTS, retry=RetryPolicy(max_attempts=2))
        with pytest.raises(TransientFetchError):
            await http.execute(HttpRequest(provider="zai", url=URL))
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_is_transient(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
        http = make_http(HOSTS)
        with pytest.raises(TransientFetchError):
            await http.execute(HttpRequest(provider="zai", url=URL))

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        route = respx.get(URL).mock(return_value=httpx.Response(401))
        http = make_http(HOSTS)
        with pytest.raises(AuthRequiredError):
            await http.execute(HttpRequest(provider="zai", url=URL))
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        route = respx.get(URL).mock(return_value=httpx.Response(404))
        http = make_http(HOSTS)
        with pytest.raises(PermanentFetchError):
            await http.execute(HttpRequest(provider="zai", url=URL))
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_not_followed(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        respx.get(URL).mock(
            return_value=httpx.Response(302, headers={"location": "https://z.ai/login"})
        )
        http = make_http(HOSTS)
        with pytest.raises(RedirectError) as excinfo:
            await http.execute(HttpRequest(provider="zai", url=URL))
        assert excinfo.value.location == "https://z.ai/login"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_retried_once(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        sleeps: "list[float]" = []

        async def _sleep(delay: "float") -> "None":
            sleeps.append(delay)

        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"retry-after": "2"}),
                httpx.Response(200, json={}),
            ]
        )
        http = make_http(HOSTS, sleep=_sleep)
        raw = await http.execute(HttpRequest(provider="zai", url=URL))
        assert raw.status == 200
        assert route.call_count == 2
        assert sleeps == [2.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_twice_surfaces(
        self, make_http: "Callable[..., HttpExecutor]"
    ) -> "None":
        respx.get(URL).mock(return_value=httpx.Response(429, headers={"retry-after": "7"}))
        http = make_http(HOSTS)
        with pytest.raises(RateLimitedError) as excinfo:
            await http.execute(HttpRequest(provider="zai", url=URL))
        assert excinfo.value.retry_after == 7.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_after_is_capped(self, make_http: "Callable[..., HttpExecutor]") -> "None":
        sleeps: "list[float]" = []

        async def _sleep(delay: "float") -> "None":
            sleeps.append(delay)

        respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"retry-after": "3600"}),
                httpx.Response(200, json={}),
            ]
        )
        http = make_http(HOSTS, sleep=_sleep, retry=RetryPolicy(max_retry_after=30.0))
        await http.execute(HttpRequest(provider="zai", url=URL))
        assert sleeps == [30.0]
