import asyncio
import inspect
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Union

import structlog

from quotabar.capture import DebugCapture
from quotabar.credentials import CredentialStore
from quotabar.errors import (
    AuthRequiredError,
    PermanentFetchError,
    PermissionDenied,
    RateLimitedError,
    StoreUnavailable,
    StrategyUnsupportedError,
    TransientFetchError,
    UnknownProviderError,
)
from quotabar.metrics import MetricsUpdater
from quotabar.models import (
    AuthRequired,
    FetchRequest,
    FetchResult,
    PermanentError,
    ProviderId,
    RateLimited,
    RawResponse,
    Success,
    TransientError,
)
from quotabar.registry import ProviderRegistry
from quotabar.store import UsageStore
from quotabar.transport import HttpExecutor

logger = structlog.get_logger()

# last good records older than this are dropped by the watch loop
_DEFAULT_EVICTION_AGE = timedelta(hours=24)

Snapshot = dict[ProviderId, FetchResult]
ResultCallback = Callable[[Snapshot], Union[Awaitable[Any], Any]]


class WatchHandle:
    """
    WatchHandle controls a running watch loop. cancel() never
    blocks; wait() returns once the loop has fully stopped.
    """

    def __init__(self, task: "asyncio.Task[None]") -> "None":
        self._task = task

    @property
    def done(self) -> "bool":
        return self._task.done()

    def cancel(self) -> "None":
        """
        stops the loop: no new cycle starts and the provider
        fetches of the running cycle are cancelled.
        """
        self._task.cancel()

    async def wait(self) -> "None":
        await asyncio.wait({self._task})
        if not self._task.cancelled():
            # surfaces a crash of the loop itself
            self._task.result()


class Orchestrator:
    """
    Orchestrator is responsible for turning provider ids into
    FetchResults. For each provider it walks the descriptor's
    strategy chain, hands the raw payload to the provider's
    parser and records the outcome in the usage store and the
    metrics. Providers are fetched concurrently and one provider's
    failure never affects another's result.
    """

    def __init__(
        self,
        registry: "ProviderRegistry",
        credentials: "CredentialStore",
        http: "HttpExecutor",
        store: "UsageStore | None" = None,
        metrics: "MetricsUpdater | None" = None,
        capture: "DebugCapture | None" = None,
        timeout: "float" = 30.0,
    ) -> "None":
        self._registry = registry
        self._credentials = credentials
        self._http = http
        self._store = store if store is not None else UsageStore()
        self._metrics = metrics
        self._capture = capture
        self._timeout = timeout

    @property
    def store(self) -> "UsageStore":
        return self._store

    async def close(self) -> "None":
        """
        closes the shared HTTP client.
        """
        await self._http.close()

    async def fetch_one(self, request: "ProviderId | FetchRequest") -> "FetchResult":
        """
        fetches a single provider. Never raises for a provider
        failure, every outcome is a FetchResult.
        """
        if not isinstance(request, FetchRequest):
            request = FetchRequest(provider=request)
        provider = request.provider
        timeout = request.timeout if request.timeout is not None else self._timeout

        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run_chain(request), timeout=timeout)
        except TimeoutError:
            logger.warning("fetch_timeout", provider=provider, timeout=timeout)
            result = TransientError(provider, f"fetch timed out after {timeout}s")
        duration = time.monotonic() - started

        if not isinstance(result, Success):
            result = replace(result, stale=self._store.stale_for(provider))
        self._store.record(result)
        if self._metrics is not None:
            self._metrics.observe_fetch(result, duration, time.time())

        logger.info(
            "fetch_complete",
            provider=provider,
            outcome=result.kind,
            duration=round(duration, 3),
        )
        return result

    async def fetch_all(
        self, provider_ids: "Iterable[ProviderId] | None" = None
    ) -> "Snapshot":
        """
        fetches the given providers (all registered ones when None)
        concurrently. Duplicate ids are fetched once.
        """
        ids = list(dict.fromkeys(self._registry.ids() if provider_ids is None else provider_ids))
        results = await asyncio.gather(*(self.fetch_one(p) for p in ids))
        return dict(zip(ids, results))

    def watch(
        self,
        interval: "float",
        provider_ids: "Iterable[ProviderId] | None",
        on_result: "ResultCallback",
    ) -> "WatchHandle":
        """
        runs fetch_all every `interval` seconds in a background task
        and hands each snapshot to on_result. Must be called with a
        running event loop.
        """
        if interval <= 0:
            raise ValueError("watch interval must be positive")
        ids = None if provider_ids is None else list(provider_ids)
        task = asyncio.create_task(self._watch_loop(interval, ids, on_result))
        return WatchHandle(task)

    async def _watch_loop(
        self,
        interval: "float",
        provider_ids: "list[ProviderId] | None",
        on_result: "ResultCallback",
    ) -> "None":
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while True:
            logger.info("watch_cycle_start")

            # evict old records to prevent unbounded memory growth
            cutoff = datetime.now().astimezone() - _DEFAULT_EVICTION_AGE
            evicted = self._store.evict_before(cutoff)
            if evicted:
                logger.debug("records_evicted", count=evicted)

            snapshot = await self.fetch_all(provider_ids)
            try:
                outcome = on_result(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("watch_callback_error")

            logger.info("watch_cycle_end")

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                # the cycle overran its slot, start the deferred one now
                next_tick = now
                continue
            await asyncio.sleep(next_tick - now)

    async def _run_chain(self, request: "FetchRequest") -> "FetchResult":
        provider = request.provider
        try:
            descriptor = self._registry.lookup(provider)
        except UnknownProviderError as exc:
            return PermanentError(provider, str(exc))

        strategies = descriptor.strategies
        if request.strategy is not None:
            strategies = tuple(s for s in strategies if s.kind == request.strategy)
            if not strategies:
                return PermanentError(
                    provider,
                    f"{provider} does not support the {request.strategy.value} strategy",
                )

        auth_reason: "str | None" = None
        unsupported: "list[str]" = []
        for strategy in strategies:
            log = logger.bind(provider=provider, strategy=strategy.kind.value)
            try:
                raw = await strategy.acquire(provider, self._credentials, self._http)
                if self._capture is not None:
                    await self._write_capture(self._capture, raw)
                record = descriptor.parser(raw)
                return Success(provider, record, strategy.kind)
            except AuthRequiredError as exc:
                log.info("strategy_auth_required", reason=str(exc))
                auth_reason = str(exc)
            except StrategyUnsupportedError as exc:
                log.info("strategy_unsupported", reason=str(exc))
                unsupported.append(f"{strategy.kind.value}: {exc}")
            except RateLimitedError as exc:
                return RateLimited(provider, exc.retry_after)
            except TransientFetchError as exc:
                log.warning("strategy_transient_error", error=str(exc))
                return TransientError(provider, str(exc))
            except PermanentFetchError as exc:
                log.warning("strategy_permanent_error", error=str(exc))
                return PermanentError(provider, str(exc))
            except StoreUnavailable as exc:
                log.warning("credential_store_unavailable", error=str(exc))
                return TransientError(provider, f"credential store unavailable: {exc}")
            except PermissionDenied as exc:
                log.warning("credential_store_denied", error=str(exc))
                return PermanentError(provider, f"credential store access denied: {exc}")
            except ValueError as exc:
                # raised by UsageRecord for out of range values
                log.warning("invalid_usage_data", error=str(exc))
                return PermanentError(provider, f"invalid usage data: {exc}")
            except Exception as exc:
                log.exception("fetch_unexpected_error")
                return PermanentError(provider, f"unexpected {type(exc).__name__}")

        if auth_reason is not None:
            return AuthRequired(provider, auth_reason)
        return PermanentError(
            provider, "no usable strategy (" + "; ".join(unsupported) + ")"
        )

    async def _write_capture(self, capture: "DebugCapture", raw: "RawResponse") -> "None":
        try:
            await asyncio.to_thread(capture.write, raw)
        except OSError as exc:
            logger.warning("debug_capture_failed", provider=raw.provider, error=str(exc))

