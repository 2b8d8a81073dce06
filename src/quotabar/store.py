import threading
from datetime import datetime

from quotabar.models import FetchResult, ProviderId, Success, UsageRecord


class UsageStore:
    """
    UsageStore: Is a thread-safe holder for the latest fetch
    snapshot.

    Keeps the most recent FetchResult per provider plus the last
    successful UsageRecord, so that a provider whose current fetch
    fails can still show its previous value, marked as stale.

    Supports time-based eviction via evict_before() so providers
    that stopped being fetched do not linger forever.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._results: "dict[ProviderId, FetchResult]" = {}
        self._last_good: "dict[ProviderId, UsageRecord]" = {}

    def record(self, result: "FetchResult") -> "None":
        """
        stores the result as the provider's latest. A success also
        replaces the last good record.
        """
        with self._lock:
            self._results[result.provider] = result
            if isinstance(result, Success):
                self._last_good[result.provider] = result.record

    def stale_for(self, provider: "ProviderId") -> "UsageRecord | None":
        """
        returns the last good record marked as not fresh, or None
        when the provider never succeeded.
        """
        with self._lock:
            record = self._last_good.get(provider)
        return record.as_stale() if record is not None else None

    def latest(self, provider: "ProviderId") -> "FetchResult | None":
        with self._lock:
            return self._results.get(provider)

    def snapshot(self) -> "dict[ProviderId, FetchResult]":
        with self._lock:
            return dict(self._results)

    def evict_before(self, cutoff: "datetime") -> "int":
        """
        removes last good records captured before cutoff, together
        with their latest result. Returns the number of evicted
        providers.
        """
        with self._lock:
            to_remove = [p for p, r in self._last_good.items() if r.captured_at < cutoff]
            for p in to_remove:
                del self._last_good[p]
                self._results.pop(p, None)
            return len(to_remove)
