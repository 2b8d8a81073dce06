from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from quotabar.models import FetchResult, Success, UsageRecord


class MetricsUpdater:
    """
    applies fetch outcomes and normalized UsageRecord values to
    Prometheus metrics.
     - fetch_duration_seconds: time spent fetching one provider.
     - fetch_results_total: fetch outcomes, labeled by result kind.
     - quota_used / quota_limit: latest quota values, labeled by
     unit.
     - cost_minor_units: latest cost, labeled by currency.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._fetch_duration: "Histogram" = Histogram(
            "quotabar_fetch_duration_seconds",
            "Duration of provider fetches",
            ["provider"],
            registry=registry,
        )
        self._fetch_results: "Counter" = Counter(
            "quotabar_fetch_results_total",
            "Total number of fetch results by provider and outcome",
            ["provider", "outcome"],
            registry=registry,
        )
        self._last_success: "Gauge" = Gauge(
            "quotabar_last_fetch_success_timestamp_seconds",
            "Unix timestamp of last successful fetch per provider",
            ["provider"],
            registry=registry,
        )
        self._quota_used: "Gauge" = Gauge(
            "quotabar_quota_used",
            "Latest quota consumption reported by the provider",
            ["provider", "unit"],
            registry=registry,
        )
        self._quota_limit: "Gauge" = Gauge(
            "quotabar_quota_limit",
            "Latest quota limit reported by the provider",
            ["provider", "unit"],
            registry=registry,
        )
        self._cost: "Gauge" = Gauge(
            "quotabar_cost_minor_units",
            "Latest cost in minor currency units",
            ["provider", "currency"],
            registry=registry,
        )

    def observe_fetch(
        self, result: "FetchResult", duration_seconds: "float", timestamp: "float"
    ) -> "None":
        """
        records one fetch outcome. Usage gauges are only touched
        by fresh successes.
        """
        self._fetch_duration.labels(provider=result.provider).observe(duration_seconds)
        self._fetch_results.labels(provider=result.provider, outcome=result.kind).inc()
        if isinstance(result, Success):
            self._last_success.labels(provider=result.provider).set(timestamp)
            self.update_usage(result.record)

    def update_usage(self, record: "UsageRecord") -> "None":
        if record.quota is not None:
            labels = {"provider": record.provider, "unit": record.quota.unit}
            self._quota_used.labels(**labels).set(record.quota.used)
            if record.quota.limit is not None:
                self._quota_limit.labels(**labels).set(record.quota.limit)
        if record.cost is not None:
            self._cost.labels(
                provider=record.provider, currency=record.cost.currency
            ).set(record.cost.amount)
