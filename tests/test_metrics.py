from datetime import datetime, timezone

from prometheus_client import CollectorRegistry

from quotabar.metrics import MetricsUpdater
from quotabar.models import (
    CostMetric,
    QuotaMetric,
    Success,
    TransientError,
    UsageRecord,
)

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


class TestMetricsUpdater:
    def test_metric_families_registered(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "quotabar_fetch_duration_seconds" in metric_names
        assert "quotabar_fetch_results" in metric_names
        assert "quotabar_last_fetch_success_timestamp_seconds" in metric_names
        assert "quotabar_quota_used" in metric_names
        assert "quotabar_cost_minor_units" in metric_names

    def test_success_sets_usage_gauges(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        record = UsageRecord(
            provider="claude",
            captured_at=NOW,
            quota=QuotaMetric(used=42.0, limit=100.0, unit="percent"),
            cost=CostMetric(amount=1200, limit=5000),
        )
        updater.observe_fetch(Success("claude", record), 0.25, 1700000000.0)

        assert registry.get_sample_value(
            "quotabar_fetch_results_total", {"provider": "claude", "outcome": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "quotabar_quota_used", {"provider": "claude", "unit": "percent"}
        ) == 42.0
        assert registry.get_sample_value(
            "quotabar_quota_limit", {"provider": "claude", "unit": "percent"}
        ) == 100.0
        assert registry.get_sample_value(
            "quotabar_cost_minor_units", {"provider": "claude", "currency": "USD"}
        ) == 1200.0
        assert registry.get_sample_value(
            "quotabar_last_fetch_success_timestamp_seconds", {"provider": "claude"}
        ) == 1700000000.0

    def test_failure_counts_outcome_only(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.observe_fetch(TransientError("zai", "timeout"), 1.0, 1700000000.0)

        assert registry.get_sample_value(
            "quotabar_fetch_results_total",
            {"provider": "zai", "outcome": "transient_error"},
        ) == 1.0
        assert registry.get_sample_value(
            "quotabar_last_fetch_success_timestamp_seconds", {"provider": "zai"}
        ) is None
        assert registry.get_sample_value(
            "quotabar_fetch_duration_seconds_count", {"provider": "zai"}
        ) == 1.0
