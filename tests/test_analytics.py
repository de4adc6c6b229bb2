from datetime import datetime, timedelta, timezone

import pytest

from cohortkit.analytics import (
    aggregate_events,
    apply_differential_privacy,
    apply_privacy_budget,
    build_conversion_funnel,
    calculate_click_through_rate,
    calculate_conversion_rate,
    compute_cohort_performance,
    compute_metrics_summary,
    compute_privacy_preserving_report,
    pair_attributions,
    performance_score,
    summarize_attribution,
    suppress_low_volume,
    time_segments,
)
from cohortkit.models import AggregationConfig, MetricsEvent, PrivacyParams, TimeRange
from cohortkit.privacy import laplace_noise

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


class ZeroNoise:
    def random(self):
        return 0.5


class FixedDraw:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def _event(event_id, event_type, cohort_id="c1", minutes=0, domain="ads.example", metadata=None):
    return MetricsEvent(
        event_id=event_id,
        event_type=event_type,
        cohort_id=cohort_id,
        domain=domain,
        timestamp=T0 + timedelta(minutes=minutes),
        metadata=metadata or {},
    )


def _bulk(cohort_id, impressions, clicks, conversions):
    events = []
    for i in range(impressions):
        events.append(_event(f"{cohort_id}-i{i}", "impression", cohort_id, minutes=i))
    for i in range(clicks):
        events.append(_event(f"{cohort_id}-c{i}", "click", cohort_id, minutes=i))
    for i in range(conversions):
        events.append(_event(f"{cohort_id}-v{i}", "conversion", cohort_id, minutes=i))
    return events


def test_laplace_noise_is_zero_at_the_median_and_signed_elsewhere():
    assert laplace_noise(1.0, ZeroNoise()) == 0.0
    assert laplace_noise(1.0, FixedDraw(0.75)) == pytest.approx(0.6931, abs=1e-4)
    assert laplace_noise(1.0, FixedDraw(0.25)) == pytest.approx(-0.6931, abs=1e-4)
    assert laplace_noise(1.0, FixedDraw(0.0)) < 0


def test_aggregate_events_counts_and_rates():
    events = _bulk("c1", impressions=200, clicks=20, conversions=2) + _bulk("c2", 5, 0, 0)

    metrics = {metric.cohort_id: metric for metric in aggregate_events(events)}

    first = metrics["c1"]
    assert (first.impressions, first.clicks, first.conversions) == (200, 20, 2)
    assert first.click_through_rate == pytest.approx(10.0)
    assert first.conversion_rate == pytest.approx(10.0)
    assert first.data_points == 222
    assert first.aggregation_level == "medium"
    assert first.privacy_threshold_met is True
    assert first.time_range == TimeRange(T0, T0 + timedelta(minutes=199))

    second = metrics["c2"]
    assert second.conversion_rate == 0.0
    assert second.aggregation_level == "low"
    assert second.privacy_threshold_met is False


def test_zero_noise_leaves_metrics_unchanged():
    metrics = aggregate_events(_bulk("c1", 200, 20, 2))

    assert apply_differential_privacy(metrics, PrivacyParams(), ZeroNoise()) == metrics


def test_noise_never_produces_negative_counts():
    metrics = aggregate_events(_bulk("c1", 1, 0, 0))

    noisy = apply_differential_privacy(metrics, PrivacyParams(epsilon=0.1), FixedDraw(0.0001))

    assert noisy[0].impressions == 0
    assert noisy[0].click_through_rate == 0.0


def test_small_cohorts_are_fully_suppressed():
    metrics = aggregate_events(_bulk("c1", 6, 2, 1))

    suppressed = suppress_low_volume(metrics, threshold=10)[0]

    assert suppressed.data_points == 9
    assert (suppressed.impressions, suppressed.clicks, suppressed.conversions) == (0, 0, 0)
    assert suppressed.click_through_rate == 0.0
    assert suppressed.conversion_rate == 0.0
    assert suppressed.privacy_threshold_met is False


def test_rate_helpers():
    assert calculate_click_through_rate(1000, 50) == 5.0
    assert calculate_click_through_rate(0, 7) == 0.0
    assert calculate_click_through_rate(99, 7) == 0.0
    assert calculate_conversion_rate(100, 5) == 5.0
    assert calculate_conversion_rate(9, 5) == 0.0


def test_pair_attributions_uses_latest_earlier_impression():
    events = [
        _event("i1", "impression", minutes=0, domain="a.example"),
        _event("i2", "impression", minutes=10, domain="b.example"),
        _event("v1", "conversion", minutes=15, metadata={"value": 12.5}),
        _event("v0", "conversion", cohort_id="c2", minutes=5),
        _event("i3", "impression", cohort_id="c2", minutes=5),
    ]

    reports = pair_attributions(events, PrivacyParams(), created_at=T0, report_id_factory=lambda: "r")

    assert len(reports) == 1
    report = reports[0]
    assert report.source_event.event_id == "i2"
    assert report.trigger_event.event_id == "v1"
    assert report.attribution_delay == timedelta(minutes=5)
    assert report.conversion_value == 12.5
    assert report.privacy_budget == pytest.approx(0.1)
    assert report.created_at == T0


def test_attribution_delay_is_always_positive():
    events = _bulk("c1", 30, 0, 30)

    reports = pair_attributions(events, PrivacyParams(), created_at=T0)

    assert reports
    assert all(report.attribution_delay > timedelta(0) for report in reports)
    assert all(report.report_id.startswith("report_") for report in reports)


def test_privacy_budget_caps_reports_per_cohort():
    events = []
    for i in range(30):
        events.append(_event(f"i{i}", "impression", minutes=2 * i))
        events.append(_event(f"v{i}", "conversion", minutes=2 * i + 1))
    reports = pair_attributions(events, PrivacyParams(), created_at=T0)

    capped = apply_privacy_budget(reports, PrivacyParams(epsilon=0.5))

    assert len(reports) == 30
    assert len(capped) == 5
    assert [report.trigger_event.event_id for report in capped] == ["v0", "v1", "v2", "v3", "v4"]


def test_attribution_summary_requires_suppression_threshold():
    events = []
    for i in range(12):
        events.append(_event(f"i{i}", "impression", minutes=2 * i, domain="news.example"))
        events.append(_event(f"v{i}", "conversion", minutes=2 * i + 1, metadata={"value": 2}))
    events += [_event("x1", "impression", "c2", 0), _event("x2", "conversion", "c2", 3)]
    reports = pair_attributions(events, PrivacyParams(), created_at=T0)
    period = TimeRange(T0, T0 + timedelta(days=1))

    summaries = summarize_attribution(reports, period, AggregationConfig())

    assert [summary["cohort_id"] for summary in summaries] == ["c1"]
    summary = summaries[0]
    assert summary["attributed_conversions"] == 12
    assert summary["total_conversion_value"] == 24.0
    assert summary["average_attribution_delay_seconds"] == 60.0
    assert summary["conversions_by_source"] == {"news.example": 12}
    assert summary["reporting_period"]["start"] == T0.isoformat()


def test_conversion_funnel_joins_metrics_and_attribution():
    events = _bulk("c1", 200, 20, 0)
    for i in range(10):
        events.append(_event(f"late-v{i}", "conversion", minutes=500 + i))
    metrics = aggregate_events(events)
    reports = pair_attributions(events, PrivacyParams(), created_at=T0)
    summaries = summarize_attribution(reports, TimeRange(T0, T0 + timedelta(days=1)))

    funnel = build_conversion_funnel(metrics, summaries)

    assert len(funnel) == 1
    row = funnel[0]
    assert row["impression_to_click_rate"] == 10.0
    assert row["click_to_conversion_rate"] == 50.0
    assert row["impression_to_conversion_rate"] == 5.0
    assert row["attributed_conversions"] == 10


def test_performance_views_only_include_compliant_cohorts():
    metrics = aggregate_events(_bulk("c1", 500, 50, 10) + _bulk("c2", 20, 1, 0))

    performance = compute_cohort_performance(metrics)
    summary = compute_metrics_summary(metrics)

    assert [row["cohort_id"] for row in performance] == ["c1"]
    # ctr 10% -> 1.0, cr 20% -> 1.0, 560 points -> 0.56
    assert performance[0]["performance_score"] == pytest.approx(91.2)
    assert performance[0]["engagement_rate"] == 12.0
    assert summary["cohorts_with_sufficient_data"] == 1
    assert summary["total_impressions"] == 500
    assert summary["average_ctr"] == 10.0
    assert summary["average_conversion_rate"] == 20.0
    assert performance_score(metrics[1]) == 0.0


def test_time_segments_and_privacy_preserving_report():
    period = TimeRange(T0, T0 + timedelta(days=3))
    assert len(time_segments(period, "daily")) == 3
    assert len(time_segments(period, "hourly")) == 72
    assert len(time_segments(period, "weekly")) == 1
    with pytest.raises(ValueError):
        time_segments(period, "monthly")

    metrics = aggregate_events(_bulk("c1", 600, 60, 12))
    report = compute_privacy_preserving_report(metrics, period, "daily")

    assert len(report) == 1
    row = report[0]
    assert row["privacy_info"]["noise_level"] == 0.1
    assert row["aggregation_info"] == {"level": "daily", "period_count": 3, "completeness": 1.0}
    assert 0 < row["performance"]["overall_performance"] <= 100
