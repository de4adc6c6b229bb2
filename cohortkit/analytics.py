"""Pure aggregation, attribution and reporting functions over metrics events."""

import logging
import math
import uuid
from bisect import bisect_left
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .models import (
    CLICK,
    CONVERSION,
    IMPRESSION,
    AggregatedMetrics,
    AggregationConfig,
    AttributionReport,
    MetricsEvent,
    PrivacyParams,
    TimeRange,
)
from .privacy import RandomSource, laplace_noise, noisy_count, noisy_value

logger = logging.getLogger(__name__)

RATE_NOISE_FACTOR = 0.1
SEGMENT_LENGTHS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}
EXPECTED_POINTS_PER_SEGMENT = 10


def group_by_cohort(events: Iterable[MetricsEvent]) -> Dict[str, List[MetricsEvent]]:
    grouped: Dict[str, List[MetricsEvent]] = {}
    for event in events:
        grouped.setdefault(event.cohort_id, []).append(event)
    return grouped


def aggregate_events(
    events: Iterable[MetricsEvent],
    config: AggregationConfig = AggregationConfig(),
) -> List[AggregatedMetrics]:
    """Count events per cohort and derive rates and the privacy threshold flag."""
    results: List[AggregatedMetrics] = []
    for cohort_id, cohort_events in group_by_cohort(events).items():
        impressions = sum(1 for event in cohort_events if event.event_type == IMPRESSION)
        clicks = sum(1 for event in cohort_events if event.event_type == CLICK)
        conversions = sum(1 for event in cohort_events if event.event_type == CONVERSION)
        data_points = len(cohort_events)
        timestamps = [event.timestamp for event in cohort_events if event.timestamp is not None]

        results.append(
            AggregatedMetrics(
                cohort_id=cohort_id,
                time_range=TimeRange(min(timestamps), max(timestamps)),
                impressions=impressions,
                clicks=clicks,
                conversions=conversions,
                click_through_rate=clicks / impressions * 100 if impressions > 0 else 0.0,
                conversion_rate=conversions / clicks * 100 if clicks > 0 else 0.0,
                aggregation_level=_aggregation_level(data_points),
                data_points=data_points,
                privacy_threshold_met=(
                    data_points >= config.min_data_points and impressions >= config.min_cohort_size
                ),
            )
        )
    return results


def apply_differential_privacy(
    metrics: Iterable[AggregatedMetrics],
    params: PrivacyParams = PrivacyParams(),
    rng: Optional[RandomSource] = None,
) -> List[AggregatedMetrics]:
    """Add independent Laplace noise to every count and rate of every cohort."""
    scale = params.noise_scale
    rate_scale = scale * RATE_NOISE_FACTOR
    return [
        replace(
            metric,
            impressions=noisy_count(metric.impressions, scale, rng),
            clicks=noisy_count(metric.clicks, scale, rng),
            conversions=noisy_count(metric.conversions, scale, rng),
            click_through_rate=noisy_value(metric.click_through_rate, rate_scale, rng),
            conversion_rate=noisy_value(metric.conversion_rate, rate_scale, rng),
        )
        for metric in metrics
    ]


def suppress_low_volume(metrics: Iterable[AggregatedMetrics], threshold: int) -> List[AggregatedMetrics]:
    """Zero out cohorts below ``threshold`` data points or below the privacy threshold."""
    results: List[AggregatedMetrics] = []
    for metric in metrics:
        if metric.data_points < threshold or not metric.privacy_threshold_met:
            metric = replace(
                metric,
                impressions=0,
                clicks=0,
                conversions=0,
                click_through_rate=0.0,
                conversion_rate=0.0,
                privacy_threshold_met=False,
            )
        results.append(metric)
    return results


def calculate_click_through_rate(
    impressions: int,
    clicks: int,
    config: AggregationConfig = AggregationConfig(),
) -> float:
    """CTR as a percentage (2 dp); 0 below ``min_data_points`` impressions."""
    if impressions <= 0 or impressions < config.min_data_points:
        return 0.0
    return round(clicks / impressions * 100, 2)


def calculate_conversion_rate(
    clicks: int,
    conversions: int,
    config: AggregationConfig = AggregationConfig(),
) -> float:
    """Conversion rate as a percentage (2 dp); 0 below ``suppression_threshold`` clicks."""
    if clicks <= 0 or clicks < config.suppression_threshold:
        return 0.0
    return round(conversions / clicks * 100, 2)


def pair_attributions(
    events: Iterable[MetricsEvent],
    params: PrivacyParams,
    created_at: datetime,
    report_id_factory: Optional[Callable[[], str]] = None,
) -> List[AttributionReport]:
    """Link each conversion to the latest strictly earlier impression in its cohort."""
    new_report_id = report_id_factory or _new_report_id
    reports: List[AttributionReport] = []
    for cohort_id, cohort_events in group_by_cohort(events).items():
        ordered = sorted(cohort_events, key=lambda event: event.timestamp)
        impressions = [event for event in ordered if event.event_type == IMPRESSION]
        impression_times = [event.timestamp for event in impressions]
        for event in ordered:
            if event.event_type != CONVERSION:
                continue
            index = bisect_left(impression_times, event.timestamp) - 1
            if index < 0:
                continue
            source = impressions[index]
            reports.append(
                AttributionReport(
                    report_id=new_report_id(),
                    cohort_id=cohort_id,
                    source_event=source,
                    trigger_event=event,
                    attribution_delay=event.timestamp - source.timestamp,
                    conversion_value=_conversion_value(event),
                    privacy_budget=params.epsilon / 10,
                    created_at=created_at,
                )
            )
    return reports


def apply_privacy_budget(
    reports: Iterable[AttributionReport],
    params: PrivacyParams = PrivacyParams(),
) -> List[AttributionReport]:
    """Keep at most ``floor(epsilon * 10)`` reports per cohort, in generation order."""
    limit = math.floor(params.epsilon * 10)
    kept: List[AttributionReport] = []
    per_cohort: Dict[str, int] = {}
    for report in reports:
        count = per_cohort.get(report.cohort_id, 0)
        if count >= limit:
            continue
        per_cohort[report.cohort_id] = count + 1
        kept.append(report)
    return kept


def add_conversion_value_noise(
    reports: Iterable[AttributionReport],
    params: PrivacyParams = PrivacyParams(),
    rng: Optional[RandomSource] = None,
) -> List[AttributionReport]:
    scale = params.noise_scale
    return [
        replace(
            report,
            conversion_value=max(0.0, round(report.conversion_value + laplace_noise(scale, rng), 2)),
        )
        for report in reports
    ]


def summarize_attribution(
    reports: Iterable[AttributionReport],
    time_range: TimeRange,
    config: AggregationConfig = AggregationConfig(),
    cohort_ids: Sequence[str] = (),
) -> List[Dict]:
    """Per-cohort attribution totals, restricted to privacy-compliant cohorts."""
    wanted = set(cohort_ids)
    grouped: Dict[str, List[AttributionReport]] = {}
    for report in reports:
        if wanted and report.cohort_id not in wanted:
            continue
        grouped.setdefault(report.cohort_id, []).append(report)

    summaries: List[Dict] = []
    for cohort_id, cohort_reports in grouped.items():
        count = len(cohort_reports)
        if count < config.suppression_threshold:
            continue
        by_source: Dict[str, int] = {}
        for report in cohort_reports:
            by_source[report.source_event.domain] = by_source.get(report.source_event.domain, 0) + 1
        total_delay = sum(report.attribution_delay.total_seconds() for report in cohort_reports)

        summaries.append(
            {
                "cohort_id": cohort_id,
                "attributed_conversions": count,
                "total_conversion_value": round(sum(r.conversion_value for r in cohort_reports), 2),
                "average_attribution_delay_seconds": round(total_delay / count, 2),
                "conversions_by_source": by_source,
                "privacy_compliant": True,
                "reporting_period": {
                    "start": time_range.start_date.isoformat(),
                    "end": time_range.end_date.isoformat(),
                },
            }
        )
    return summaries


def build_conversion_funnel(
    metrics: Iterable[AggregatedMetrics],
    attribution_summaries: Iterable[Dict],
) -> List[Dict]:
    """Impression -> click -> conversion funnel for compliant cohorts only."""
    summaries = {summary["cohort_id"]: summary for summary in attribution_summaries}
    funnel: List[Dict] = []
    for metric in metrics:
        summary = summaries.get(metric.cohort_id)
        if not metric.privacy_threshold_met or summary is None or not summary["privacy_compliant"]:
            continue
        funnel.append(
            {
                "cohort_id": metric.cohort_id,
                "impressions": metric.impressions,
                "clicks": metric.clicks,
                "conversions": metric.conversions,
                "attributed_conversions": summary["attributed_conversions"],
                "impression_to_click_rate": _percent(metric.clicks, metric.impressions),
                "click_to_conversion_rate": _percent(metric.conversions, metric.clicks),
                "impression_to_conversion_rate": _percent(metric.conversions, metric.impressions),
                "average_time_to_conversion_seconds": summary["average_attribution_delay_seconds"],
                "privacy_compliant": True,
            }
        )
    return funnel


def performance_score(metric: AggregatedMetrics) -> float:
    """Weighted 0-100 blend of normalized CTR, conversion rate and volume."""
    if not metric.privacy_threshold_met:
        return 0.0
    normalized_ctr = min(metric.click_through_rate / 10, 1)
    normalized_conversion = min(metric.conversion_rate / 20, 1)
    normalized_volume = min(metric.data_points / 1000, 1)
    score = (normalized_ctr * 0.4 + normalized_conversion * 0.4 + normalized_volume * 0.2) * 100
    return round(score, 2)


def compute_cohort_performance(metrics: Iterable[AggregatedMetrics]) -> List[Dict]:
    results: List[Dict] = []
    for metric in metrics:
        if not metric.privacy_threshold_met:
            continue
        engagement = (
            (metric.clicks + metric.conversions) / metric.impressions * 100 if metric.impressions > 0 else 0.0
        )
        results.append(
            {
                "cohort_id": metric.cohort_id,
                "performance_score": performance_score(metric),
                "engagement_rate": round(engagement, 2),
                "reach_estimate": metric.impressions,
                "privacy_compliant": True,
            }
        )
    return results


def compute_metrics_summary(
    metrics: Iterable[AggregatedMetrics],
    config: AggregationConfig = AggregationConfig(),
) -> Dict:
    """Totals over threshold-meeting cohorts; averages reuse the volume-floored rate helpers."""
    summary = {
        "total_impressions": 0,
        "total_clicks": 0,
        "total_conversions": 0,
        "cohorts_with_sufficient_data": 0,
    }
    for metric in metrics:
        if not metric.privacy_threshold_met:
            continue
        summary["total_impressions"] += metric.impressions
        summary["total_clicks"] += metric.clicks
        summary["total_conversions"] += metric.conversions
        summary["cohorts_with_sufficient_data"] += 1

    summary["average_ctr"] = calculate_click_through_rate(
        summary["total_impressions"], summary["total_clicks"], config
    )
    summary["average_conversion_rate"] = calculate_conversion_rate(
        summary["total_clicks"], summary["total_conversions"], config
    )
    return summary


def time_segments(time_range: TimeRange, aggregation_level: str = "daily") -> List[TimeRange]:
    """Split a range into consecutive hourly, daily or weekly segments."""
    step = SEGMENT_LENGTHS.get(aggregation_level)
    if step is None:
        raise ValueError(f"Unknown aggregation level: {aggregation_level}")

    segments: List[TimeRange] = []
    start = time_range.start_date
    while start < time_range.end_date:
        end = min(start + step, time_range.end_date)
        segments.append(TimeRange(start, end))
        start = end
    return segments


def data_completeness(metric: AggregatedMetrics, segments: Sequence[TimeRange]) -> float:
    if not segments:
        return 0.0
    return min(1.0, metric.data_points / (len(segments) * EXPECTED_POINTS_PER_SEGMENT))


def engagement_score(metric: AggregatedMetrics) -> float:
    if not metric.privacy_threshold_met:
        return 0.0
    normalized_ctr = min(metric.click_through_rate / 10, 1)
    normalized_conversion = min(metric.conversion_rate / 20, 1)
    return (normalized_ctr * 0.8 + normalized_conversion * 0.2) * 100


def reach_score(metric: AggregatedMetrics) -> float:
    """50 points at 1,000 impressions, 100 at 10,000, linear in between."""
    if not metric.privacy_threshold_met or metric.impressions <= 0:
        return 0.0
    if metric.impressions < 1000:
        return metric.impressions / 1000 * 50
    if metric.impressions >= 10000:
        return 100.0
    return 50 + (metric.impressions - 1000) / 9000 * 50


def relevance_score(metric: AggregatedMetrics) -> float:
    if not metric.privacy_threshold_met:
        return 0.0
    normalized_conversion = min(metric.conversion_rate / 20, 1)
    normalized_ctr = min(metric.click_through_rate / 10, 1)
    return (normalized_conversion * 0.7 + normalized_ctr * 0.3) * 100


def compute_privacy_preserving_report(
    metrics: Iterable[AggregatedMetrics],
    time_range: TimeRange,
    aggregation_level: str = "daily",
    config: AggregationConfig = AggregationConfig(),
) -> List[Dict]:
    """Detailed per-cohort report (metrics, performance, privacy info) for compliant cohorts."""
    segments = time_segments(time_range, aggregation_level)
    report: List[Dict] = []
    for metric in metrics:
        if not metric.privacy_threshold_met:
            continue
        engagement = engagement_score(metric)
        reach = reach_score(metric)
        relevance = relevance_score(metric)
        report.append(
            {
                "cohort_id": metric.cohort_id,
                "metrics": {
                    "impressions": metric.impressions,
                    "clicks": metric.clicks,
                    "conversions": metric.conversions,
                    "click_through_rate": metric.click_through_rate,
                    "conversion_rate": metric.conversion_rate,
                },
                "performance": {
                    "engagement_score": round(engagement, 2),
                    "reach_score": round(reach, 2),
                    "relevance_score": round(relevance, 2),
                    "overall_performance": round((engagement + reach + relevance) / 3, 2),
                },
                "privacy_info": {
                    "data_points": metric.data_points,
                    "noise_level": _noise_level(metric.data_points),
                    "privacy_threshold_met": True,
                    "suppression_applied": metric.data_points < config.suppression_threshold,
                },
                "aggregation_info": {
                    "level": aggregation_level,
                    "period_count": len(segments),
                    "completeness": data_completeness(metric, segments),
                },
            }
        )
    return report


def _aggregation_level(data_points: int) -> str:
    if data_points >= 1000:
        return "high"
    if data_points >= 100:
        return "medium"
    return "low"


def _noise_level(data_points: int) -> float:
    if data_points > 1000:
        return 0.05
    if data_points > 500:
        return 0.1
    return 0.2


def _percent(numerator: int, denominator: int) -> float:
    return round(numerator / denominator * 100, 2) if denominator > 0 else 0.0


def _conversion_value(event: MetricsEvent) -> float:
    value = event.metadata.get("value") if event.metadata else None
    if value is None:
        return 1.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric conversion value on event %s", event.event_id)
        return 1.0


def _new_report_id() -> str:
    return f"report_{uuid.uuid4().hex}"
