"""Metrics aggregation service orchestrating the event store and pure analytics."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .analytics import (
    add_conversion_value_noise,
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
    suppress_low_volume,
    summarize_attribution,
)
from .errors import EventValidationError
from .models import (
    EVENT_TYPES,
    AggregatedMetrics,
    AggregationConfig,
    AttributionReport,
    MetricsEvent,
    PrivacyParams,
    TimeRange,
    as_utc,
)
from .ports import EventStore
from .privacy import RandomSource, default_random_source

logger = logging.getLogger(__name__)


class MetricsAggregationEngine:
    """Facade that turns raw cohort-tagged events into privacy-safe reports.

    Every query draws fresh noise, so repeated calls are not expected to
    return identical numbers.
    """

    def __init__(
        self,
        store: EventStore,
        config: Optional[AggregationConfig] = None,
        privacy: Optional[PrivacyParams] = None,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config or AggregationConfig()
        self.privacy = privacy or PrivacyParams()
        self.rng = rng or default_random_source()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record_event(self, event: MetricsEvent) -> MetricsEvent:
        _validate_event(event)
        if event.timestamp is None:
            event = replace(event, timestamp=as_utc(self._clock()))
        elif not isinstance(event.timestamp, datetime):
            raise EventValidationError("timestamp", "Timestamp must be a datetime")
        else:
            event = replace(event, timestamp=as_utc(event.timestamp))
        self.store.store_event(event)
        return event

    def get_aggregated_metrics(self, cohort_ids: Sequence[str], time_range: TimeRange) -> List[AggregatedMetrics]:
        events = self.store.get_events(cohort_ids, time_range)
        raw = aggregate_events(events, self.config)
        noisy = apply_differential_privacy(raw, self.privacy, self.rng)
        metrics = self.apply_privacy_thresholds(noisy)
        logger.debug(
            "Aggregated %d events into %d cohorts (%d above threshold)",
            len(events),
            len(metrics),
            sum(1 for metric in metrics if metric.privacy_threshold_met),
        )
        return metrics

    def apply_privacy_thresholds(self, metrics: Sequence[AggregatedMetrics]) -> List[AggregatedMetrics]:
        return suppress_low_volume(metrics, self.config.suppression_threshold)

    def generate_attribution_reports(self, time_range: TimeRange) -> List[AttributionReport]:
        events = self.store.get_events([], time_range)
        reports = pair_attributions(events, self.privacy, created_at=self._clock())
        limited = apply_privacy_budget(reports, self.privacy)
        if len(limited) < len(reports):
            logger.info("Privacy budget dropped %d of %d attribution reports", len(reports) - len(limited), len(reports))
        return add_conversion_value_noise(limited, self.privacy, self.rng)

    def generate_aggregated_attribution_reports(
        self,
        cohort_ids: Sequence[str],
        time_range: TimeRange,
    ) -> List[Dict]:
        reports = self.generate_attribution_reports(time_range)
        return summarize_attribution(reports, time_range, self.config, cohort_ids)

    def generate_conversion_funnel_report(self, cohort_ids: Sequence[str], time_range: TimeRange) -> List[Dict]:
        metrics = self.get_aggregated_metrics(cohort_ids, time_range)
        summaries = self.generate_aggregated_attribution_reports(cohort_ids, time_range)
        return build_conversion_funnel(metrics, summaries)

    def get_cohort_performance_metrics(self, cohort_ids: Sequence[str], time_range: TimeRange) -> List[Dict]:
        return compute_cohort_performance(self.get_aggregated_metrics(cohort_ids, time_range))

    def get_metrics_summary(self, cohort_ids: Sequence[str], time_range: TimeRange) -> Dict:
        return compute_metrics_summary(self.get_aggregated_metrics(cohort_ids, time_range), self.config)

    def get_privacy_preserving_aggregated_metrics(
        self,
        cohort_ids: Sequence[str],
        time_range: TimeRange,
        aggregation_level: str = "daily",
    ) -> List[Dict]:
        metrics = self.get_aggregated_metrics(cohort_ids, time_range)
        return compute_privacy_preserving_report(metrics, time_range, aggregation_level, self.config)

    def calculate_click_through_rate(self, impressions: int, clicks: int) -> float:
        return calculate_click_through_rate(impressions, clicks, self.config)

    def calculate_conversion_rate(self, clicks: int, conversions: int) -> float:
        return calculate_conversion_rate(clicks, conversions, self.config)

    def cleanup_expired_events(self) -> int:
        removed = self.store.cleanup_expired_events()
        logger.info("Removed %d expired metrics events", removed)
        return removed


def _validate_event(event: MetricsEvent) -> None:
    if not _present(event.event_id):
        raise EventValidationError("event_id", "Event ID is required")
    if event.event_type not in EVENT_TYPES:
        raise EventValidationError("event_type", f"Invalid event type: {event.event_type!r}")
    if not _present(event.cohort_id):
        raise EventValidationError("cohort_id", "Cohort ID is required")
    if not _present(event.domain):
        raise EventValidationError("domain", "Domain is required")


def _present(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())
