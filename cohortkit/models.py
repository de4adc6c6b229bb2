"""Core domain models shared by the taxonomy, cohort and metrics engines."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Tuple

SOURCE_MANUAL = "manual"
SOURCE_ML = "ml"
SOURCE_KEYWORD = "keyword"
MAPPING_SOURCES = (SOURCE_MANUAL, SOURCE_ML, SOURCE_KEYWORD)

IMPRESSION = "impression"
CLICK = "click"
CONVERSION = "conversion"
EVENT_TYPES = (IMPRESSION, CLICK, CONVERSION)


def as_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime; naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class Topic:
    """A node of the interest taxonomy."""

    id: int
    name: str
    level: int
    is_sensitive: bool
    description: str
    parent_id: Optional[int] = None


@dataclass(frozen=True)
class DomainMapping:
    """Known topic assignment for a normalized domain."""

    domain: str
    topic_ids: Tuple[int, ...]
    confidence: float
    last_updated: datetime
    source: str = SOURCE_MANUAL


@dataclass(frozen=True)
class KeywordRule:
    """Fallback rule: substrings of a domain that hint at a set of topics."""

    keywords: Tuple[str, ...]
    topic_ids: Tuple[int, ...]
    weight: float = 1.0


@dataclass(frozen=True)
class ClassificationResult:
    domain: str
    topic_ids: Tuple[int, ...]
    confidence: float
    source: str
    matched_keywords: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class DomainVisit:
    """Aggregated visit count for a domain, as reported by the history monitor."""

    domain: str
    timestamp: datetime
    visit_count: int


@dataclass(frozen=True)
class CohortAssignment:
    topic_id: int
    topic_name: str
    confidence: float
    assigned_date: datetime
    expiry_date: datetime


@dataclass(frozen=True)
class TimeRange:
    start_date: datetime
    end_date: datetime

    def contains(self, moment: datetime) -> bool:
        return as_utc(self.start_date) <= as_utc(moment) <= as_utc(self.end_date)


@dataclass(frozen=True)
class MetricsEvent:
    """A single impression, click or conversion tagged with a cohort."""

    event_id: str
    event_type: str
    cohort_id: str
    domain: str
    timestamp: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedMetrics:
    cohort_id: str
    time_range: TimeRange
    impressions: int
    clicks: int
    conversions: int
    click_through_rate: float
    conversion_rate: float
    aggregation_level: str
    data_points: int
    privacy_threshold_met: bool


@dataclass(frozen=True)
class AttributionReport:
    """Last-touch link between an impression and a later conversion."""

    report_id: str
    cohort_id: str
    source_event: MetricsEvent
    trigger_event: MetricsEvent
    attribution_delay: timedelta
    conversion_value: float
    privacy_budget: float
    created_at: datetime


@dataclass(frozen=True)
class AggregationConfig:
    min_cohort_size: int = 50
    min_data_points: int = 100
    noise_level: float = 0.1
    suppression_threshold: int = 10
    aggregation_window_hours: int = 24


@dataclass(frozen=True)
class PrivacyParams:
    """Differential privacy parameters for the Laplace mechanism."""

    epsilon: float = 1.0
    delta: float = 1e-5
    sensitivity: float = 1.0

    @property
    def noise_scale(self) -> float:
        return self.sensitivity / self.epsilon
