"""cohortkit - privacy-preserving interest cohorts and aggregate ad metrics."""

from .classifier import DomainClassifier, normalize_domain
from .cohorts import CohortAssignmentEngine
from .errors import (
    CohortKitError,
    ConfigurationError,
    EventValidationError,
    InvalidTopicReference,
    TaxonomyValidationError,
)
from .models import (
    AggregatedMetrics,
    AggregationConfig,
    AttributionReport,
    ClassificationResult,
    CohortAssignment,
    DomainMapping,
    DomainVisit,
    KeywordRule,
    MetricsEvent,
    PrivacyParams,
    TimeRange,
    Topic,
)
from .service import MetricsAggregationEngine
from .system import CohortSystem
from .taxonomy import TaxonomyLoader, TopicTaxonomy, load_taxonomy

__all__ = [
    "CohortSystem",
    "TopicTaxonomy",
    "TaxonomyLoader",
    "load_taxonomy",
    "DomainClassifier",
    "normalize_domain",
    "CohortAssignmentEngine",
    "MetricsAggregationEngine",
    "Topic",
    "DomainMapping",
    "KeywordRule",
    "ClassificationResult",
    "DomainVisit",
    "CohortAssignment",
    "MetricsEvent",
    "TimeRange",
    "AggregatedMetrics",
    "AttributionReport",
    "AggregationConfig",
    "PrivacyParams",
    "CohortKitError",
    "TaxonomyValidationError",
    "InvalidTopicReference",
    "EventValidationError",
    "ConfigurationError",
]

__version__ = "0.1.0"
