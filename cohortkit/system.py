"""Composition root wiring one taxonomy, classifier, cohort engine and metrics engine."""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .adapters.memory_store import InMemoryEventStore
from .adapters.yaml_catalog import YamlTaxonomySource
from .classifier import DomainClassifier
from .cohorts import CohortAssignmentEngine
from .config import Settings, configure_logging
from .models import (
    AggregatedMetrics,
    AttributionReport,
    ClassificationResult,
    CohortAssignment,
    DomainVisit,
    MetricsEvent,
    TimeRange,
)
from .ports import EventStore
from .privacy import RandomSource
from .service import MetricsAggregationEngine
from .taxonomy import TaxonomyLoader, TopicTaxonomy

logger = logging.getLogger(__name__)


class CohortSystem:
    """Owns the services for one device and exposes the public operations."""

    def __init__(
        self,
        taxonomy: TopicTaxonomy,
        classifier: DomainClassifier,
        cohorts: CohortAssignmentEngine,
        metrics: MetricsAggregationEngine,
    ):
        self.taxonomy = taxonomy
        self.classifier = classifier
        self.cohorts = cohorts
        self.metrics = metrics

    @classmethod
    def from_env(cls) -> "CohortSystem":
        """Build a system from ``COHORTKIT_*`` environment variables and set up logging."""
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        return cls.from_settings(settings)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[EventStore] = None,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "CohortSystem":
        settings = settings or Settings()
        taxonomy = TaxonomyLoader(YamlTaxonomySource(settings.taxonomy_path)).load()
        classifier = DomainClassifier.with_presets(taxonomy, settings.presets_path, clock=clock)
        if store is None:
            store = _build_store(settings, clock)
        metrics = MetricsAggregationEngine(
            store,
            config=settings.aggregation_config(),
            privacy=settings.privacy_params(),
            rng=rng,
            clock=clock,
        )
        return cls(
            taxonomy=taxonomy,
            classifier=classifier,
            cohorts=CohortAssignmentEngine(classifier, taxonomy, clock=clock),
            metrics=metrics,
        )

    def classify_domain(self, domain: str) -> ClassificationResult:
        return self.classifier.classify(domain)

    def assign_cohorts(self, visits: Sequence[DomainVisit]) -> List[CohortAssignment]:
        return self.cohorts.assign_cohorts(visits)

    def update_weekly_cohorts(self) -> bool:
        return self.cohorts.update_weekly_cohorts()

    def get_current_cohorts(self) -> List[CohortAssignment]:
        return self.cohorts.get_current_cohorts()

    def get_cohorts_for_sharing(self) -> List[CohortAssignment]:
        return self.cohorts.get_cohorts_for_sharing()

    def record_event(self, event: MetricsEvent) -> MetricsEvent:
        return self.metrics.record_event(event)

    def get_aggregated_metrics(self, cohort_ids: Sequence[str], time_range: TimeRange) -> List[AggregatedMetrics]:
        return self.metrics.get_aggregated_metrics(cohort_ids, time_range)

    def generate_attribution_reports(self, time_range: TimeRange) -> List[AttributionReport]:
        return self.metrics.generate_attribution_reports(time_range)


def _build_store(settings: Settings, clock: Optional[Callable[[], datetime]]) -> EventStore:
    if not settings.database_url:
        return InMemoryEventStore(retention_days=settings.event_retention_days, clock=clock)

    from sqlalchemy import create_engine
    from sqlalchemy.orm import Session

    from .adapters.sqlalchemy_store import SQLAlchemyEventStore

    engine = create_engine(settings.database_url)
    store = SQLAlchemyEventStore(Session(engine), retention_days=settings.event_retention_days, clock=clock)
    store.create_schema()
    logger.info("Metrics events persisted via %s", engine.dialect.name)
    return store
