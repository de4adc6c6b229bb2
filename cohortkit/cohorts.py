"""Cohort assignment from local browsing activity."""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from .classifier import DomainClassifier, normalize_domain
from .models import ClassificationResult, CohortAssignment, DomainVisit, as_utc
from .taxonomy import TopicTaxonomy

logger = logging.getLogger(__name__)

MAX_COHORTS = 5
SHARED_COHORTS = 3
RETENTION_WEEKS = 3
MIN_VISITS = 3
FREQUENCY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.4

RECENT_WINDOW = timedelta(days=7)
RECENCY_DECAY_DAYS = 30
WEEKLY_COOLDOWN = timedelta(days=7)
RETENTION = timedelta(weeks=RETENTION_WEEKS)

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class DomainActivity:
    """Frequency/recency profile of one domain within a visit batch."""

    domain: str
    total_visits: int
    recent_visits: int
    first_visit: datetime
    last_visit: datetime
    frequency: float
    recency_score: float


@dataclass
class TopicScore:
    topic_id: int
    topic_name: str
    score: float = 0.0
    confidence: float = 0.0
    contributing_domains: Set[str] = field(default_factory=set)
    visit_count: int = 0


def analyze_visits(
    visits: Iterable[DomainVisit],
    now: datetime,
    min_visits: int = MIN_VISITS,
) -> List[DomainActivity]:
    """Group visits by normalized domain and compute frequency and recency.

    Records with an empty domain, a non-positive count or no timestamp are
    ignored. Naive timestamps are taken to be UTC, and future timestamps are
    treated as "now".
    """
    now = as_utc(now)
    grouped: Dict[str, List[DomainVisit]] = {}
    for visit in visits:
        if not isinstance(visit.domain, str) or not isinstance(visit.timestamp, datetime):
            continue
        if not isinstance(visit.visit_count, int) or visit.visit_count <= 0:
            continue
        domain = normalize_domain(visit.domain)
        if not domain:
            continue
        grouped.setdefault(domain, []).append(replace(visit, timestamp=as_utc(visit.timestamp)))

    recent_cutoff = now - RECENT_WINDOW
    activities: List[DomainActivity] = []
    for domain, domain_visits in grouped.items():
        first_visit = min(visit.timestamp for visit in domain_visits)
        last_visit = max(visit.timestamp for visit in domain_visits)
        total_visits = sum(visit.visit_count for visit in domain_visits)
        if total_visits < min_visits:
            continue
        recent_visits = sum(visit.visit_count for visit in domain_visits if visit.timestamp >= recent_cutoff)

        days_since_first = max(1.0, _days_between(first_visit, now))
        days_since_last = max(0.0, _days_between(last_visit, now))
        activities.append(
            DomainActivity(
                domain=domain,
                total_visits=total_visits,
                recent_visits=recent_visits,
                first_visit=first_visit,
                last_visit=last_visit,
                frequency=total_visits / days_since_first,
                recency_score=max(0.0, 1 - days_since_last / RECENCY_DECAY_DAYS),
            )
        )
    return activities


def domain_score(activity: DomainActivity, confidence: float) -> float:
    return (
        FREQUENCY_WEIGHT * math.log(1 + activity.frequency) + RECENCY_WEIGHT * activity.recency_score
    ) * confidence


def score_topics(
    activities: Sequence[DomainActivity],
    classifications: Sequence[ClassificationResult],
    taxonomy: TopicTaxonomy,
) -> List[TopicScore]:
    """Accumulate per-topic scores, splitting each domain's score evenly over its topics."""
    by_domain = {activity.domain: activity for activity in activities}
    scores: Dict[int, TopicScore] = {}

    for classification in classifications:
        activity = by_domain.get(classification.domain)
        if activity is None or not classification.topic_ids:
            continue
        share = domain_score(activity, classification.confidence) / len(classification.topic_ids)
        for topic_id in classification.topic_ids:
            topic = taxonomy.get_by_id(topic_id)
            if topic is None:
                continue
            entry = scores.get(topic_id)
            if entry is None:
                entry = scores[topic_id] = TopicScore(topic_id=topic_id, topic_name=topic.name)
            entry.score += share
            entry.confidence = max(entry.confidence, classification.confidence)
            entry.contributing_domains.add(classification.domain)
            entry.visit_count += activity.total_visits

    return sorted(scores.values(), key=lambda entry: entry.score, reverse=True)


class CohortAssignmentEngine:
    """Owns one device's current cohort set.

    Not safe for overlapping calls: ``assign_cohorts`` and
    ``update_weekly_cohorts`` both replace the current set, so callers
    serialize access per device.
    """

    def __init__(
        self,
        classifier: DomainClassifier,
        taxonomy: Optional[TopicTaxonomy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.classifier = classifier
        self.taxonomy = taxonomy or classifier.taxonomy
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._current: List[CohortAssignment] = []
        self._last_weekly_update: Optional[datetime] = None

    def assign_cohorts(self, visits: Sequence[DomainVisit]) -> List[CohortAssignment]:
        now = as_utc(self._clock())
        activities = analyze_visits(visits, now)
        classifications = self.classifier.classify_batch([activity.domain for activity in activities])
        topic_scores = score_topics(activities, classifications, self.taxonomy)
        allowed = [entry for entry in topic_scores if not self.taxonomy.is_sensitive(entry.topic_id)]

        expiry = now + RETENTION
        assignments = [
            CohortAssignment(
                topic_id=entry.topic_id,
                topic_name=entry.topic_name,
                confidence=entry.confidence,
                assigned_date=now,
                expiry_date=expiry,
            )
            for entry in allowed[:MAX_COHORTS]
        ]
        self._current = assignments
        logger.info(
            "Assigned %d cohorts from %d domains (%d sensitive topics filtered)",
            len(assignments),
            len(activities),
            len(topic_scores) - len(allowed),
        )
        return list(assignments)

    def update_weekly_cohorts(self) -> bool:
        """Expire cohorts older than the retention period and renew the rest.

        Runs at most once per ``WEEKLY_COOLDOWN``; returns whether it ran.
        """
        now = as_utc(self._clock())
        if self._last_weekly_update is not None and now - self._last_weekly_update < WEEKLY_COOLDOWN:
            return False

        cutoff = now - RETENTION
        survivors = [
            replace(cohort, expiry_date=cohort.assigned_date + RETENTION)
            for cohort in self._current
            if cohort.assigned_date >= cutoff
        ]
        logger.info("Weekly cohort maintenance kept %d of %d cohorts", len(survivors), len(self._current))
        self._current = survivors
        self._last_weekly_update = now
        return True

    def get_current_cohorts(self) -> List[CohortAssignment]:
        return list(self._current)

    def get_cohorts_for_sharing(self) -> List[CohortAssignment]:
        """Most recently assigned cohorts first, capped at ``SHARED_COHORTS``."""
        newest_first = sorted(self._current, key=lambda cohort: cohort.assigned_date, reverse=True)
        return newest_first[:SHARED_COHORTS]

    def get_cohort_taxonomy(self) -> TopicTaxonomy:
        return self.taxonomy

    def clear_cohorts(self) -> None:
        self._current = []
        self._last_weekly_update = None


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / _SECONDS_PER_DAY
