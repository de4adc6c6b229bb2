from datetime import datetime, timedelta, timezone

import pytest

from cohortkit.adapters import InMemoryEventStore, SQLAlchemyEventStore
from cohortkit.config import Settings
from cohortkit.errors import ConfigurationError
from cohortkit.models import DomainVisit, MetricsEvent, TimeRange
from cohortkit.system import CohortSystem

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ZeroNoise:
    def random(self):
        return 0.5


def test_settings_defaults_and_overrides():
    assert Settings.from_env({}) == Settings()

    settings = Settings.from_env(
        {
            "COHORTKIT_EPSILON": "0.5",
            "COHORTKIT_MIN_DATA_POINTS": "20",
            "COHORTKIT_DATABASE_URL": "sqlite://",
            "COHORTKIT_LOG_LEVEL": "debug",
        }
    )

    assert settings.epsilon == 0.5
    assert settings.privacy_params().epsilon == 0.5
    assert settings.aggregation_config().min_data_points == 20
    assert settings.database_url == "sqlite://"
    assert settings.log_level == "DEBUG"


def test_settings_reject_invalid_values():
    for environ in (
        {"COHORTKIT_EPSILON": "lots"},
        {"COHORTKIT_EPSILON": "0"},
        {"COHORTKIT_MIN_COHORT_SIZE": "-1"},
        {"COHORTKIT_LOG_LEVEL": "chatty"},
    ):
        with pytest.raises(ConfigurationError):
            Settings.from_env(environ)


def test_system_end_to_end_in_memory():
    system = CohortSystem.from_settings(Settings(), rng=ZeroNoise(), clock=lambda: NOW)
    assert isinstance(system.metrics.store, InMemoryEventStore)

    classification = system.classify_domain("https://www.netflix.com")
    assert classification.source == "manual"

    visits = [
        DomainVisit(domain="netflix.com", timestamp=NOW - timedelta(days=1), visit_count=12),
        DomainVisit(domain="espn.com", timestamp=NOW - timedelta(days=2), visit_count=6),
    ]
    cohorts = system.assign_cohorts(visits)
    assert {cohort.topic_id for cohort in cohorts} == {2, 10, 29}
    assert system.get_current_cohorts() == cohorts
    assert len(system.get_cohorts_for_sharing()) == 3
    assert system.update_weekly_cohorts() is True

    for i in range(120):
        system.record_event(
            MetricsEvent(
                event_id=f"i{i}",
                event_type="impression",
                cohort_id="2",
                domain="ads.example",
                timestamp=NOW - timedelta(minutes=200 - i),
            )
        )
    system.record_event(MetricsEvent(event_id="v1", event_type="conversion", cohort_id="2", domain="shop.example"))

    period = TimeRange(NOW - timedelta(days=1), NOW)
    metrics = system.get_aggregated_metrics(["2"], period)
    assert metrics[0].impressions == 120
    assert metrics[0].privacy_threshold_met is True

    reports = system.generate_attribution_reports(period)
    assert len(reports) == 1
    assert reports[0].source_event.event_id == "i119"


def test_system_from_env_reads_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("COHORTKIT_SUPPRESSION_THRESHOLD", "25")
    monkeypatch.setenv("COHORTKIT_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("COHORTKIT_DATABASE_URL", raising=False)

    system = CohortSystem.from_env()

    assert system.metrics.config.suppression_threshold == 25
    assert len(system.taxonomy) == 51


def test_system_uses_database_when_configured():
    system = CohortSystem.from_settings(Settings(database_url="sqlite://"), rng=ZeroNoise(), clock=lambda: NOW)

    assert isinstance(system.metrics.store, SQLAlchemyEventStore)
    system.record_event(MetricsEvent(event_id="e1", event_type="click", cohort_id="2", domain="ads.example"))
    assert system.metrics.store.get_event_count("2", "click", TimeRange(NOW - timedelta(hours=1), NOW)) == 1
