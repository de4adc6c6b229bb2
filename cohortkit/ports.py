"""Port definitions for the collaborators the core depends on."""

from typing import Any, Mapping, Protocol, Sequence

from .models import MetricsEvent, TimeRange


class TaxonomyDataSource(Protocol):
    """Supplies the raw topic catalog once at startup."""

    def load_raw_taxonomy(self) -> Mapping[str, Any]:
        """Return a document with a ``version`` string and a ``topics`` list."""


class EventStore(Protocol):
    """Append-only event log that metrics adapters implement for any backend."""

    def store_event(self, event: MetricsEvent) -> None:
        """Persist a validated, timestamped event."""

    def get_events(
        self,
        cohort_ids: Sequence[str],
        time_range: TimeRange,
    ) -> Sequence[MetricsEvent]:
        """Return events in the range; an empty ``cohort_ids`` means every cohort."""

    def cleanup_expired_events(self) -> int:
        """Drop events past the retention horizon and return how many were removed."""

    def get_event_count(
        self,
        cohort_id: str,
        event_type: str,
        time_range: TimeRange,
    ) -> int:
        """Return the number of events of one type for a cohort."""
