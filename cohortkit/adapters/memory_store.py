"""In-memory event store partitioned by UTC day."""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..models import MetricsEvent, TimeRange, as_utc


class InMemoryEventStore:
    """Keeps events in per-day buckets so retention cleanup drops whole days.

    Naive timestamps, on events and on query ranges, are taken to be UTC.
    """

    def __init__(self, retention_days: int = 30, clock: Optional[Callable[[], datetime]] = None):
        self.retention_days = retention_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._partitions: Dict[date, List[MetricsEvent]] = {}

    def store_event(self, event: MetricsEvent) -> None:
        if event.timestamp is None:
            raise ValueError("Stored events must carry a timestamp")
        event = replace(event, timestamp=as_utc(event.timestamp))
        self._partitions.setdefault(event.timestamp.date(), []).append(event)

    def get_events(self, cohort_ids: Sequence[str], time_range: TimeRange) -> List[MetricsEvent]:
        wanted = set(cohort_ids)
        window = TimeRange(as_utc(time_range.start_date), as_utc(time_range.end_date))
        first_day = window.start_date.date()
        last_day = window.end_date.date()
        events: List[MetricsEvent] = []
        for day in sorted(self._partitions):
            if day < first_day or day > last_day:
                continue
            for event in self._partitions[day]:
                if wanted and event.cohort_id not in wanted:
                    continue
                if window.contains(event.timestamp):
                    events.append(event)
        return events

    def cleanup_expired_events(self) -> int:
        cutoff = as_utc(self._clock() - timedelta(days=self.retention_days)).date()
        expired = [day for day in self._partitions if day < cutoff]
        removed = 0
        for day in expired:
            removed += len(self._partitions.pop(day))
        return removed

    def get_event_count(self, cohort_id: str, event_type: str, time_range: TimeRange) -> int:
        return sum(1 for event in self.get_events([cohort_id], time_range) if event.event_type == event_type)

    def __len__(self) -> int:
        return sum(len(events) for events in self._partitions.values())
