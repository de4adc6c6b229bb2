"""SQLAlchemy event store adapter."""

import json
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..models import MetricsEvent, TimeRange, as_utc

logger = logging.getLogger(__name__)

# Fixed-width UTC strings compare correctly as text on every backend.
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


class SQLAlchemyEventStore:
    """Persists metrics events in a single ``metrics_events`` table."""

    def __init__(
        self,
        db: Session,
        retention_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.retention_days = retention_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_schema(self) -> None:
        self.db.execute(
            text(
                """
                CREATE TABLE IF NOT EXISTS metrics_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    cohort_id TEXT NOT NULL,
                    domain TEXT NOT NULL,
                    metadata_json TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        self.db.execute(
            text("CREATE INDEX IF NOT EXISTS ix_metrics_events_created_at ON metrics_events (created_at)")
        )
        self.db.commit()

    def store_event(self, event: MetricsEvent) -> None:
        if event.timestamp is None:
            raise ValueError("Stored events must carry a timestamp")
        self.db.execute(
            text(
                """
                INSERT INTO metrics_events (event_id, event_type, cohort_id, domain, metadata_json, created_at)
                VALUES (:event_id, :event_type, :cohort_id, :domain, :metadata_json, :created_at)
                """
            ),
            {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "cohort_id": event.cohort_id,
                "domain": event.domain,
                "metadata_json": json.dumps(dict(event.metadata or {})),
                "created_at": _format_timestamp(event.timestamp),
            },
        )
        self.db.commit()

    def get_events(self, cohort_ids: Sequence[str], time_range: TimeRange) -> Sequence[MetricsEvent]:
        params = {
            "start_date": _format_timestamp(time_range.start_date),
            "end_date": _format_timestamp(time_range.end_date),
        }
        sql = """
            SELECT event_id, event_type, cohort_id, domain, metadata_json, created_at
            FROM metrics_events
            WHERE created_at >= :start_date AND created_at <= :end_date
        """
        if cohort_ids:
            statement = text(sql + " AND cohort_id IN :cohort_ids ORDER BY created_at").bindparams(
                bindparam("cohort_ids", expanding=True)
            )
            params["cohort_ids"] = list(cohort_ids)
        else:
            statement = text(sql + " ORDER BY created_at")

        rows = self.db.execute(statement, params).fetchall()
        return [
            MetricsEvent(
                event_id=row.event_id,
                event_type=row.event_type,
                cohort_id=row.cohort_id,
                domain=row.domain,
                timestamp=_parse_timestamp(row.created_at),
                metadata=_parse_metadata(row.metadata_json),
            )
            for row in rows
        ]

    def cleanup_expired_events(self) -> int:
        cutoff_day = as_utc(self._clock() - timedelta(days=self.retention_days)).date()
        cutoff = datetime.combine(cutoff_day, time.min, tzinfo=timezone.utc)
        result = self.db.execute(
            text("DELETE FROM metrics_events WHERE created_at < :cutoff"),
            {"cutoff": _format_timestamp(cutoff)},
        )
        self.db.commit()
        return result.rowcount or 0

    def get_event_count(self, cohort_id: str, event_type: str, time_range: TimeRange) -> int:
        count = self.db.execute(
            text(
                """
                SELECT COUNT(*) FROM metrics_events
                WHERE cohort_id = :cohort_id
                  AND event_type = :event_type
                  AND created_at >= :start_date
                  AND created_at <= :end_date
                """
            ),
            {
                "cohort_id": cohort_id,
                "event_type": event_type,
                "start_date": _format_timestamp(time_range.start_date),
                "end_date": _format_timestamp(time_range.end_date),
            },
        ).scalar()
        return int(count or 0)


def _format_timestamp(moment: datetime) -> str:
    return as_utc(moment).strftime(_TIMESTAMP_FORMAT)


def _parse_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _parse_metadata(raw_metadata) -> dict:
    if not raw_metadata:
        return {}
    try:
        parsed = json.loads(raw_metadata)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed event metadata (%d chars)", len(raw_metadata))
        return {}
    return parsed if isinstance(parsed, dict) else {}
