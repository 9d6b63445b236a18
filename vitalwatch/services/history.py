"""
Assessment history keyed by subject and reading time.

Only append and read are supported; stored assessments are never edited.
"""

from bisect import insort
from collections import defaultdict
from datetime import datetime
from typing import Protocol

import structlog

from vitalwatch.domain.models import AssessmentRecord, as_utc

logger = structlog.get_logger(__name__)


class HistoryStore(Protocol):
    """Persistence boundary for readings and their analyses."""

    async def append(self, record: AssessmentRecord) -> None: ...

    async def list_records(
        self,
        subject_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AssessmentRecord]: ...

    async def latest(self, subject_id: str) -> AssessmentRecord | None: ...


class InMemoryHistoryStore:
    """
    Process-local history store.

    Records for each subject are kept ordered by reading timestamp (oldest
    first). Past `max_records_per_subject`, the oldest readings are dropped.
    """

    def __init__(self, max_records_per_subject: int = 1000) -> None:
        if max_records_per_subject <= 0:
            raise ValueError("max_records_per_subject must be positive")
        self.max_records_per_subject = max_records_per_subject
        self.logger = logger.bind(component="history_store")
        self._records: defaultdict[str, list[AssessmentRecord]] = defaultdict(list)

    async def append(self, record: AssessmentRecord) -> None:
        records = self._records[record.subject_id]
        insort(records, record, key=lambda r: r.reading.timestamp)

        overflow = len(records) - self.max_records_per_subject
        if overflow > 0:
            del records[:overflow]
            self.logger.debug(
                "history_trimmed", subject_id=record.subject_id, dropped=overflow
            )

    async def list_records(
        self,
        subject_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AssessmentRecord]:
        """Records in [since, until], oldest first; `limit` keeps the newest ones."""
        since = as_utc(since) if since is not None else None
        until = as_utc(until) if until is not None else None
        records = [
            r
            for r in self._records.get(subject_id, [])
            if (since is None or r.reading.timestamp >= since)
            and (until is None or r.reading.timestamp <= until)
        ]
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    async def latest(self, subject_id: str) -> AssessmentRecord | None:
        records = self._records.get(subject_id)
        return records[-1] if records else None

    def subject_ids(self) -> list[str]:
        return sorted(self._records)
