"""Tests for the in-memory assessment history."""

from datetime import UTC, datetime, timedelta

import pytest

from vitalwatch.domain.models import AssessmentRecord, VitalReading
from vitalwatch.services.health_score import compute_health_score
from vitalwatch.services.history import InMemoryHistoryStore
from vitalwatch.services.risk_scorer import assess_risk

BASE_TIME = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)


def make_record(
    subject_id: str = "patient-1", hours: int = 0, heart_rate: int = 72
) -> AssessmentRecord:
    reading = VitalReading(
        heart_rate=heart_rate,
        blood_pressure_systolic=118,
        blood_pressure_diastolic=76,
        oxygen_saturation=98,
        body_temperature=98.2,
        timestamp=BASE_TIME + timedelta(hours=hours),
    )
    return AssessmentRecord(
        subject_id=subject_id,
        reading=reading,
        analysis=assess_risk(reading),
        health_score=compute_health_score(reading),
    )


@pytest.fixture
def store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore(max_records_per_subject=5)


@pytest.mark.asyncio
async def test_records_are_ordered_by_reading_time(store: InMemoryHistoryStore) -> None:
    for hours in (2, 0, 1):
        await store.append(make_record(hours=hours))

    records = await store.list_records("patient-1")

    assert [r.reading.timestamp.hour for r in records] == [8, 9, 10]


@pytest.mark.asyncio
async def test_since_and_until_are_inclusive(store: InMemoryHistoryStore) -> None:
    for hours in range(4):
        await store.append(make_record(hours=hours))

    records = await store.list_records(
        "patient-1",
        since=BASE_TIME + timedelta(hours=1),
        until=BASE_TIME + timedelta(hours=2),
    )

    assert [r.reading.timestamp.hour for r in records] == [9, 10]


@pytest.mark.asyncio
async def test_limit_keeps_newest(store: InMemoryHistoryStore) -> None:
    for hours in range(4):
        await store.append(make_record(hours=hours))

    assert [r.reading.timestamp.hour for r in await store.list_records("patient-1", limit=2)] == [
        10,
        11,
    ]
    assert await store.list_records("patient-1", limit=0) == []


@pytest.mark.asyncio
async def test_oldest_records_are_dropped_past_capacity(store: InMemoryHistoryStore) -> None:
    for hours in range(7):
        await store.append(make_record(hours=hours))

    records = await store.list_records("patient-1")

    assert len(records) == 5
    assert records[0].reading.timestamp == BASE_TIME + timedelta(hours=2)


@pytest.mark.asyncio
async def test_subjects_are_kept_apart(store: InMemoryHistoryStore) -> None:
    await store.append(make_record("patient-1", heart_rate=72))
    await store.append(make_record("patient-2", heart_rate=130))

    latest = await store.latest("patient-2")

    assert latest is not None and latest.reading.heart_rate == 130
    assert len(await store.list_records("patient-1")) == 1
    assert store.subject_ids() == ["patient-1", "patient-2"]


@pytest.mark.asyncio
async def test_unknown_subject_is_empty(store: InMemoryHistoryStore) -> None:
    assert await store.list_records("nobody") == []
    assert await store.latest("nobody") is None
    assert store.subject_ids() == []


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InMemoryHistoryStore(max_records_per_subject=0)


@pytest.mark.asyncio
async def test_naive_and_aware_readings_share_one_timeline(store: InMemoryHistoryStore) -> None:
    aware = make_record(hours=2)
    naive_reading = VitalReading(
        heart_rate=80,
        blood_pressure_systolic=118,
        blood_pressure_diastolic=76,
        oxygen_saturation=98,
        body_temperature=98.2,
        timestamp=datetime(2024, 5, 1, 9, 0),
    )
    naive = make_record().model_copy(update={"reading": naive_reading})

    await store.append(aware)
    await store.append(naive)

    records = await store.list_records("patient-1", since=datetime(2024, 5, 1, 8, 30))
    assert [r.reading.heart_rate for r in records] == [80, 72]
    assert naive_reading.timestamp == BASE_TIME + timedelta(hours=1)
