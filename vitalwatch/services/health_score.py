"""
Health score aggregator.

A single 0-100 wellness number for compact display. It is computed
independently of the risk scorer and uses its own banding, so a reading can
show a medium risk level next to a score of 93.
"""

from vitalwatch.domain.models import VitalReading
from vitalwatch.domain.thresholds import (
    BLOOD_PRESSURE_ELEVATED,
    BLOOD_PRESSURE_OPTIMAL,
    HEART_RATE_ELEVATED,
    HEART_RATE_NORMAL,
    OXYGEN_LOW_MIN,
    OXYGEN_NORMAL_MIN,
    SCORE_FAIR,
    SCORE_OPTIMAL,
    SCORE_POOR,
    SCORE_TEMPERATURE_OFF,
    SCORE_TEMPERATURE_OPTIMAL,
    SCORE_WEIGHTS,
)


def heart_rate_subscore(heart_rate: float) -> int:
    if HEART_RATE_NORMAL.contains(heart_rate):
        return SCORE_OPTIMAL
    if HEART_RATE_ELEVATED.contains(heart_rate):
        return SCORE_FAIR
    return SCORE_POOR


def blood_pressure_subscore(systolic: float, diastolic: float) -> int:
    if BLOOD_PRESSURE_OPTIMAL.admits(systolic, diastolic):
        return SCORE_OPTIMAL
    if BLOOD_PRESSURE_ELEVATED.admits(systolic, diastolic):
        return SCORE_FAIR
    return SCORE_POOR


def oxygen_subscore(oxygen_saturation: float) -> int:
    if oxygen_saturation >= OXYGEN_NORMAL_MIN:
        return SCORE_OPTIMAL
    if oxygen_saturation >= OXYGEN_LOW_MIN:
        return SCORE_FAIR
    return SCORE_POOR


def temperature_subscore(body_temperature: float) -> int:
    # Only two bands here, unlike the risk scorer
    if SCORE_TEMPERATURE_OPTIMAL.contains(body_temperature):
        return SCORE_OPTIMAL
    return SCORE_TEMPERATURE_OFF


def compute_health_score(reading: VitalReading) -> int:
    """Weighted sum of the four sub-scores, rounded half up, in [0, 100]."""
    subscores = {
        "heart_rate": heart_rate_subscore(reading.heart_rate),
        "blood_pressure": blood_pressure_subscore(
            reading.blood_pressure_systolic, reading.blood_pressure_diastolic
        ),
        "oxygen": oxygen_subscore(reading.oxygen_saturation),
        "temperature": temperature_subscore(reading.body_temperature),
    }

    # Weights are percentages, so the weighted sum is 100x the score
    weighted = sum(subscores[name] * weight for name, weight in SCORE_WEIGHTS.items())
    return (weighted + 50) // 100
