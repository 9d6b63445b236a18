"""
Rule-based risk scorer.

Deterministic classifier for a single reading. It is the authoritative
fallback whenever the AI-backed analysis is unavailable, so it must never
raise for a well-formed reading and must always produce a usable result.

Rules run in a fixed order (heart rate, blood pressure, oxygen, temperature).
Each rule may add one anomaly and may raise the running risk level; the level
is the maximum severity seen and is never lowered.
"""

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from vitalwatch.domain.models import HealthAnalysis, RiskLevel, SubjectProfile, VitalReading
from vitalwatch.domain.thresholds import (
    BLOOD_PRESSURE_ELEVATED,
    BLOOD_PRESSURE_OPTIMAL,
    HEART_RATE_ELEVATED,
    HEART_RATE_NORMAL,
    OXYGEN_LOW_MIN,
    OXYGEN_NORMAL_MIN,
    TEMPERATURE_NORMAL,
    TEMPERATURE_SEVERE,
)

logger = structlog.get_logger(__name__)

RULE_BASED_CONFIDENCE = 0.85

NORMAL_RECOMMENDATION = (
    "All vital signs are within normal ranges. Continue maintaining healthy lifestyle habits."
)
ABNORMAL_RECOMMENDATIONS = (
    "Monitor your vital signs closely and consult with your healthcare provider.",
    "Ensure adequate rest, hydration, and follow prescribed medications.",
)

NORMAL_SUMMARY = "Your vital signs are within normal ranges indicating good health status."


@dataclass(frozen=True)
class RuleFinding:
    """One violated rule: the anomaly text and the severity it implies."""

    message: str
    severity: RiskLevel


def _fmt(value: float) -> str:
    # 104.0 -> "104", 99.123456 -> "99.123456"
    return f"{value:.15g}"


def check_heart_rate(reading: VitalReading) -> RuleFinding | None:
    hr = reading.heart_rate
    if HEART_RATE_NORMAL.contains(hr):
        return None
    severity = RiskLevel.MEDIUM if HEART_RATE_ELEVATED.contains(hr) else RiskLevel.HIGH
    return RuleFinding(
        f"Heart rate {_fmt(hr)} BPM is outside normal range (60-100 BPM)", severity
    )


def check_blood_pressure(reading: VitalReading) -> RuleFinding | None:
    systolic = reading.blood_pressure_systolic
    diastolic = reading.blood_pressure_diastolic
    if BLOOD_PRESSURE_OPTIMAL.admits(systolic, diastolic):
        return None
    if BLOOD_PRESSURE_ELEVATED.admits(systolic, diastolic):
        severity = RiskLevel.MEDIUM
    else:
        severity = RiskLevel.HIGH
    return RuleFinding(
        f"Blood pressure {_fmt(systolic)}/{_fmt(diastolic)} indicates hypertension", severity
    )


def check_oxygen_saturation(reading: VitalReading) -> RuleFinding | None:
    spo2 = reading.oxygen_saturation
    if spo2 >= OXYGEN_NORMAL_MIN:
        return None
    severity = RiskLevel.HIGH if spo2 >= OXYGEN_LOW_MIN else RiskLevel.CRITICAL
    return RuleFinding(f"Oxygen saturation {_fmt(spo2)}% is below normal (95-100%)", severity)


def check_body_temperature(reading: VitalReading) -> RuleFinding | None:
    temp = reading.body_temperature
    if TEMPERATURE_NORMAL.contains(temp):
        return None
    severity = RiskLevel.MEDIUM if TEMPERATURE_SEVERE.contains(temp) else RiskLevel.HIGH
    return RuleFinding(
        f"Body temperature {_fmt(temp)}°F indicates fever or hypothermia", severity
    )


# Evaluation order is part of the output contract (anomaly ordering)
RULES: tuple[Callable[[VitalReading], RuleFinding | None], ...] = (
    check_heart_rate,
    check_blood_pressure,
    check_oxygen_saturation,
    check_body_temperature,
)


def evaluate_rules(reading: VitalReading) -> list[RuleFinding]:
    """Run every rule in order and return the violations."""
    findings = []
    for rule in RULES:
        finding = rule(reading)
        if finding is not None:
            findings.append(finding)
    return findings


def assess_risk(reading: VitalReading, profile: SubjectProfile | None = None) -> HealthAnalysis:
    """
    Classify a reading into a risk level with anomalies and recommendations.

    The profile is accepted for interface parity with the AI path but does not
    change any threshold.
    """
    risk_level = RiskLevel.LOW
    anomalies: list[str] = []

    for finding in evaluate_rules(reading):
        anomalies.append(finding.message)
        risk_level = max(risk_level, finding.severity)

    if anomalies:
        recommendations = list(ABNORMAL_RECOMMENDATIONS)
        summary = (
            f"Analysis shows {len(anomalies)} parameter(s) outside normal ranges "
            "that require attention."
        )
    else:
        recommendations = [NORMAL_RECOMMENDATION]
        summary = NORMAL_SUMMARY

    logger.debug(
        "rule_based_assessment",
        risk_level=risk_level.value,
        anomalies_count=len(anomalies),
    )

    return HealthAnalysis(
        risk_level=risk_level,
        anomalies=anomalies,
        recommendations=recommendations,
        confidence=RULE_BASED_CONFIDENCE,
        summary_text=summary,
        source="rule_based",
    )
