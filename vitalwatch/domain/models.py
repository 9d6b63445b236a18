"""
Domain models for vital-sign monitoring.

These models represent the core clinical concepts and are framework-agnostic.
They use Pydantic for validation and for the JSON wire format.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

AnalysisSource = Literal["rule_based", "ai"]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are returned unchanged."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class RiskLevel(str, Enum):
    """Clinical triage severity, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class VitalReading(BaseModel):
    """One timestamped snapshot of a subject's physiological measurements."""

    model_config = ConfigDict(frozen=True)  # Immutable once taken

    heart_rate: int = Field(description="Beats per minute")
    blood_pressure_systolic: int = Field(description="mmHg")
    blood_pressure_diastolic: int = Field(description="mmHg")
    oxygen_saturation: int = Field(description="SpO2 percent")
    body_temperature: float = Field(description="Degrees Fahrenheit")

    steps: int | None = None
    sleep_hours: float | None = None
    ecg_trace_ref: str | None = None

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the reading was taken, not when it was stored",
    )

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def blood_pressure(self) -> str:
        return f"{self.blood_pressure_systolic}/{self.blood_pressure_diastolic}"

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys and an ISO-8601 timestamp."""
        payload: dict[str, Any] = {
            "heartRate": self.heart_rate,
            "bloodPressureSystolic": self.blood_pressure_systolic,
            "bloodPressureDiastolic": self.blood_pressure_diastolic,
            "oxygenSaturation": self.oxygen_saturation,
            "bodyTemperature": self.body_temperature,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.steps is not None:
            payload["steps"] = self.steps
        if self.sleep_hours is not None:
            payload["sleepHours"] = self.sleep_hours
        if self.ecg_trace_ref is not None:
            payload["ecgData"] = self.ecg_trace_ref
        return payload


class SubjectProfile(BaseModel):
    """Patient context passed to the analysis provider."""

    model_config = ConfigDict(frozen=True)

    age: int = Field(ge=0, le=150)
    gender: Gender
    medical_history: str | None = None


class HealthAnalysis(BaseModel):
    """Risk assessment for a single reading. Append-only, never edited."""

    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel = Field(serialization_alias="riskLevel")
    anomalies: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    summary_text: str = Field(serialization_alias="analysis")

    # Which path produced the analysis; not part of the wire format
    source: AnalysisSource = "rule_based"

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={"risk_level", "summary_text", "recommendations", "anomalies", "confidence"},
        )


class AssessmentRecord(BaseModel):
    """A reading together with everything derived from it, as stored in history."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    reading: VitalReading
    analysis: HealthAnalysis
    health_score: int = Field(ge=0, le=100)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
