"""
Request validation in front of the scoring core.

Readings that leave the plausible envelope are rejected here with a
pydantic ValidationError, so the scorer only ever sees well-formed input.
Payloads use the camelCase JSON keys of the wire format and also accept
the snake_case field names.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vitalwatch.domain.models import Gender, SubjectProfile, VitalReading, as_utc
from vitalwatch.domain.thresholds import (
    PLAUSIBLE_DIASTOLIC,
    PLAUSIBLE_HEART_RATE,
    PLAUSIBLE_OXYGEN,
    PLAUSIBLE_SYSTOLIC,
    PLAUSIBLE_TEMPERATURE,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False, extra="ignore")


class VitalSignsPayload(_WireModel):
    """Incoming vital signs, checked against the plausible envelope."""

    heart_rate: int = Field(
        alias="heartRate", ge=PLAUSIBLE_HEART_RATE.low, le=PLAUSIBLE_HEART_RATE.high
    )
    blood_pressure_systolic: int = Field(
        alias="bloodPressureSystolic", ge=PLAUSIBLE_SYSTOLIC.low, le=PLAUSIBLE_SYSTOLIC.high
    )
    blood_pressure_diastolic: int = Field(
        alias="bloodPressureDiastolic", ge=PLAUSIBLE_DIASTOLIC.low, le=PLAUSIBLE_DIASTOLIC.high
    )
    oxygen_saturation: int = Field(
        alias="oxygenSaturation", ge=PLAUSIBLE_OXYGEN.low, le=PLAUSIBLE_OXYGEN.high
    )
    body_temperature: float = Field(
        alias="bodyTemperature", ge=PLAUSIBLE_TEMPERATURE.low, le=PLAUSIBLE_TEMPERATURE.high
    )
    timestamp: datetime

    steps: int | None = Field(default=None, ge=0)
    sleep_hours: float | None = Field(default=None, alias="sleepHours", ge=0.0, le=24.0)
    ecg_trace_ref: str | None = Field(default=None, alias="ecgData")

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def to_reading(self) -> VitalReading:
        return VitalReading(**self.model_dump())


class UserProfilePayload(_WireModel):
    age: int = Field(ge=0, le=150)
    gender: Gender
    medical_history: str | None = Field(default=None, alias="medicalHistory")

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    def to_profile(self) -> SubjectProfile:
        return SubjectProfile(**self.model_dump())


class HealthAnalysisRequest(_WireModel):
    vitals: VitalSignsPayload
    user_profile: UserProfilePayload = Field(alias="userProfile")


class ChatRequest(_WireModel):
    message: str = Field(min_length=1)
    health_context: VitalSignsPayload | None = Field(default=None, alias="healthContext")
    user_profile: UserProfilePayload | None = Field(default=None, alias="userProfile")


def parse_analysis_request(data: dict[str, Any]) -> tuple[VitalReading, SubjectProfile]:
    """Validate an analysis request body. Raises pydantic.ValidationError."""
    request = HealthAnalysisRequest.model_validate(data)
    return request.vitals.to_reading(), request.user_profile.to_profile()


def parse_chat_request(
    data: dict[str, Any],
) -> tuple[str, VitalReading | None, SubjectProfile | None]:
    """Validate a chat request body. Raises pydantic.ValidationError."""
    request = ChatRequest.model_validate(data)
    reading = request.health_context.to_reading() if request.health_context else None
    profile = request.user_profile.to_profile() if request.user_profile else None
    return request.message, reading, profile
