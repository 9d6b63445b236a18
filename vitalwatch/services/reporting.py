"""
Periodic health reports over a series of readings.

Aggregate metrics and trends are computed locally. The narrative report is
requested from the AI provider and falls back to a summary assembled from the
rule-based scorer when the provider is unavailable or returns garbage.
"""

import asyncio
from statistics import fmean
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from vitalwatch.config import AppConfig
from vitalwatch.domain.models import AnalysisSource, RiskLevel, SubjectProfile, VitalReading
from vitalwatch.services.ai_analysis import (
    AIAnalysisConfig,
    GeminiAgent,
    coerce_string_list,
    extract_json_object,
)
from vitalwatch.services.risk_scorer import (
    ABNORMAL_RECOMMENDATIONS,
    NORMAL_RECOMMENDATION,
    assess_risk,
)

logger = structlog.get_logger(__name__)

ReportType = Literal["weekly", "monthly", "custom"]
TrendDirection = Literal["up", "down", "stable"]

# Relative change (percent) below which a metric counts as stable
TREND_STABLE_PERCENT = 2.0
TREND_WINDOW = 3
PROMPT_READING_LIMIT = 10

_TREND_METRICS = (
    "heart_rate",
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
    "oxygen_saturation",
    "body_temperature",
)


class HealthMetrics(BaseModel):
    average_heart_rate: float
    average_blood_pressure: str
    average_oxygen_saturation: float
    average_temperature: float
    total_steps: int
    average_sleep_hours: float


class HealthTrend(BaseModel):
    metric: str
    trend: TrendDirection
    percentage: float = Field(ge=0.0)
    period: str


class HealthReportSummary(BaseModel):
    summary: str
    recommendations: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    source: AnalysisSource = "rule_based"


def summarize_metrics(readings: list[VitalReading]) -> HealthMetrics:
    """Average the vitals over a series of readings."""
    if not readings:
        raise ValueError("at least one reading is required")

    sleep = [r.sleep_hours for r in readings if r.sleep_hours is not None]
    systolic = round(fmean(r.blood_pressure_systolic for r in readings))
    diastolic = round(fmean(r.blood_pressure_diastolic for r in readings))

    return HealthMetrics(
        average_heart_rate=round(fmean(r.heart_rate for r in readings), 1),
        average_blood_pressure=f"{systolic}/{diastolic}",
        average_oxygen_saturation=round(fmean(r.oxygen_saturation for r in readings), 1),
        average_temperature=round(fmean(r.body_temperature for r in readings), 1),
        total_steps=sum(r.steps or 0 for r in readings),
        average_sleep_hours=round(fmean(sleep), 1) if sleep else 0.0,
    )


def compute_trends(readings: list[VitalReading], period: str = "7d") -> list[HealthTrend]:
    """
    Compare the latest readings with the earliest ones, per metric.

    Needs at least TREND_WINDOW readings; returns an empty list otherwise.
    """
    if len(readings) < TREND_WINDOW:
        return []

    ordered = sorted(readings, key=lambda r: r.timestamp)
    trends = []
    for metric in _TREND_METRICS:
        earlier = fmean(getattr(r, metric) for r in ordered[:TREND_WINDOW])
        recent = fmean(getattr(r, metric) for r in ordered[-TREND_WINDOW:])
        change = (recent - earlier) / earlier * 100 if earlier else 0.0

        direction: TrendDirection
        if change > TREND_STABLE_PERCENT:
            direction = "up"
        elif change < -TREND_STABLE_PERCENT:
            direction = "down"
        else:
            direction = "stable"

        trends.append(
            HealthTrend(
                metric=metric, trend=direction, percentage=round(abs(change), 1), period=period
            )
        )
    return trends


def build_report_prompt(
    readings: list[VitalReading],
    subject_name: str,
    profile: SubjectProfile,
    report_type: ReportType,
) -> str:
    lines = []
    for i, r in enumerate(readings[:PROMPT_READING_LIMIT], 1):
        lines.append(
            f"Reading {i} ({r.timestamp.date().isoformat()}):\n"
            f"- Heart Rate: {r.heart_rate} BPM\n"
            f"- Blood Pressure: {r.blood_pressure} mmHg\n"
            f"- Oxygen Saturation: {r.oxygen_saturation}%\n"
            f"- Body Temperature: {r.body_temperature}°F"
        )
    history = f"\nMedical History: {profile.medical_history}\n" if profile.medical_history else ""

    return f"""Generate a comprehensive {report_type} health report for {subject_name}, \
a {profile.age}-year-old {profile.gender.value}.

Vital Signs Data ({len(readings)} readings):
{chr(10).join(lines)}
{history}
Please provide:
1. Executive summary of health status
2. Specific recommendations for improvement
3. Identified risk factors
4. Areas of improvement or positive trends

Respond in JSON format with keys: summary, recommendations (array), riskFactors (array), \
improvements (array)."""


def build_fallback_report(
    readings: list[VitalReading], subject_name: str, report_type: ReportType
) -> HealthReportSummary:
    """Deterministic report assembled from the rule-based scorer."""
    analyses = [assess_risk(r) for r in readings]
    highest = max((a.risk_level for a in analyses), default=RiskLevel.LOW)

    risk_factors: list[str] = []
    for analysis in analyses:
        for anomaly in analysis.anomalies:
            if anomaly not in risk_factors:
                risk_factors.append(anomaly)

    normal_count = sum(1 for a in analyses if not a.anomalies)
    improvements = []
    if normal_count:
        improvements.append(
            f"{normal_count} of {len(readings)} readings were within normal ranges."
        )

    metrics = summarize_metrics(readings)
    summary = (
        f"{report_type.capitalize()} report for {subject_name}: {len(readings)} readings "
        f"analysed, highest risk level {highest.value}. Average heart rate "
        f"{metrics.average_heart_rate} BPM, average blood pressure "
        f"{metrics.average_blood_pressure} mmHg."
    )

    return HealthReportSummary(
        summary=summary,
        recommendations=list(ABNORMAL_RECOMMENDATIONS) if risk_factors else [NORMAL_RECOMMENDATION],
        risk_factors=risk_factors,
        improvements=improvements,
        source="rule_based",
    )


REPORT_SYSTEM_PROMPT = """You write concise, patient-friendly health reports from wearable data.
You never diagnose. Always answer with a single JSON object."""


class HealthReportService:
    """Generates periodic reports, AI-written when possible."""

    def __init__(self, api_key: str | None, config: AIAnalysisConfig | None = None) -> None:
        self.config = config or AIAnalysisConfig()
        self.agent = (
            GeminiAgent(api_key, self.config, REPORT_SYSTEM_PROMPT) if api_key is not None else None
        )
        self.logger = logger.bind(component="health_report_service")

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "HealthReportService":
        return cls(config.ai_provider.gemini_api_key, AIAnalysisConfig.from_app_config(config))

    async def generate_report(
        self,
        readings: list[VitalReading],
        subject_name: str,
        profile: SubjectProfile,
        report_type: ReportType = "weekly",
    ) -> HealthReportSummary:
        if not readings:
            raise ValueError("at least one reading is required")

        if self.agent is None:
            self.logger.info("report_ai_unavailable", reason="missing_credentials")
            return build_fallback_report(readings, subject_name, report_type)

        prompt = build_report_prompt(readings, subject_name, profile, report_type)
        try:
            text = await asyncio.wait_for(
                self.agent.run(prompt), timeout=self.config.timeout_seconds
            )
        except TimeoutError:
            self.logger.error("report_timeout", timeout_seconds=self.config.timeout_seconds)
            return build_fallback_report(readings, subject_name, report_type)
        except Exception as e:
            self.logger.error("report_generation_failed", error=str(e))
            return build_fallback_report(readings, subject_name, report_type)

        extracted = extract_json_object(text)
        if extracted.is_err():
            self.logger.error("report_unparseable", error=str(extracted.unwrap_err()))
            return build_fallback_report(readings, subject_name, report_type)

        data = extracted.unwrap()
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = "Health report generated successfully"

        self.logger.info("report_generated", report_type=report_type, readings=len(readings))
        return HealthReportSummary(
            summary=summary,
            recommendations=coerce_string_list(data.get("recommendations")),
            risk_factors=coerce_string_list(data.get("riskFactors")),
            improvements=coerce_string_list(data.get("improvements")),
            source="ai",
        )
