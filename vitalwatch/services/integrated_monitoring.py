"""
Integration service that turns incoming readings into stored assessments.

The end-to-end pipeline for one reading:
1. Analyse (AI provider, rule-based scorer as fallback)
2. Compute the health score independently of the risk level
3. Append both to the subject's history
4. Raise alerts for readings at or above the alert threshold
"""

import inspect
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from vitalwatch.config import AppConfig, configure_logging, get_config
from vitalwatch.domain.models import (
    AssessmentRecord,
    HealthAnalysis,
    RiskLevel,
    SubjectProfile,
    VitalReading,
)
from vitalwatch.services.ai_analysis import (
    AIAnalysisConfig,
    VitalsAnalysisService,
    build_provider_from_config,
)
from vitalwatch.services.health_score import compute_health_score
from vitalwatch.services.history import HistoryStore, InMemoryHistoryStore
from vitalwatch.services.vitals_collector import VitalsStream

logger = structlog.get_logger(__name__)

AlertHandler = Callable[["AlertEvent"], None | Awaitable[None]]


@dataclass
class AlertEvent:
    """An abnormal-vitals alert to hand to notification channels."""

    timestamp: datetime
    severity: RiskLevel
    title: str
    description: str
    subject_id: str
    analysis: HealthAnalysis
    reading: VitalReading
    alert_type: str = "abnormal_vitals"


class AlertManager:
    """Manages alert generation and dispatching."""

    def __init__(self, threshold: RiskLevel = RiskLevel.HIGH) -> None:
        self.threshold = threshold
        self.alert_history: deque[AlertEvent] = deque(maxlen=1000)
        self.logger = logger.bind(component="alert_manager")

    def process_assessment(self, record: AssessmentRecord) -> list[AlertEvent]:
        """Convert an assessment at or above the threshold into an alert."""
        analysis = record.analysis
        if analysis.risk_level < self.threshold:
            return []

        alert = AlertEvent(
            timestamp=datetime.now(UTC),
            severity=analysis.risk_level,
            title=f"{analysis.risk_level.value.capitalize()} risk vitals for {record.subject_id}",
            description="; ".join(analysis.anomalies) or analysis.summary_text,
            subject_id=record.subject_id,
            analysis=analysis,
            reading=record.reading,
        )
        self.alert_history.append(alert)

        self.logger.info(
            "alert_generated",
            severity=alert.severity.value,
            subject_id=record.subject_id,
            anomalies=len(analysis.anomalies),
        )
        return [alert]

    async def dispatch_alerts(
        self,
        alerts: list[AlertEvent],
        handlers: list[AlertHandler] | None = None,
    ) -> None:
        """Dispatch alerts to configured handlers (SMS, email, care team inbox, etc.)."""

        if not alerts:
            return

        if not handlers:
            handlers = [self._log_alert_handler]

        for alert in alerts:
            for handler in handlers:
                try:
                    outcome = handler(alert)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    self.logger.error(
                        "alert_dispatch_failed", error=str(e), alert_title=alert.title
                    )

    def _log_alert_handler(self, alert: AlertEvent) -> None:
        """Default handler: record the alert in the structured log."""
        self.logger.warning(
            "vitals_alert",
            severity=alert.severity.value,
            title=alert.title,
            subject_id=alert.subject_id,
            description=alert.description,
            heart_rate=alert.reading.heart_rate,
            blood_pressure=alert.reading.blood_pressure,
            oxygen_saturation=alert.reading.oxygen_saturation,
        )


class VitalsMonitoringService:
    """
    Main service that orchestrates the assessment pipeline.

    Collaborators are injected; anything not passed in is built from the
    application config (a missing API key yields rule-based analysis only).
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        analysis_service: VitalsAnalysisService | None = None,
        history: HistoryStore | None = None,
        alert_handlers: list[AlertHandler] | None = None,
    ) -> None:
        self.config = config or get_config()
        configure_logging(self.config.logging)
        self.logger = logger.bind(component="vitals_monitoring")

        self.analysis_service = analysis_service or VitalsAnalysisService(
            build_provider_from_config(self.config),
            AIAnalysisConfig.from_app_config(self.config),
        )
        self.history: HistoryStore = history or InMemoryHistoryStore(
            self.config.monitoring.history_max_records
        )
        self.alert_manager = AlertManager(self.config.monitoring.alert_risk_threshold)
        self.alert_handlers = alert_handlers

    async def assess_reading(
        self, subject_id: str, reading: VitalReading, profile: SubjectProfile
    ) -> AssessmentRecord:
        """Analyse, score, store and alert on one reading."""
        analysis = await self.analysis_service.analyze_with_fallback(reading, profile)
        score = compute_health_score(reading)

        record = AssessmentRecord(
            subject_id=subject_id,
            reading=reading,
            analysis=analysis,
            health_score=score,
        )
        await self.history.append(record)

        alerts = self.alert_manager.process_assessment(record)
        if alerts:
            await self.alert_manager.dispatch_alerts(alerts, self.alert_handlers)

        self.logger.info(
            "reading_assessed",
            subject_id=subject_id,
            risk_level=analysis.risk_level.value,
            health_score=score,
            source=analysis.source,
            alerts=len(alerts),
        )
        return record

    def attach_stream(
        self, stream: VitalsStream, subject_id: str, profile: SubjectProfile
    ) -> Callable[[], None]:
        """Assess every reading the stream publishes. Returns the unsubscribe callable."""

        async def on_reading(reading: VitalReading) -> None:
            await self.assess_reading(subject_id, reading, profile)

        self.logger.info("stream_attached", subject_id=subject_id, source=stream.source.source_name)
        return stream.subscribe(on_reading)

    async def get_history(self, subject_id: str, hours: int = 24) -> list[AssessmentRecord]:
        """Assessments for readings taken in the last `hours`, oldest first."""
        cutoff = datetime.now(UTC) - timedelta(hours=hours)
        return await self.history.list_records(subject_id, since=cutoff)
