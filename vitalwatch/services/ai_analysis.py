"""
AI-backed vital-sign analysis with a rule-based fallback, using Pydantic AI.

Key architectural decisions:
- Provider protocol: the external reasoning service is interchangeable
- Explicit parse result: provider output becomes Result[HealthAnalysis, AnalysisParseError]
- Fallback strategy: any provider failure resolves to the rule-based scorer
- One attempt per call: no retries, bounded by a timeout

Per call the orchestration moves idle -> requesting -> succeeded | failed -> resolved.
A failed request resolves to the deterministic scorer, so callers always get
a valid HealthAnalysis.
"""

import asyncio
import json
import re
from enum import Enum
from typing import Any, Protocol, cast

import structlog
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from vitalwatch.config import AppConfig
from vitalwatch.domain.models import HealthAnalysis, RiskLevel, SubjectProfile, VitalReading
from vitalwatch.services.risk_scorer import assess_risk
from vitalwatch.services.vitals_collector import Result

logger = structlog.get_logger(__name__)

DEFAULT_AI_CONFIDENCE = 0.8
DEFAULT_AI_SUMMARY = "Health analysis completed"

CHAT_APOLOGY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "For immediate health concerns, please contact your healthcare provider or "
    "emergency services."
)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AnalysisState(str, Enum):
    """States of one analysis call, used in log events."""

    REQUESTING = "requesting"
    FAILED = "failed"
    RESOLVED = "resolved"


class AnalysisParseError(ValueError):
    """Provider output did not contain a usable JSON object."""


class AIAnalysisConfig(BaseModel):
    """Configuration for AI analysis with smart defaults."""

    model_name: str = "gemini-2.5-flash"
    max_tokens: int = Field(default=1000, gt=100)
    temperature: float = Field(default=0.2, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0)

    @classmethod
    def from_app_config(
        cls, config: AppConfig, model_name: str | None = None
    ) -> "AIAnalysisConfig":
        return cls(
            model_name=model_name or config.ai_provider.analysis_model,
            max_tokens=config.ai_provider.default_max_tokens,
            temperature=config.ai_provider.default_temperature,
            timeout_seconds=config.ai_provider.default_timeout_seconds,
        )


class AnalysisProvider(Protocol):
    """
    External reasoning service that analyses a reading.

    Returns the raw model text; raising means the request failed.
    """

    async def analyze(
        self,
        reading: VitalReading,
        profile: SubjectProfile,
        message: str | None = None,
    ) -> str: ...


class GeminiAgent:
    """
    Lazily constructed Pydantic AI agent on a Gemini model.

    Building the model is deferred to the first request so that a bad key or
    missing provider surfaces as a request failure, not a constructor error.
    """

    def __init__(self, api_key: str, config: AIAnalysisConfig, system_prompt: str) -> None:
        self.api_key = api_key
        self.config = config
        self.system_prompt = system_prompt
        self._agent: Agent[None, str] | None = None

    def _build(self) -> Agent[None, str]:
        model = GoogleModel(self.config.model_name, provider=GoogleProvider(api_key=self.api_key))
        return Agent(
            model=model,
            output_type=str,
            system_prompt=self.system_prompt,
            model_settings={
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
        )

    async def run(self, prompt: str) -> str:
        if self._agent is None:
            self._agent = self._build()
        result = await self._agent.run(prompt)
        return cast(str, cast(Any, result).output)


def format_vitals(reading: VitalReading) -> str:
    return "\n".join(
        [
            f"- Heart Rate: {reading.heart_rate} BPM",
            f"- Blood Pressure: {reading.blood_pressure} mmHg",
            f"- Oxygen Saturation: {reading.oxygen_saturation}%",
            f"- Body Temperature: {reading.body_temperature}°F",
        ]
    )


def build_vitals_prompt(
    reading: VitalReading, profile: SubjectProfile, message: str | None = None
) -> str:
    """Build the analysis prompt for one reading."""
    history = f"\nMedical History: {profile.medical_history}\n" if profile.medical_history else ""
    question = f"\nPatient message: {message}\n" if message else ""

    return f"""As a medical AI assistant, analyze the following vital signs for a \
{profile.age}-year-old {profile.gender.value}:

Vital Signs:
{format_vitals(reading)}
- Timestamp: {reading.timestamp.isoformat()}
{history}{question}
Please provide a comprehensive analysis including:
1. Overall health assessment
2. Risk level (low/medium/high/critical)
3. Specific recommendations for the patient
4. Any anomalies or concerning patterns detected
5. Confidence level in the analysis (0-1)

Respond in JSON format with keys: analysis, riskLevel, recommendations (array), \
anomalies (array), confidence.

Focus on:
- Normal ranges for the patient's age and gender
- Immediate risks that require medical attention
- Preventive measures and lifestyle recommendations
- Clear explanations that a patient can understand"""


ANALYSIS_SYSTEM_PROMPT = """You are a careful clinical assistant reviewing wearable vital signs.
You never diagnose. You flag readings that need attention and explain them in plain language.
Always answer with a single JSON object."""


class GeminiAnalysisProvider:
    """AnalysisProvider backed by a Gemini model through Pydantic AI."""

    def __init__(self, api_key: str, config: AIAnalysisConfig | None = None) -> None:
        self.config = config or AIAnalysisConfig()
        self.agent = GeminiAgent(api_key, self.config, ANALYSIS_SYSTEM_PROMPT)

    async def analyze(
        self,
        reading: VitalReading,
        profile: SubjectProfile,
        message: str | None = None,
    ) -> str:
        return await self.agent.run(build_vitals_prompt(reading, profile, message))


def build_provider_from_config(config: AppConfig) -> GeminiAnalysisProvider | None:
    """Return a provider, or None when no API key is configured."""
    api_key = config.ai_provider.gemini_api_key
    if api_key is None:
        logger.warning("gemini_api_key_missing", fallback="rule_based")
        return None
    return GeminiAnalysisProvider(api_key, AIAnalysisConfig.from_app_config(config))


def extract_json_object(text: str) -> Result[dict[str, Any], AnalysisParseError]:
    """Pull the outermost {...} span out of model text and decode it."""
    match = _JSON_OBJECT.search(text)
    if match is None:
        return Result.err(AnalysisParseError("no JSON object found in provider response"))
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return Result.err(AnalysisParseError(f"invalid JSON in provider response: {e}"))
    if not isinstance(data, dict):
        return Result.err(AnalysisParseError("provider response JSON is not an object"))
    return Result.ok(data)


def coerce_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item if isinstance(item, str) else str(item) for item in value]


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_AI_CONFIDENCE
    if not 0.0 <= value <= 1.0:
        return DEFAULT_AI_CONFIDENCE
    return float(value)


def _coerce_risk_level(value: Any) -> RiskLevel:
    if isinstance(value, str):
        try:
            return RiskLevel(value.strip().lower())
        except ValueError:
            pass
    return RiskLevel.LOW


def parse_analysis_response(text: str) -> Result[HealthAnalysis, AnalysisParseError]:
    """
    Turn raw provider text into a HealthAnalysis.

    Missing or invalid sub-fields fall back to safe defaults; only the absence
    of a decodable JSON object counts as a failure.
    """
    extracted = extract_json_object(text)
    if extracted.is_err():
        return Result.err(extracted.unwrap_err())

    data = extracted.unwrap()
    summary = data.get("analysis")
    if not isinstance(summary, str) or not summary.strip():
        summary = DEFAULT_AI_SUMMARY

    return Result.ok(
        HealthAnalysis(
            risk_level=_coerce_risk_level(data.get("riskLevel")),
            anomalies=coerce_string_list(data.get("anomalies")),
            recommendations=coerce_string_list(data.get("recommendations")),
            confidence=_coerce_confidence(data.get("confidence")),
            summary_text=summary,
            source="ai",
        )
    )


class VitalsAnalysisService:
    """
    Orchestrates one AI analysis attempt with the rule-based scorer as fallback.

    Stateless between calls, so it can be shared by concurrent callers.
    """

    def __init__(
        self, provider: AnalysisProvider | None, config: AIAnalysisConfig | None = None
    ) -> None:
        self.provider = provider
        self.config = config or AIAnalysisConfig()
        self.logger = logger.bind(component="vitals_analysis_service")

    async def analyze_with_fallback(
        self,
        reading: VitalReading,
        profile: SubjectProfile,
        message: str | None = None,
    ) -> HealthAnalysis:
        """Analyse a reading. Never raises for a well-formed reading."""
        if self.provider is None:
            self.logger.info("ai_provider_unavailable", state=AnalysisState.FAILED.value)
            return self._fallback(reading, profile, reason="missing_credentials")

        self.logger.debug("ai_analysis_requesting", state=AnalysisState.REQUESTING.value)

        try:
            raw = await asyncio.wait_for(
                self.provider.analyze(reading, profile, message),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            self.logger.error(
                "ai_analysis_timeout",
                state=AnalysisState.FAILED.value,
                timeout_seconds=self.config.timeout_seconds,
            )
            return self._fallback(reading, profile, reason="timeout")
        except Exception as e:
            self.logger.error(
                "ai_analysis_failed", state=AnalysisState.FAILED.value, error=str(e)
            )
            return self._fallback(reading, profile, reason="provider_error")

        if not isinstance(raw, str):
            self.logger.error(
                "ai_analysis_unexpected_payload",
                state=AnalysisState.FAILED.value,
                payload_type=type(raw).__name__,
            )
            return self._fallback(reading, profile, reason="malformed_response")

        parsed = parse_analysis_response(raw)
        if parsed.is_err():
            self.logger.error(
                "ai_analysis_unparseable",
                state=AnalysisState.FAILED.value,
                error=str(parsed.unwrap_err()),
            )
            return self._fallback(reading, profile, reason="malformed_response")

        analysis = parsed.unwrap()
        self.logger.info(
            "ai_analysis_resolved",
            state=AnalysisState.RESOLVED.value,
            source="ai",
            risk_level=analysis.risk_level.value,
            confidence=analysis.confidence,
        )
        return analysis

    def _fallback(
        self, reading: VitalReading, profile: SubjectProfile, reason: str
    ) -> HealthAnalysis:
        analysis = assess_risk(reading, profile)
        self.logger.info(
            "rule_based_fallback_used",
            state=AnalysisState.RESOLVED.value,
            reason=reason,
            risk_level=analysis.risk_level.value,
        )
        return analysis


CHAT_SYSTEM_PROMPT = """You are Dr. AI, a compassionate virtual health assistant. You provide \
helpful, accurate health information while being empathetic and clear.

Important guidelines:
- Always recommend consulting healthcare professionals for serious concerns
- Provide practical, actionable advice when appropriate
- Be supportive and understanding
- Explain medical terms in simple language
- If discussing symptoms, always emphasize the importance of professional medical evaluation
- Respect patient privacy and maintain confidentiality"""


class HealthChatService:
    """Conversational health assistant. Degrades to a fixed apology, never raises."""

    def __init__(self, api_key: str | None, config: AIAnalysisConfig | None = None) -> None:
        self.config = config or AIAnalysisConfig()
        self.agent = (
            GeminiAgent(api_key, self.config, CHAT_SYSTEM_PROMPT) if api_key is not None else None
        )
        self.logger = logger.bind(component="health_chat_service")

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "HealthChatService":
        return cls(
            config.ai_provider.gemini_api_key,
            AIAnalysisConfig.from_app_config(config, model_name=config.ai_provider.chat_model),
        )

    def _build_prompt(
        self,
        message: str,
        health_context: VitalReading | None,
        profile: SubjectProfile | None,
    ) -> str:
        parts = []
        if profile is not None:
            user_info = f"User profile: {profile.age}-year-old {profile.gender.value}"
            if profile.medical_history:
                user_info += f", Medical history: {profile.medical_history}"
            parts.append(user_info)
        if health_context is not None:
            parts.append(f"Current vital signs context:\n{format_vitals(health_context)}")

        parts.append(f"User question: {message}")
        parts.append(
            "Provide a helpful, empathetic response as Dr. AI. "
            "Keep your response conversational but informative."
        )
        return "\n\n".join(parts)

    async def generate_chat_response(
        self,
        message: str,
        health_context: VitalReading | None = None,
        profile: SubjectProfile | None = None,
    ) -> str:
        if self.agent is None:
            self.logger.info("chat_unavailable", reason="missing_credentials")
            return CHAT_APOLOGY

        try:
            reply = await asyncio.wait_for(
                self.agent.run(self._build_prompt(message, health_context, profile)),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            self.logger.error("chat_timeout", timeout_seconds=self.config.timeout_seconds)
            return CHAT_APOLOGY
        except Exception as e:
            self.logger.error("chat_failed", error=str(e))
            return CHAT_APOLOGY

        return reply.strip() or CHAT_APOLOGY
