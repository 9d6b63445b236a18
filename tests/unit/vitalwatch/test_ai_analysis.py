"""
Tests for AI-backed analysis and the rule-based fallback.

Covers:
- parse_analysis_response: JSON extraction and per-field coercion
- VitalsAnalysisService: success, provider errors, timeouts, malformed output
- GeminiAnalysisProvider: prompt content, lazy agent construction
- HealthChatService: replies and the apology fallback

These tests avoid real API calls by replacing the underlying pydantic-ai Agent
with a stand-in whose `run` returns an object with an `.output` attribute.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import pytest

from vitalwatch.config import AIProviderConfig, AppConfig
from vitalwatch.domain.models import Gender, RiskLevel, SubjectProfile, VitalReading
from vitalwatch.services.ai_analysis import (
    CHAT_APOLOGY,
    DEFAULT_AI_CONFIDENCE,
    DEFAULT_AI_SUMMARY,
    AIAnalysisConfig,
    GeminiAnalysisProvider,
    HealthChatService,
    VitalsAnalysisService,
    build_provider_from_config,
    build_vitals_prompt,
    parse_analysis_response,
)
from vitalwatch.services.risk_scorer import assess_risk


class _FakeAgentResult:
    """Minimal stand-in for pydantic-ai AgentRunResult with .output"""

    def __init__(self, output: Any) -> None:
        self.output = output


class _FakeAgent:
    def __init__(self, output: Any = None, error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.prompts: list[str] = []

    async def run(self, prompt: str, **kwargs: Any) -> _FakeAgentResult:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return _FakeAgentResult(self.output)


class _StaticProvider:
    """AnalysisProvider returning canned text."""

    def __init__(self, text: Any) -> None:
        self.text = text
        self.calls = 0

    async def analyze(
        self, reading: VitalReading, profile: SubjectProfile, message: str | None = None
    ) -> Any:
        self.calls += 1
        return self.text


class _FailingProvider:
    async def analyze(
        self, reading: VitalReading, profile: SubjectProfile, message: str | None = None
    ) -> str:
        raise ConnectionError("provider unreachable")


class _SlowProvider:
    async def analyze(
        self, reading: VitalReading, profile: SubjectProfile, message: str | None = None
    ) -> str:
        await asyncio.sleep(5)
        return "{}"


@pytest.fixture
def profile() -> SubjectProfile:
    return SubjectProfile(age=45, gender=Gender.FEMALE, medical_history="Mild asthma")


@pytest.fixture
def tachycardic_reading() -> VitalReading:
    return VitalReading(
        heart_rate=130,
        blood_pressure_systolic=118,
        blood_pressure_diastolic=76,
        oxygen_saturation=98,
        body_temperature=98.2,
        timestamp=datetime(2024, 5, 1, 9, 30, tzinfo=UTC),
    )


class TestParseAnalysisResponse:
    def test_parses_complete_json(self) -> None:
        text = json.dumps(
            {
                "analysis": "Elevated heart rate.",
                "riskLevel": "high",
                "recommendations": ["Rest", "Hydrate"],
                "anomalies": ["Heart rate 130 BPM"],
                "confidence": 0.92,
            }
        )

        analysis = parse_analysis_response(text).unwrap()

        assert analysis.risk_level == RiskLevel.HIGH
        assert analysis.summary_text == "Elevated heart rate."
        assert analysis.recommendations == ["Rest", "Hydrate"]
        assert analysis.anomalies == ["Heart rate 130 BPM"]
        assert analysis.confidence == 0.92
        assert analysis.source == "ai"

    def test_extracts_json_from_surrounding_prose(self) -> None:
        text = 'Here is my assessment:\n```json\n{"riskLevel": "medium", "confidence": 0.7}\n```'

        analysis = parse_analysis_response(text).unwrap()

        assert analysis.risk_level == RiskLevel.MEDIUM
        assert analysis.confidence == 0.7

    def test_missing_fields_use_defaults(self) -> None:
        analysis = parse_analysis_response("{}").unwrap()

        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.summary_text == DEFAULT_AI_SUMMARY
        assert analysis.confidence == DEFAULT_AI_CONFIDENCE
        assert analysis.anomalies == []
        assert analysis.recommendations == []

    @pytest.mark.parametrize("risk", ["severe", 3, None, ""])
    def test_unknown_risk_level_becomes_low(self, risk: Any) -> None:
        analysis = parse_analysis_response(json.dumps({"riskLevel": risk})).unwrap()
        assert analysis.risk_level == RiskLevel.LOW

    def test_risk_level_is_case_insensitive(self) -> None:
        analysis = parse_analysis_response('{"riskLevel": " CRITICAL "}').unwrap()
        assert analysis.risk_level == RiskLevel.CRITICAL

    @pytest.mark.parametrize("confidence", [1.5, -0.1, "0.9", True, None])
    def test_invalid_confidence_uses_default(self, confidence: Any) -> None:
        analysis = parse_analysis_response(json.dumps({"confidence": confidence})).unwrap()
        assert analysis.confidence == DEFAULT_AI_CONFIDENCE

    def test_non_list_collections_become_empty(self) -> None:
        analysis = parse_analysis_response(
            '{"anomalies": "none", "recommendations": {"a": 1}}'
        ).unwrap()

        assert analysis.anomalies == []
        assert analysis.recommendations == []

    def test_list_items_are_stringified(self) -> None:
        analysis = parse_analysis_response('{"anomalies": ["HR high", 42]}').unwrap()
        assert analysis.anomalies == ["HR high", "42"]

    @pytest.mark.parametrize("text", ["", "no json here", "{not valid json}", "{'single': 1}"])
    def test_unparseable_text_is_an_error(self, text: str) -> None:
        result = parse_analysis_response(text)

        assert result.is_err()
        assert isinstance(result.unwrap_err(), ValueError)


class TestVitalsAnalysisService:
    @pytest.mark.asyncio
    async def test_uses_provider_result_when_valid(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        provider = _StaticProvider(
            '{"analysis": "Tachycardia noted", "riskLevel": "medium", "confidence": 0.75}'
        )
        service = VitalsAnalysisService(provider)

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert provider.calls == 1
        assert analysis.source == "ai"
        assert analysis.risk_level == RiskLevel.MEDIUM
        assert analysis.summary_text == "Tachycardia noted"

    @pytest.mark.asyncio
    async def test_missing_provider_uses_rule_based_scorer(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        service = VitalsAnalysisService(None)

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis == assess_risk(tachycardic_reading, profile)
        assert analysis.source == "rule_based"

    @pytest.mark.asyncio
    async def test_provider_error_uses_rule_based_scorer(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        service = VitalsAnalysisService(_FailingProvider())

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis == assess_risk(tachycardic_reading)
        assert analysis.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_timeout_uses_rule_based_scorer(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        service = VitalsAnalysisService(_SlowProvider(), AIAnalysisConfig(timeout_seconds=0.05))

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis.source == "rule_based"
        assert analysis == assess_risk(tachycardic_reading)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["Sorry, I cannot help with that.", None, {"x": 1}])
    async def test_malformed_output_uses_rule_based_scorer(
        self, payload: Any, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        service = VitalsAnalysisService(_StaticProvider(payload))

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis == assess_risk(tachycardic_reading)

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_independent(self, profile: SubjectProfile) -> None:
        service = VitalsAnalysisService(None)
        readings = [
            VitalReading(
                heart_rate=hr,
                blood_pressure_systolic=118,
                blood_pressure_diastolic=76,
                oxygen_saturation=98,
                body_temperature=98.2,
            )
            for hr in (72, 110, 130)
        ]

        results = await asyncio.gather(
            *(service.analyze_with_fallback(r, profile) for r in readings)
        )

        assert [a.risk_level for a in results] == [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]


class TestGeminiAnalysisProvider:
    def test_agent_is_not_built_until_first_request(self) -> None:
        provider = GeminiAnalysisProvider("test-key")
        assert provider.agent._agent is None

    @pytest.mark.asyncio
    async def test_analyze_sends_vitals_prompt(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        provider = GeminiAnalysisProvider("test-key")
        fake = _FakeAgent(output='{"riskLevel": "high"}')
        provider.agent._agent = fake  # type: ignore[assignment]

        text = await provider.analyze(tachycardic_reading, profile, message="I feel dizzy")

        assert text == '{"riskLevel": "high"}'
        prompt = fake.prompts[0]
        assert "45-year-old female" in prompt
        assert "- Heart Rate: 130 BPM" in prompt
        assert "- Blood Pressure: 118/76 mmHg" in prompt
        assert "Medical History: Mild asthma" in prompt
        assert "Patient message: I feel dizzy" in prompt

    @pytest.mark.asyncio
    async def test_service_end_to_end_through_fake_agent(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        provider = GeminiAnalysisProvider("test-key")
        provider.agent._agent = _FakeAgent(  # type: ignore[assignment]
            output='{"analysis": "ok", "riskLevel": "high", "confidence": 0.9}'
        )
        service = VitalsAnalysisService(provider)

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis.source == "ai"
        assert analysis.confidence == 0.9

    @pytest.mark.asyncio
    async def test_agent_failure_falls_back(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        provider = GeminiAnalysisProvider("test-key")
        provider.agent._agent = _FakeAgent(  # type: ignore[assignment]
            error=RuntimeError("quota exceeded")
        )
        service = VitalsAnalysisService(provider)

        analysis = await service.analyze_with_fallback(tachycardic_reading, profile)

        assert analysis == assess_risk(tachycardic_reading)

    def test_prompt_omits_empty_history(self, tachycardic_reading: VitalReading) -> None:
        profile = SubjectProfile(age=30, gender=Gender.MALE)
        prompt = build_vitals_prompt(tachycardic_reading, profile)

        assert "30-year-old male" in prompt
        assert "Medical History" not in prompt
        assert "Patient message" not in prompt


class TestBuildProviderFromConfig:
    def test_no_key_means_no_provider(self) -> None:
        config = AppConfig(ai_provider=AIProviderConfig(gemini_api_key=None))
        assert build_provider_from_config(config) is None

    def test_key_builds_provider_with_configured_model(self) -> None:
        config = AppConfig(
            ai_provider=AIProviderConfig(
                gemini_api_key="test-key",
                analysis_model="gemini-2.5-pro",
                default_timeout_seconds=12.0,
            )
        )

        provider = build_provider_from_config(config)

        assert isinstance(provider, GeminiAnalysisProvider)
        assert provider.config.model_name == "gemini-2.5-pro"
        assert provider.config.timeout_seconds == 12.0


class TestHealthChatService:
    @pytest.mark.asyncio
    async def test_no_key_returns_apology(self) -> None:
        service = HealthChatService(None)
        assert await service.generate_chat_response("Is 130 BPM bad?") == CHAT_APOLOGY

    @pytest.mark.asyncio
    async def test_reply_is_returned_stripped(
        self, tachycardic_reading: VitalReading, profile: SubjectProfile
    ) -> None:
        service = HealthChatService("test-key")
        fake = _FakeAgent(output="  A resting heart rate of 130 is high.  \n")
        service.agent._agent = fake  # type: ignore[union-attr]

        reply = await service.generate_chat_response(
            "Is 130 BPM bad?", health_context=tachycardic_reading, profile=profile
        )

        assert reply == "A resting heart rate of 130 is high."
        prompt = fake.prompts[0]
        assert "User profile: 45-year-old female, Medical history: Mild asthma" in prompt
        assert "Current vital signs context:" in prompt
        assert "User question: Is 130 BPM bad?" in prompt

    @pytest.mark.asyncio
    async def test_agent_error_returns_apology(self) -> None:
        service = HealthChatService("test-key")
        service.agent._agent = _FakeAgent(error=RuntimeError("boom"))  # type: ignore[union-attr]

        assert await service.generate_chat_response("hello") == CHAT_APOLOGY

    @pytest.mark.asyncio
    async def test_empty_reply_returns_apology(self) -> None:
        service = HealthChatService("test-key")
        service.agent._agent = _FakeAgent(output="   ")  # type: ignore[union-attr]

        assert await service.generate_chat_response("hello") == CHAT_APOLOGY

    def test_from_app_config_uses_chat_model(self) -> None:
        config = AppConfig(
            ai_provider=AIProviderConfig(gemini_api_key="test-key", chat_model="gemini-chat-x")
        )

        service = HealthChatService.from_app_config(config)

        assert service.config.model_name == "gemini-chat-x"
        assert service.agent is not None
