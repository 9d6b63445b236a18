"""
Patient-friendly summaries of medical document text.

The caller supplies the document's plain text (a lab report, prescription or
medical record). There is no rule-based equivalent, so every failure on the
AI path surfaces as DocumentAnalysisError.
"""

import asyncio
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from vitalwatch.config import AppConfig
from vitalwatch.services.ai_analysis import (
    AIAnalysisConfig,
    GeminiAgent,
    coerce_string_list,
    extract_json_object,
)

logger = structlog.get_logger(__name__)

DocumentType = Literal["lab_report", "prescription", "medical_record"]

DEFAULT_DOCUMENT_SUMMARY = "Document analysis completed"


class DocumentAnalysisError(RuntimeError):
    """The document could not be analysed."""


class DocumentAnalysis(BaseModel):
    summary: str
    key_findings: list[str] = Field(default_factory=list, serialization_alias="keyFindings")
    recommendations: list[str] = Field(default_factory=list)
    # Unless the model says otherwise, assume the patient should follow up
    follow_up_needed: bool = Field(default=True, serialization_alias="followUpNeeded")


def build_document_prompt(document_text: str, document_type: DocumentType) -> str:
    return f"""Analyze the following {document_type.replace("_", " ")} and provide a \
patient-friendly summary:

Document Content:
{document_text}

Please provide:
1. A clear, easy-to-understand summary
2. Key findings that the patient should be aware of
3. General recommendations (emphasizing doctor consultation)
4. Whether follow-up with a healthcare provider is recommended

Respond in JSON format with keys: summary, keyFindings (array), recommendations (array), \
followUpNeeded (boolean).

Important: Always emphasize that this analysis is for informational purposes only and should \
not replace professional medical advice."""


DOCUMENT_SYSTEM_PROMPT = """You explain medical documents to patients in plain language.
You never diagnose. Always answer with a single JSON object."""


class MedicalDocumentService:
    """Summarises lab reports, prescriptions and records through the AI provider."""

    def __init__(self, api_key: str | None, config: AIAnalysisConfig | None = None) -> None:
        self.config = config or AIAnalysisConfig()
        self.agent = (
            GeminiAgent(api_key, self.config, DOCUMENT_SYSTEM_PROMPT)
            if api_key is not None
            else None
        )
        self.logger = logger.bind(component="medical_document_service")

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "MedicalDocumentService":
        return cls(config.ai_provider.gemini_api_key, AIAnalysisConfig.from_app_config(config))

    async def analyze_document(
        self, document_text: str, document_type: DocumentType
    ) -> DocumentAnalysis:
        """
        Summarise one document.

        Raises:
            ValueError: the document text is blank.
            DocumentAnalysisError: no provider is configured, or the provider
                failed, timed out or returned no JSON object.
        """
        if not document_text.strip():
            raise ValueError("document text is empty")

        if self.agent is None:
            self.logger.info("document_ai_unavailable", document_type=document_type)
            raise DocumentAnalysisError("document analysis requires GEMINI_API_KEY")

        prompt = build_document_prompt(document_text, document_type)
        try:
            text = await asyncio.wait_for(
                self.agent.run(prompt), timeout=self.config.timeout_seconds
            )
        except TimeoutError as e:
            self.logger.error(
                "document_analysis_timeout", timeout_seconds=self.config.timeout_seconds
            )
            raise DocumentAnalysisError("Failed to analyze medical document") from e
        except Exception as e:
            self.logger.error("document_analysis_failed", error=str(e))
            raise DocumentAnalysisError("Failed to analyze medical document") from e

        extracted = extract_json_object(text)
        if extracted.is_err():
            error = extracted.unwrap_err()
            self.logger.error("document_analysis_unparseable", error=str(error))
            raise DocumentAnalysisError("Failed to analyze medical document") from error

        data = extracted.unwrap()
        summary = data.get("summary")
        follow_up = data.get("followUpNeeded")

        self.logger.info("document_analyzed", document_type=document_type)
        return DocumentAnalysis(
            summary=summary if isinstance(summary, str) and summary else DEFAULT_DOCUMENT_SUMMARY,
            key_findings=coerce_string_list(data.get("keyFindings")),
            recommendations=coerce_string_list(data.get("recommendations")),
            follow_up_needed=follow_up if isinstance(follow_up, bool) else True,
        )
