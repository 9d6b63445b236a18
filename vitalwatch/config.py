"""
Application settings for the assessment engine, read from the environment.

- A `.env` file is loaded at import; real environment variables win
- Everything is validated by pydantic when first loaded, so bad values fail at startup
- No API key means the AI path is off and analysis is rule-based only
"""

import logging
import os
from functools import lru_cache
from typing import Any, Literal, cast, get_args

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from vitalwatch.domain.models import RiskLevel

load_dotenv()

PLACEHOLDER_API_KEY = "your-gemini-api-key-here"

Environment = Literal["development", "staging", "production"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_ENVIRONMENT_ALIASES: dict[str, Environment] = {
    "dev": "development",
    "development": "development",
    "stage": "staging",
    "staging": "staging",
}

ModelTask = Literal["vital_analysis", "chat", "report"]


class AIProviderConfig(BaseModel):
    """Generative-AI provider configuration with secure defaults."""

    gemini_api_key: str | None = Field(
        default=None, description="Gemini API key; unset disables the AI path"
    )

    # Model selection for different tasks
    analysis_model: str = Field(
        default="gemini-2.5-flash", description="Model used for vital-sign analysis and reports"
    )
    chat_model: str = Field(
        default="gemini-2.5-flash", description="Model used for the health assistant chat"
    )

    # AI behavior settings
    default_temperature: float = Field(
        default=0.2, ge=0.0, le=1.0, description="Default temperature for AI models"
    )
    default_max_tokens: int = Field(
        default=1000, gt=0, description="Default max tokens for AI models"
    )
    default_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Upper bound for a single provider request"
    )

    @field_validator("gemini_api_key", mode="before")
    @classmethod
    def validate_api_key(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            if v == PLACEHOLDER_API_KEY:
                raise ValueError("GEMINI_API_KEY still holds the placeholder value")
        return v

    @property
    def ai_enabled(self) -> bool:
        return self.gemini_api_key is not None


class MonitoringConfig(BaseModel):
    """Vital-sign monitoring configuration."""

    stream_interval_seconds: float = Field(
        default=15.0, gt=0.0, description="Interval between simulated device readings"
    )
    stream_history_size: int = Field(
        default=50, gt=0, description="Recent readings kept by a vitals stream"
    )
    history_max_records: int = Field(
        default=1000, gt=0, description="Assessments kept per subject in the history store"
    )
    alert_risk_threshold: RiskLevel = Field(
        default=RiskLevel.HIGH, description="Lowest risk level that raises an alert"
    )


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: LogLevel = Field(default="INFO", description="Threshold for emitted log records")
    format: Literal["json", "console"] = Field(
        default="json", description="JSON lines in deployed environments, coloured console locally"
    )


class AppConfig(BaseModel):
    """Top-level settings object returned by get_config()."""

    environment: Environment = Field(default="development", description="Deployment tier")
    debug: bool = Field(default=False, description="Development-only debug switch")

    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _parse_environment(raw: str) -> Environment:
    # Unrecognised tiers are treated as production
    return _ENVIRONMENT_ALIASES.get(raw.strip().lower(), "production")


def _parse_log_level(raw: str) -> LogLevel:
    level = raw.strip().upper()
    if level not in get_args(LogLevel):
        return "INFO"
    return cast(LogLevel, level)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def load_config_from_env() -> AppConfig:
    """Build an AppConfig from the process environment.

    Raises:
        ValueError: a value is malformed or out of range (pydantic's
            ValidationError is a ValueError subclass).
    """
    environment = _parse_environment(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"
    threshold = os.getenv("ALERT_RISK_THRESHOLD", RiskLevel.HIGH.value)

    return AppConfig(
        environment=environment,
        debug=debug,
        ai_provider=AIProviderConfig(
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            analysis_model=os.getenv("ANALYSIS_MODEL", "gemini-2.5-flash"),
            chat_model=os.getenv("CHAT_MODEL", "gemini-2.5-flash"),
            default_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 30.0),
        ),
        monitoring=MonitoringConfig(
            stream_interval_seconds=_env_float("STREAM_INTERVAL_SECONDS", 15.0),
            stream_history_size=_env_int("STREAM_HISTORY_SIZE", 50),
            history_max_records=_env_int("HISTORY_MAX_RECORDS", 1000),
            alert_risk_threshold=RiskLevel(threshold.strip().lower()),
        ),
        logging=LoggingConfig(
            level=_parse_log_level(os.getenv("LOG_LEVEL", "INFO")),
            format="console" if debug else "json",
        ),
    )


@lru_cache
def get_config() -> AppConfig:
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached settings; the next get_config() reads the environment again."""
    get_config.cache_clear()


def configure_logging(config: LoggingConfig) -> None:
    """Install the structlog processor chain over stdlib logging."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, config.level))

    renderer: Any
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def validate_config() -> None:
    """Load settings once at startup and report whether the AI path is available."""
    try:
        config = get_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        raise

    print(f"Loaded {config.environment} settings")
    if config.ai_provider.ai_enabled:
        print(f"AI analysis enabled ({config.ai_provider.analysis_model})")
    else:
        print("GEMINI_API_KEY unset, assessments come from the rule-based scorer")


_TASK_MODELS: dict[str, str] = {
    "vital_analysis": "analysis_model",
    "report": "analysis_model",
    "chat": "chat_model",
}


def get_model_config(task: ModelTask) -> dict[str, Any]:
    """Model name and generation settings for one kind of provider call."""
    attribute = _TASK_MODELS.get(task)
    if attribute is None:
        raise ValueError(f"Unknown task: {task}")

    provider = get_config().ai_provider
    return {
        "model_name": getattr(provider, attribute),
        "max_tokens": provider.default_max_tokens,
        "temperature": provider.default_temperature,
        "timeout_seconds": provider.default_timeout_seconds,
    }


def print_config_summary() -> None:
    config = get_config()
    provider = config.ai_provider
    monitoring = config.monitoring

    rows = [
        ("environment", config.environment),
        ("debug", config.debug),
        ("log level", config.logging.level),
        ("ai enabled", provider.ai_enabled),
        ("analysis model", provider.analysis_model),
        ("chat model", provider.chat_model),
        ("provider timeout", f"{provider.default_timeout_seconds}s"),
        ("stream interval", f"{monitoring.stream_interval_seconds}s"),
        ("stream history", f"{monitoring.stream_history_size} readings"),
        ("history cap", f"{monitoring.history_max_records} assessments"),
        ("alert threshold", monitoring.alert_risk_threshold.value),
    ]
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        print(f"{label.ljust(width)}  {value}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
