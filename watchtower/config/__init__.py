"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="watchtower", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/watchtower",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Uploads ==========
    upload_dir: Path = Field(
        default=Path("uploads"),
        description="Directory holding uploaded postmortem documents"
    )
    max_upload_size_mb: int = Field(default=50, description="Per-file upload limit in MB", ge=1)
    max_files_per_upload: int = Field(default=20, description="Files accepted per upload", ge=1)

    # ========== LLM ==========
    llm_provider: str = Field(
        default="anthropic",
        description="Completion provider: openai, anthropic or mock"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for OpenAI-compatible providers (e.g. Groq)"
    )
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    llm_model: str = Field(
        default="claude-sonnet-4-5",
        description="Model used for metadata extraction and postmortem generation"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_retries: int = Field(
        default=2,
        description="Extra attempts after a truncated or unparseable response",
        ge=0,
        le=5
    )
    metadata_initial_max_tokens: int = Field(default=4096, ge=256)
    postmortem_initial_max_tokens: int = Field(default=8192, ge=256)
    llm_max_tokens_cap: int = Field(
        default=64000,
        description="Upper bound for the escalating token budget",
        ge=256
    )
    metadata_text_limit: int = Field(default=15000, ge=1000)
    postmortem_text_limit: int = Field(default=20000, ge=1000)
    extracted_text_limit: int = Field(
        default=100000,
        description="Characters of extracted text persisted on an import item",
        ge=1000
    )

    # ========== ServiceNow ==========
    servicenow_instance_url: Optional[str] = Field(
        default=None,
        description="ServiceNow instance URL, e.g. https://acme.service-now.com"
    )
    servicenow_username: Optional[str] = Field(default=None)
    servicenow_password: Optional[str] = Field(default=None)
    servicenow_timeout_seconds: float = Field(default=10.0, ge=0.1, le=60)

    # ========== System actor ==========
    system_actor_id: str = Field(
        default="00000000-0000-0000-0000-000000000001",
        description="Identity recorded on roles and timeline events created by the importer"
    )
    system_actor_name: str = Field(default="Watchtower Importer")

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-eu-west-0.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(default=None)
    grafana_instance_id: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Ensure the completion provider is supported."""
        v = v.lower()
        if v not in LLM_PROVIDERS:
            raise ValueError(f"llm_provider must be one of {LLM_PROVIDERS}")
        return v

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def servicenow_enabled(self) -> bool:
        return bool(
            self.servicenow_instance_url
            and self.servicenow_username
            and self.servicenow_password
        )


LLM_PROVIDERS = ("openai", "anthropic", "mock")


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ItemStatus(str):
    """Import item lifecycle statuses."""
    UPLOADING = "uploading"
    EXTRACTING_TEXT = "extracting_text"
    EXTRACTING_METADATA = "extracting_metadata"
    LOOKING_UP_TICKET = "looking_up_ticket"
    GENERATING_INCIDENT = "generating_incident"
    GENERATING_POSTMORTEM = "generating_postmortem"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStep(str):
    """Resume points of the per-item pipeline."""
    UPLOADING = "uploading"
    EXTRACTING_TEXT = "extracting_text"
    EXTRACTING_METADATA = "extracting_metadata"
    LOOKING_UP_TICKET = "looking_up_ticket"
    GENERATING_INCIDENT = "generating_incident"
    GENERATING_POSTMORTEM = "generating_postmortem"
    COMPLETED = "completed"


class SessionStatus(str):
    """Import session statuses (derived from item statuses)."""
    PROCESSING = "processing"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"


class Severity(str):
    """Incident severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PostmortemStatus(str):
    """Postmortem publication states."""
    DRAFT = "draft"
    PUBLISHED = "published"


class IncidentStatus(str):
    """Incident lifecycle statuses set by the importer."""
    ACTIVE = "active"
    RESOLVED = "resolved"


class QuestionField(str):
    """Metadata fields the importer may ask the user about."""
    INCIDENT_NUMBER = "incidentNumber"
    PROCEED_WITHOUT_TICKET = "proceedWithoutTicket"
    SEVERITY = "severity"
    DETECTED_AT = "detectedAt"


# ========== Lists for validation ==========

# Forward order of executable steps; "uploading" is the queued state before them.
PIPELINE_STEPS = [
    PipelineStep.EXTRACTING_TEXT,
    PipelineStep.EXTRACTING_METADATA,
    PipelineStep.LOOKING_UP_TICKET,
    PipelineStep.GENERATING_INCIDENT,
    PipelineStep.GENERATING_POSTMORTEM,
]
PAUSABLE_STEPS = [PipelineStep.LOOKING_UP_TICKET, PipelineStep.GENERATING_POSTMORTEM]
TERMINAL_STATUSES = [ItemStatus.COMPLETED, ItemStatus.FAILED]
VALID_ITEM_STATUSES = [
    ItemStatus.UPLOADING, ItemStatus.EXTRACTING_TEXT, ItemStatus.EXTRACTING_METADATA,
    ItemStatus.LOOKING_UP_TICKET, ItemStatus.GENERATING_INCIDENT,
    ItemStatus.GENERATING_POSTMORTEM, ItemStatus.AWAITING_INPUT,
    ItemStatus.COMPLETED, ItemStatus.FAILED,
]
VALID_SEVERITIES = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
CRITICAL_POSTMORTEM_FIELDS = [
    QuestionField.INCIDENT_NUMBER, QuestionField.SEVERITY, QuestionField.DETECTED_AT
]
TRUNCATION_STOP_REASONS = ["length", "max_tokens", "MAX_TOKENS"]

ALLOWED_MIME_TYPES = [
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
]
# Legacy binary .doc is not accepted; Word means .docx
ALLOWED_EXTENSIONS = [".pdf", ".docx", ".txt"]
