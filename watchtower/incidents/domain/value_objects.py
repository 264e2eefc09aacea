"""
Postmortem Value Objects
=========================

Pydantic models for an AI-generated postmortem. Model output is untrusted,
so unknown layers and priorities fall back to safe values and wrong-shaped
fields become None.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

INTERCEPTION_LAYERS = [
    "define", "design", "build", "test", "release", "deploy", "operate", "response",
]
ACTION_PRIORITIES = ["high", "medium", "low"]
DEFAULT_INTERCEPTION_LAYER = "operate"
DEFAULT_ACTION_PRIORITY = "medium"


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 (or `YYYY-MM-DD HH:MM:SS`) timestamp; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ActionItem(_CamelModel):
    description: str = ""
    priority: str = DEFAULT_ACTION_PRIORITY

    @field_validator("description", mode="before")
    @classmethod
    def coerce_description(cls, v: Any) -> str:
        return _text(v) or ""

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> str:
        v = (_text(v) or "").lower()
        return v if v in ACTION_PRIORITIES else DEFAULT_ACTION_PRIORITY


class CausalFactor(_CamelModel):
    interception_layer: str = DEFAULT_INTERCEPTION_LAYER
    cause: Optional[str] = None
    sub_cause: Optional[str] = None
    description: Optional[str] = None
    action_items: List[ActionItem] = Field(default_factory=list)

    @field_validator("interception_layer", mode="before")
    @classmethod
    def coerce_layer(cls, v: Any) -> str:
        v = (_text(v) or "").lower()
        return v if v in INTERCEPTION_LAYERS else DEFAULT_INTERCEPTION_LAYER

    @field_validator("cause", "sub_cause", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _text(v)

    @field_validator("action_items", mode="before")
    @classmethod
    def coerce_actions(cls, v: Any) -> list:
        return [a for a in v if isinstance(a, dict)] if isinstance(v, list) else []


class BusinessImpact(_CamelModel):
    application: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Any = None
    description: Optional[str] = None
    affected_countries: List[str] = Field(default_factory=list)
    regulatory_reporting: bool = False
    regulatory_entity: Optional[str] = None

    @field_validator(
        "application", "start_time", "end_time", "description", "regulatory_entity",
        mode="before"
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _text(v)

    @field_validator("affected_countries", mode="before")
    @classmethod
    def coerce_countries(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        return [str(c).strip() for c in v if isinstance(c, str) and c.strip()]

    @field_validator("regulatory_reporting", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        return v is True or (isinstance(v, str) and v.strip().lower() == "true")


class MissingField(_CamelModel):
    field: str
    question: str


class PostmortemDraft(_CamelModel):
    """Structured postmortem produced by the generator."""

    business_impact: BusinessImpact = Field(default_factory=BusinessImpact)
    mitigation_description: Optional[str] = None
    causal_analysis: List[CausalFactor] = Field(default_factory=list)
    missing_fields: List[MissingField] = Field(default_factory=list)

    @classmethod
    def from_model_output(cls, data: dict) -> "PostmortemDraft":
        """Build a draft from the model's JSON (nested `mitigation.description`)."""
        impact = data.get("businessImpact")
        mitigation = data.get("mitigation")
        causes = data.get("causalAnalysis")
        missing = data.get("missingFields")
        return cls(
            business_impact=BusinessImpact.model_validate(impact if isinstance(impact, dict) else {}),
            mitigation_description=_text(mitigation.get("description")) if isinstance(mitigation, dict) else None,
            causal_analysis=[
                CausalFactor.model_validate(c) for c in causes if isinstance(c, dict)
            ] if isinstance(causes, list) else [],
            missing_fields=[
                MissingField(field=str(m["field"]), question=str(m.get("question") or f"Please provide {m['field']}"))
                for m in missing if isinstance(m, dict) and m.get("field")
            ] if isinstance(missing, list) else [],
        )

    def causal_analysis_records(self) -> List[dict]:
        return [c.model_dump(by_alias=True) for c in self.causal_analysis]
