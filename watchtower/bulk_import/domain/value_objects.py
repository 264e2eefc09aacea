"""
Bulk Import Value Objects
==========================

Immutable value objects and pure helpers for the import domain:
file naming, model-output cleanup, JSON repair, metadata normalisation
and duration parsing.
"""

import json
import re
import time
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from watchtower.config import (
    Severity, VALID_SEVERITIES, TRUNCATION_STOP_REASONS,
)
from watchtower.incidents.domain.value_objects import parse_timestamp


# ========== File names ==========

_UNSAFE_FILE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_file_name(file_name: str) -> str:
    """Replace every character outside [a-zA-Z0-9._-] with an underscore."""
    return _UNSAFE_FILE_CHARS.sub("_", file_name)


def stored_file_name(item_id: str, file_name: str) -> str:
    """Name under which an item's upload is kept on disk."""
    return f"{item_id}_{sanitize_file_name(file_name)}"


# ========== Model output ==========

_CODE_FENCE_JSON = re.compile(r"```json\s*")
_CODE_FENCE = re.compile(r"```\s*")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences the model wraps around JSON."""
    text = _CODE_FENCE_JSON.sub("", text.strip())
    return _CODE_FENCE.sub("", text).strip()


def is_truncated(stop_reason: Optional[str]) -> bool:
    """True when the provider stopped because the token budget ran out."""
    return stop_reason in TRUNCATION_STOP_REASONS


_TRAILING_COMMA = re.compile(r",\s*$")
_DANGLING_KEY = re.compile(r',?\s*"[^"]*"\s*:\s*$')
_DANGLING_BARE_VALUE = re.compile(r',?\s*"[^"]*"\s*:\s*(?P<word>[A-Za-z]+|-?\d+\.|-)$')
_TRAILING_STRING = re.compile(r'(?P<lead>[,{])\s*"[^"]*"$')
_LITERALS = {"true", "false", "null"}


def _scan(text: str):
    """
    Walk JSON text and report (closers, string_start).

    closers holds the brackets needed to close every open container,
    innermost last. string_start is the index of the opening quote of an
    unterminated string, or None.
    """
    closers: List[str] = []
    string_start: Optional[int] = None
    escaped = False
    for index, ch in enumerate(text):
        if escaped:
            escaped = False
            continue
        if string_start is not None:
            if ch == "\\":
                escaped = True
            elif ch == '"':
                string_start = None
            continue
        if ch == '"':
            string_start = index
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers:
            closers.pop()
    return closers, string_start


def _drop_dangling_value(text: str) -> str:
    match = _DANGLING_BARE_VALUE.search(text)
    if match and match.group("word") not in _LITERALS:
        return text[:match.start()]
    return text


def _try_parse(text: str) -> Optional[dict]:
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def repair_truncated_json(text: str) -> Optional[dict]:
    """
    Best-effort repair of a JSON object cut off mid-stream.

    A string cut before its closing quote is dropped together with its key,
    so only complete values survive. Then a dangling `"key":` (or a key
    whose bare value was cut) and a trailing comma are removed and every
    open object and array is closed in nesting order. Returns None when the
    text does not start with an object or is still invalid afterwards.
    """
    repaired = text.strip()
    if not repaired.startswith("{"):
        return None

    parsed = _try_parse(repaired)
    if parsed is not None:
        return parsed

    _, string_start = _scan(repaired)
    if string_start is not None:
        repaired = repaired[:string_start].rstrip()
    else:
        repaired = _drop_dangling_value(_TRAILING_COMMA.sub("", repaired))

    repaired = _DANGLING_KEY.sub("", repaired)
    repaired = _TRAILING_COMMA.sub("", repaired)

    closers, _ = _scan(repaired)
    parsed = _try_parse(repaired + "".join(reversed(closers)))
    if parsed is not None:
        return parsed

    # Cut right after a complete key, before its colon
    if closers and closers[-1] == "}":
        trimmed = _TRAILING_STRING.sub(lambda m: m.group("lead"), repaired)
        trimmed = _TRAILING_COMMA.sub("", trimmed)
        closers, _ = _scan(trimmed)
        return _try_parse(trimmed + "".join(reversed(closers)))

    return None


# ========== Normalisation ==========

_SEVERITY_ALIASES = {
    "sev1": Severity.CRITICAL, "sev-1": Severity.CRITICAL, "p1": Severity.CRITICAL,
    "sev2": Severity.HIGH, "sev-2": Severity.HIGH, "p2": Severity.HIGH,
    "sev3": Severity.MEDIUM, "sev-3": Severity.MEDIUM, "p3": Severity.MEDIUM,
    "sev4": Severity.LOW, "sev-4": Severity.LOW, "p4": Severity.LOW,
    "moderate": Severity.MEDIUM, "minor": Severity.LOW, "major": Severity.HIGH,
}


def normalize_severity(value: Any) -> Optional[str]:
    """Map free-form severity text to critical/high/medium/low, else None."""
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    if value in VALID_SEVERITIES:
        return value
    return _SEVERITY_ALIASES.get(value)


_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$", re.IGNORECASE)


def parse_duration_minutes(
    duration: Any,
    start_time: Any = None,
    end_time: Any = None
) -> Optional[int]:
    """
    Duration in whole minutes.

    Accepts numeric minutes or an ISO 8601 duration such as `PT21H17M` or
    `P1DT2H30M` (seconds are ignored). Falls back to end - start when both
    timestamps parse and end is not before start.
    """
    if isinstance(duration, (int, float)) and not isinstance(duration, bool):
        return int(round(duration))

    if isinstance(duration, str):
        text = duration.strip()
        if re.fullmatch(r"\d+(\.\d+)?", text):
            return int(round(float(text)))
        match = _ISO_DURATION.match(text)
        if match and text.upper() not in ("P", "PT"):
            days, hours, minutes = (int(g or 0) for g in match.groups()[:3])
            return days * 1440 + hours * 60 + minutes

    start = parse_timestamp(start_time)
    end = parse_timestamp(end_time)
    if start and end and end >= start:
        return int((end - start).total_seconds() // 60)
    return None


_NEGATIVE_ANSWERS = {"no", "n", "false", "cancel", "stop", "abort"}


def is_negative_answer(answer: Optional[str]) -> bool:
    """True for "no"-like answers."""
    return (answer or "").strip().lower() in _NEGATIVE_ANSWERS


def synthesize_incident_number() -> str:
    """Placeholder incident number for documents without one."""
    return f"IMP-{int(time.time() * 1000)}"


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        if value.lower() in ("", "null", "none", "unknown", "n/a"):
            return None
        return value
    return None


def _optional_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


class IncidentMetadata(BaseModel):
    """
    Metadata extracted from a postmortem document.

    Built from untrusted model output: every field is optional and values
    of the wrong shape become None instead of failing validation. Dumped
    with camelCase keys (incidentNumber, detectedAt, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    incident_number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    detected_at: Optional[str] = None
    resolved_at: Optional[str] = None
    affected_service: Optional[str] = None
    affected_countries: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    has_action_items: Optional[bool] = None
    action_item_count: Optional[int] = None
    has_mitigation_steps: Optional[bool] = None
    has_business_impact: Optional[bool] = None
    has_timeline: Optional[bool] = None

    @field_validator(
        "incident_number", "title", "description", "affected_service", "summary",
        mode="before"
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, v: Any) -> Optional[str]:
        return normalize_severity(v)

    @field_validator("detected_at", "resolved_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Optional[str]:
        parsed = parse_timestamp(v)
        return parsed.isoformat() if parsed else None

    @field_validator("affected_countries", mode="before")
    @classmethod
    def coerce_countries(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            return []
        return [str(c).strip() for c in v if isinstance(c, (str, int)) and str(c).strip()]

    @field_validator(
        "has_action_items", "has_mitigation_steps", "has_business_impact", "has_timeline",
        mode="before"
    )
    @classmethod
    def coerce_flag(cls, v: Any) -> Optional[bool]:
        return _optional_bool(v)

    @field_validator("action_item_count", mode="before")
    @classmethod
    def coerce_count(cls, v: Any) -> Optional[int]:
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return max(int(v), 0)
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return None

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)
