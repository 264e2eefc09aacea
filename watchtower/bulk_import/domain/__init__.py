"""
Bulk Import Domain Layer
========================

Contains:
- Entities: ImportSession, ImportItem, AIQuestion, ItemState
- Value Objects: IncidentMetadata, JSON repair and normalisation helpers
- Prompts: metadata extraction and postmortem generation templates

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from watchtower.bulk_import.domain.entities import (
    AIQuestion,
    ItemState,
    ImportItem,
    ImportSession,
    SessionSummary,
    summarize_session,
)
from watchtower.bulk_import.domain.value_objects import (
    IncidentMetadata,
    is_negative_answer,
    is_truncated,
    normalize_severity,
    parse_duration_minutes,
    parse_timestamp,
    repair_truncated_json,
    sanitize_file_name,
    stored_file_name,
    strip_code_fences,
    synthesize_incident_number,
)

__all__ = [
    # Entities
    "AIQuestion",
    "ItemState",
    "ImportItem",
    "ImportSession",
    "SessionSummary",
    "summarize_session",
    # Value Objects
    "IncidentMetadata",
    "is_negative_answer",
    "is_truncated",
    "normalize_severity",
    "parse_duration_minutes",
    "parse_timestamp",
    "repair_truncated_json",
    "sanitize_file_name",
    "stored_file_name",
    "strip_code_fences",
    "synthesize_incident_number",
]
