"""
Incidents Domain Layer
======================

Records written by the importer and the postmortem value objects.
"""

from watchtower.incidents.domain.entities import (
    TicketRecord,
    JournalEntry,
    NewIncident,
    IncidentRef,
    TimelineEntry,
)
from watchtower.incidents.domain.value_objects import (
    ActionItem,
    BusinessImpact,
    CausalFactor,
    MissingField,
    PostmortemDraft,
    parse_timestamp,
    INTERCEPTION_LAYERS,
    ACTION_PRIORITIES,
)

__all__ = [
    "TicketRecord",
    "JournalEntry",
    "NewIncident",
    "IncidentRef",
    "TimelineEntry",
    "ActionItem",
    "BusinessImpact",
    "CausalFactor",
    "MissingField",
    "PostmortemDraft",
    "parse_timestamp",
    "INTERCEPTION_LAYERS",
    "ACTION_PRIORITIES",
]
