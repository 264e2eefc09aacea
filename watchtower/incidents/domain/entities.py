"""
Incident Domain Entities
=========================

Plain records exchanged between the import pipeline, the ticket system
and the incident repositories.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from watchtower.config import IncidentStatus


@dataclass
class TicketRecord:
    """An incident as the ticket system (ServiceNow) knows it."""

    sys_id: str
    number: str
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    opened_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    correlation_id: Optional[str] = None


@dataclass
class JournalEntry:
    """A work note or comment from the ticket system's journal."""

    sys_id: str
    element: str
    value: str
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @property
    def label(self) -> str:
        return "Work Note" if self.element == "work_notes" else "Comment"


@dataclass
class NewIncident:
    """Fields of an incident about to be created by the importer."""

    incident_number: str
    title: str
    severity: str
    detected_at: datetime
    description: Optional[str] = None
    impact: Optional[str] = None
    resolved_at: Optional[datetime] = None
    affected_service: Optional[str] = None
    source: str = "bulk_import"
    external_sys_id: Optional[str] = None

    @property
    def status(self) -> str:
        return IncidentStatus.RESOLVED if self.resolved_at else IncidentStatus.ACTIVE


@dataclass
class IncidentRef:
    """Identity of a stored incident."""

    id: str
    incident_number: str
    title: str
    severity: str
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    external_sys_id: Optional[str] = None


@dataclass
class TimelineEntry:
    """A timeline event to append to an incident."""

    event_type: str
    description: str
    occurred_at: datetime
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    details: dict = field(default_factory=dict)
    external_ref: Optional[str] = None
