"""
Incidents Repository Interfaces
================================
"""

from abc import ABC, abstractmethod
from typing import Optional, Set

from watchtower.incidents.domain import IncidentRef, NewIncident, PostmortemDraft, TimelineEntry


class IIncidentRepository(ABC):
    """Interface for incident, role and timeline data access."""

    @abstractmethod
    async def get(self, incident_id: str) -> Optional[IncidentRef]:
        """Get incident by ID."""

    @abstractmethod
    async def get_by_number(self, incident_number: str) -> Optional[IncidentRef]:
        """Get incident by its business identifier."""

    @abstractmethod
    async def create(self, incident: NewIncident, created_by_id: str) -> IncidentRef:
        """
        Create incident.

        Raises:
            DuplicateRecordException: If the incident number is already taken
        """

    @abstractmethod
    async def add_role(
        self,
        incident_id: str,
        role_type: str,
        user_id: str,
        user_name: str,
        assigned_by_id: str
    ) -> None:
        """Assign a role on an incident."""

    @abstractmethod
    async def add_timeline_event(self, incident_id: str, entry: TimelineEntry) -> None:
        """Append a timeline event."""

    @abstractmethod
    async def list_timeline_refs(self, incident_id: str) -> Set[str]:
        """External references of timeline events already stored for an incident."""


class IPostmortemRepository(ABC):
    """Interface for postmortem data access."""

    @abstractmethod
    async def upsert(
        self,
        incident_id: str,
        draft: PostmortemDraft,
        duration_minutes: Optional[int],
        status: str,
        created_by_id: str
    ) -> str:
        """Create or update the postmortem of an incident; returns its id."""

    @abstractmethod
    async def get_by_incident(self, incident_id: str) -> Optional[dict]:
        """Get the postmortem of an incident as a plain dict."""
