"""
Incident Resolution
===================

Reconciles extracted metadata with the ticket system and creates (or
reuses) the incident an imported postmortem belongs to.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from watchtower.config import Settings, Severity
from watchtower.core import DuplicateRecordException, TicketSystemException
from watchtower.bulk_import.application.interfaces import ITicketSystem, IUnitOfWork
from watchtower.bulk_import.domain import (
    normalize_severity,
    parse_timestamp,
    synthesize_incident_number,
)
from watchtower.incidents.domain import IncidentRef, NewIncident, TicketRecord, TimelineEntry
from watchtower.shared.infrastructure.logging import get_logger
from watchtower.shared.infrastructure.tasks import BackgroundTaskRunner

logger = get_logger(__name__)

DEFAULT_TITLE = "Imported Incident"
DEFAULT_DESCRIPTION = "Imported from postmortem document"
INCIDENT_LEAD_ROLE = "incident_lead"


@dataclass
class ResolvedIncident:
    """Outcome of incident resolution."""

    incident: IncidentRef
    created: bool


def merge_incident(metadata: dict, ticket: Optional[TicketRecord]) -> NewIncident:
    """
    Merge document metadata with a ticket record.

    The ticket wins for identity and classification (number, title,
    severity, timestamps); the document wins for descriptive content.
    """
    ticket = ticket or TicketRecord(sys_id="", number="")

    resolved_at = ticket.resolved_at or parse_timestamp(metadata.get("resolvedAt"))
    return NewIncident(
        incident_number=ticket.number or metadata.get("incidentNumber") or synthesize_incident_number(),
        title=ticket.title or metadata.get("title") or DEFAULT_TITLE,
        severity=(
            normalize_severity(ticket.severity)
            or normalize_severity(metadata.get("severity"))
            or Severity.MEDIUM
        ),
        detected_at=(
            ticket.opened_at
            or parse_timestamp(metadata.get("detectedAt"))
            or datetime.now(timezone.utc)
        ),
        resolved_at=resolved_at,
        description=metadata.get("description") or ticket.description or DEFAULT_DESCRIPTION,
        impact=metadata.get("summary"),
        affected_service=metadata.get("affectedService"),
        source="servicenow" if ticket.sys_id else "bulk_import",
        external_sys_id=ticket.sys_id or None,
    )


class IncidentResolver:
    """
    Looks up tickets and creates incidents deduplicated by incident number.

    Every role and timeline entry it writes is attributed to the configured
    system actor.
    """

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        ticket_system: ITicketSystem,
        task_runner: BackgroundTaskRunner,
        settings: Settings
    ):
        self._uow_factory = uow_factory
        self._ticket_system = ticket_system
        self._tasks = task_runner
        self._actor_id = settings.system_actor_id
        self._actor_name = settings.system_actor_name

    @property
    def ticket_system_enabled(self) -> bool:
        return self._ticket_system.is_enabled()

    async def lookup(self, incident_number: str) -> Optional[TicketRecord]:
        """
        Find a ticket by number, then by correlation ID.

        Returns None when the integration is disabled, nothing matches or
        the ticket system fails.
        """
        if not self.ticket_system_enabled:
            logger.info("Ticket system disabled, skipping lookup", extra={"incident_number": incident_number})
            return None

        try:
            ticket = await self._ticket_system.find_by_number(incident_number)
            if ticket is None:
                ticket = await self._ticket_system.find_by_correlation_id(incident_number)
        except TicketSystemException as e:
            logger.error(
                "Ticket lookup failed",
                extra={"incident_number": incident_number, "error": e.message}
            )
            return None

        logger.info(
            "Ticket lookup finished",
            extra={
                "incident_number": incident_number,
                "found": ticket is not None,
                "ticket_number": ticket.number if ticket else None,
            }
        )
        return ticket

    async def resolve(
        self,
        metadata: dict,
        ticket: Optional[TicketRecord],
        item_id: str
    ) -> ResolvedIncident:
        """Create the incident for an item, or reuse one with the same number."""
        incident = merge_incident(metadata, ticket)

        try:
            resolved = await self._create_or_reuse(incident)
        except DuplicateRecordException:
            # Another item created the same incident number concurrently.
            async with self._uow_factory() as uow:
                existing = await uow.incidents.get_by_number(incident.incident_number)
            resolved = ResolvedIncident(incident=existing, created=False)

        logger.info(
            "Incident resolved",
            extra={
                "item_id": item_id,
                "incident_id": resolved.incident.id,
                "incident_number": resolved.incident.incident_number,
                "incident_created": resolved.created,
            }
        )

        if resolved.created and incident.external_sys_id:
            self._tasks.spawn(
                self.sync_activity(resolved.incident.id, incident.external_sys_id),
                name=f"ticket-activity-{resolved.incident.id}",
            )
        return resolved

    async def _create_or_reuse(self, incident: NewIncident) -> ResolvedIncident:
        async with self._uow_factory() as uow:
            existing = await uow.incidents.get_by_number(incident.incident_number)
            if existing is not None:
                return ResolvedIncident(incident=existing, created=False)

            ref = await uow.incidents.create(incident, created_by_id=self._actor_id)
            await uow.incidents.add_role(
                ref.id,
                role_type=INCIDENT_LEAD_ROLE,
                user_id=self._actor_id,
                user_name=self._actor_name,
                assigned_by_id=self._actor_id,
            )
            await uow.incidents.add_timeline_event(ref.id, TimelineEntry(
                event_type="reported",
                description=f"Incident imported from postmortem document: {incident.title}",
                occurred_at=incident.detected_at,
                actor_id=self._actor_id,
                actor_name=self._actor_name,
                details={"severity": incident.severity, "source": "bulk_import"},
            ))
            if incident.resolved_at:
                await uow.incidents.add_timeline_event(ref.id, TimelineEntry(
                    event_type="resolved",
                    description="Incident resolved",
                    occurred_at=incident.resolved_at,
                    actor_id=self._actor_id,
                    actor_name=self._actor_name,
                    details={"source": "bulk_import"},
                ))
        return ResolvedIncident(incident=ref, created=True)

    async def sync_activity(self, incident_id: str, sys_id: str) -> int:
        """
        Copy ticket journal entries into the incident timeline.

        Entries already synced (by journal sys_id) are skipped. Failures are
        logged; they never affect the import item.
        """
        try:
            entries = await self._ticket_system.get_activity(sys_id)
        except TicketSystemException as e:
            logger.warning(
                "Ticket activity sync failed",
                extra={"incident_id": incident_id, "sys_id": sys_id, "error": e.message}
            )
            return 0

        added = 0
        async with self._uow_factory() as uow:
            known = await uow.incidents.list_timeline_refs(incident_id)
            for entry in entries:
                if entry.sys_id in known:
                    continue
                await uow.incidents.add_timeline_event(incident_id, TimelineEntry(
                    event_type="snow_activity",
                    description=entry.value,
                    occurred_at=entry.created_at or datetime.now(timezone.utc),
                    actor_name=entry.created_by,
                    details={
                        "source": "servicenow",
                        "label": entry.label,
                        "activityType": entry.element,
                        "createdBy": entry.created_by,
                    },
                    external_ref=entry.sys_id,
                ))
                known.add(entry.sys_id)
                added += 1

        logger.info(
            "Ticket activity synced",
            extra={"incident_id": incident_id, "sys_id": sys_id, "added": added, "total": len(entries)}
        )
        return added
