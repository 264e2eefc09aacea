"""
Incidents Infrastructure Repositories
======================================

SQLAlchemy implementations of incident and postmortem repositories.
"""

from datetime import datetime, timezone
from typing import Optional, Set
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.config import PostmortemStatus
from watchtower.core import DuplicateRecordException, RepositoryException
from watchtower.incidents.application import IIncidentRepository, IPostmortemRepository
from watchtower.incidents.domain import (
    IncidentRef, NewIncident, PostmortemDraft, TimelineEntry, parse_timestamp,
)
from watchtower.incidents.infrastructure.models import (
    IncidentModel,
    IncidentRoleModel,
    PostmortemModel,
    TimelineEventModel,
)


def _uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise RepositoryException(f"Invalid ID: {value}")


def _to_ref(model: IncidentModel) -> IncidentRef:
    return IncidentRef(
        id=str(model.id),
        incident_number=model.incident_number,
        title=model.title,
        severity=model.severity,
        detected_at=model.detected_at,
        resolved_at=model.resolved_at,
        external_sys_id=model.snow_sys_id,
    )


class SQLAlchemyIncidentRepository(IIncidentRepository):
    """SQLAlchemy implementation for incidents, roles and timeline events."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, incident_id: str) -> Optional[IncidentRef]:
        model = await self._session.get(IncidentModel, _uuid(incident_id))
        return _to_ref(model) if model else None

    async def get_by_number(self, incident_number: str) -> Optional[IncidentRef]:
        stmt = select(IncidentModel).where(IncidentModel.incident_number == incident_number)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_ref(model) if model else None

    async def create(self, incident: NewIncident, created_by_id: str) -> IncidentRef:
        model = IncidentModel(
            id=uuid4(),
            incident_number=incident.incident_number,
            title=incident.title,
            description=incident.description,
            impact=incident.impact,
            severity=incident.severity,
            status=incident.status,
            affected_service=incident.affected_service,
            detected_at=incident.detected_at,
            resolved_at=incident.resolved_at,
            source=incident.source,
            snow_sys_id=incident.external_sys_id,
            created_by_id=created_by_id,
        )

        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateRecordException(
                f"Incident {incident.incident_number} already exists",
                {"incident_number": incident.incident_number, "error": str(e.orig)}
            )

        return _to_ref(model)

    async def add_role(
        self,
        incident_id: str,
        role_type: str,
        user_id: str,
        user_name: str,
        assigned_by_id: str
    ) -> None:
        self._session.add(IncidentRoleModel(
            id=uuid4(),
            incident_id=_uuid(incident_id),
            role_type=role_type,
            user_id=user_id,
            user_name=user_name,
            assigned_by_id=assigned_by_id,
        ))
        await self._session.flush()

    async def add_timeline_event(self, incident_id: str, entry: TimelineEntry) -> None:
        self._session.add(TimelineEventModel(
            id=uuid4(),
            incident_id=_uuid(incident_id),
            event_type=entry.event_type,
            description=entry.description,
            occurred_at=entry.occurred_at,
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            details=entry.details,
            external_ref=entry.external_ref,
        ))
        await self._session.flush()

    async def list_timeline_refs(self, incident_id: str) -> Set[str]:
        stmt = select(TimelineEventModel.external_ref).where(
            TimelineEventModel.incident_id == _uuid(incident_id),
            TimelineEventModel.external_ref.is_not(None),
        )
        result = await self._session.execute(stmt)
        return set(result.scalars().all())


class SQLAlchemyPostmortemRepository(IPostmortemRepository):
    """SQLAlchemy implementation for postmortems."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, incident_id: str) -> Optional[PostmortemModel]:
        stmt = select(PostmortemModel).where(PostmortemModel.incident_id == _uuid(incident_id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        incident_id: str,
        draft: PostmortemDraft,
        duration_minutes: Optional[int],
        status: str,
        created_by_id: str
    ) -> str:
        model = await self._get_model(incident_id)
        if model is None:
            model = PostmortemModel(
                id=uuid4(),
                incident_id=_uuid(incident_id),
                created_by_id=created_by_id,
            )
            self._session.add(model)

        impact = draft.business_impact
        model.status = status
        model.business_impact_application = impact.application
        model.business_impact_start = parse_timestamp(impact.start_time)
        model.business_impact_end = parse_timestamp(impact.end_time)
        model.business_impact_duration = duration_minutes
        model.business_impact_description = impact.description
        model.business_impact_affected_countries = list(impact.affected_countries)
        model.business_impact_regulatory_reporting = impact.regulatory_reporting
        model.business_impact_regulatory_entity = impact.regulatory_entity
        model.mitigation_description = draft.mitigation_description
        model.causal_analysis = draft.causal_analysis_records()
        if status == PostmortemStatus.PUBLISHED:
            model.published_at = datetime.now(timezone.utc)

        await self._session.flush()
        return str(model.id)

    async def get_by_incident(self, incident_id: str) -> Optional[dict]:
        model = await self._get_model(incident_id)
        if model is None:
            return None
        return {
            "id": str(model.id),
            "incident_id": str(model.incident_id),
            "status": model.status,
            "business_impact_application": model.business_impact_application,
            "business_impact_duration": model.business_impact_duration,
            "business_impact_description": model.business_impact_description,
            "business_impact_affected_countries": model.business_impact_affected_countries,
            "mitigation_description": model.mitigation_description,
            "causal_analysis": model.causal_analysis,
            "published_at": model.published_at,
        }
