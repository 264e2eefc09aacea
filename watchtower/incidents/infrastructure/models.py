"""
Incidents Infrastructure Models
================================

SQLAlchemy ORM models for incidents, roles, timeline events and postmortems.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from watchtower.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IncidentModel(Base):
    """Database model for an incident."""
    __tablename__ = "incidents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    incident_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    impact: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    affected_service: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Origin
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="bulk_import")
    snow_sys_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class IncidentRoleModel(Base):
    """Database model for a role held on an incident."""
    __tablename__ = "incident_roles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    incident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assigned_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TimelineEventModel(Base):
    """Database model for an incident timeline event."""
    __tablename__ = "timeline_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    incident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    # Journal sys_id for events synced from ServiceNow
    external_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PostmortemModel(Base):
    """Database model for an incident postmortem (one per incident)."""
    __tablename__ = "postmortems"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    incident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Business impact
    business_impact_application: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    business_impact_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    business_impact_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    business_impact_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    business_impact_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    business_impact_affected_countries: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    business_impact_regulatory_reporting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_impact_regulatory_entity: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    mitigation_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    causal_analysis: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
