"""
Bulk Import Infrastructure Models
==================================

SQLAlchemy ORM models for import sessions and items.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from watchtower.config import ItemStatus, PipelineStep, SessionStatus
from watchtower.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportSessionModel(Base):
    """
    Database model for an import session.

    status and the counters are recomputed from item statuses.
    """
    __tablename__ = "bulk_import_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=SessionStatus.PROCESSING)
    auto_publish: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class ImportItemModel(Base):
    """Database model for one uploaded document in a session."""
    __tablename__ = "bulk_import_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bulk_import_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Upload
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)

    # Pipeline position (written together from an ItemState)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=ItemStatus.UPLOADING)
    current_step: Mapped[str] = mapped_column(String(50), nullable=False, default=PipelineStep.UPLOADING)
    status_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Step outputs
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ai_questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    review_notes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    incident_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    postmortem_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Run lease; set while a pipeline run owns the item
    active_run_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
