"""
Bulk Import Infrastructure Repositories
========================================

SQLAlchemy implementations of import repositories and the unit of work.
"""

from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from watchtower.config import PIPELINE_STEPS
from watchtower.core import RepositoryException
from watchtower.bulk_import.application.interfaces import (
    IImportItemRepository,
    IImportSessionRepository,
    IUnitOfWork,
)
from watchtower.bulk_import.domain import (
    AIQuestion,
    ImportItem,
    ImportSession,
    ItemState,
    SessionSummary,
)
from watchtower.bulk_import.infrastructure.models import ImportItemModel, ImportSessionModel
from watchtower.incidents.infrastructure import (
    SQLAlchemyIncidentRepository,
    SQLAlchemyPostmortemRepository,
)

# Fields that may be written next to (or independently of) a state change
ITEM_FIELDS = {
    "status_message",
    "extracted_text",
    "extracted_metadata",
    "ai_questions",
    "review_notes",
    "incident_id",
    "postmortem_id",
    "error_message",
}


def _uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise RepositoryException(f"Invalid ID: {value}")


def _optional_uuid(value: Optional[str]) -> Optional[UUID]:
    return _uuid(value) if value else None


def _item_values(fields: dict) -> dict:
    unknown = set(fields) - ITEM_FIELDS
    if unknown:
        raise ValueError(f"Cannot update item fields: {sorted(unknown)}")

    values = dict(fields)
    if "ai_questions" in values:
        values["ai_questions"] = [q.to_dict() for q in values["ai_questions"]]
    if "review_notes" in values:
        values["review_notes"] = list(values["review_notes"])
    for key in ("incident_id", "postmortem_id"):
        if key in values:
            values[key] = _optional_uuid(values[key])
    return values


def _session_to_entity(model: ImportSessionModel) -> ImportSession:
    return ImportSession(
        id=str(model.id),
        auto_publish=model.auto_publish,
        status=model.status,
        total_files=model.total_files,
        completed_files=model.completed_files,
        failed_files=model.failed_files,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _item_to_entity(model: ImportItemModel) -> ImportItem:
    return ImportItem(
        id=str(model.id),
        session_id=str(model.session_id),
        file_name=model.file_name,
        file_size=model.file_size,
        file_type=model.file_type,
        status=model.status,
        current_step=model.current_step,
        status_message=model.status_message,
        extracted_text=model.extracted_text,
        extracted_metadata=model.extracted_metadata,
        ai_questions=[AIQuestion.from_dict(q) for q in (model.ai_questions or [])],
        review_notes=list(model.review_notes or []),
        incident_id=str(model.incident_id) if model.incident_id else None,
        postmortem_id=str(model.postmortem_id) if model.postmortem_id else None,
        error_message=model.error_message,
        active_run_id=model.active_run_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyImportSessionRepository(IImportSessionRepository):
    """SQLAlchemy implementation for import sessions."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, session: ImportSession) -> None:
        self._session.add(ImportSessionModel(
            id=_uuid(session.id),
            status=session.status,
            auto_publish=session.auto_publish,
            total_files=session.total_files,
            completed_files=session.completed_files,
            failed_files=session.failed_files,
            created_at=session.created_at,
            updated_at=session.updated_at,
        ))
        await self._session.flush()

    async def get(self, session_id: str) -> Optional[ImportSession]:
        try:
            session_uuid = UUID(session_id)
        except ValueError:
            return None

        model = await self._session.get(ImportSessionModel, session_uuid)
        return _session_to_entity(model) if model else None

    async def list_recent(self, limit: int = 50) -> List[ImportSession]:
        stmt = (
            select(ImportSessionModel)
            .order_by(ImportSessionModel.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_session_to_entity(m) for m in result.scalars().all()]

    async def save_summary(self, session_id: str, summary: SessionSummary) -> None:
        stmt = (
            update(ImportSessionModel)
            .where(ImportSessionModel.id == _uuid(session_id))
            .values(
                status=summary.status,
                completed_files=summary.completed_files,
                failed_files=summary.failed_files,
            )
        )
        await self._session.execute(stmt)


class SQLAlchemyImportItemRepository(IImportItemRepository):
    """
    SQLAlchemy implementation for import items.

    Writes are single UPDATE statements touching only the given columns,
    so concurrent writers never overwrite each other's unrelated fields.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, item: ImportItem) -> None:
        self._session.add(ImportItemModel(
            id=_uuid(item.id),
            session_id=_uuid(item.session_id),
            file_name=item.file_name,
            file_size=item.file_size,
            file_type=item.file_type,
            status=item.status,
            current_step=item.current_step,
            status_message=item.status_message,
            ai_questions=[],
            review_notes=[],
            created_at=item.created_at,
            updated_at=item.updated_at,
        ))
        await self._session.flush()

    async def get(self, item_id: str) -> Optional[ImportItem]:
        try:
            item_uuid = UUID(item_id)
        except ValueError:
            return None

        stmt = select(ImportItemModel).where(ImportItemModel.id == item_uuid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _item_to_entity(model) if model else None

    async def list_for_session(self, session_id: str) -> List[ImportItem]:
        stmt = (
            select(ImportItemModel)
            .where(ImportItemModel.session_id == _uuid(session_id))
            .order_by(ImportItemModel.created_at, ImportItemModel.file_name)
        )
        result = await self._session.execute(stmt)
        return [_item_to_entity(m) for m in result.scalars().all()]

    async def list_statuses(self, session_id: str) -> List[str]:
        stmt = select(ImportItemModel.status).where(
            ImportItemModel.session_id == _uuid(session_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _update(self, item_id: str, values: dict) -> None:
        stmt = (
            update(ImportItemModel)
            .where(ImportItemModel.id == _uuid(item_id))
            .values(**values)
        )
        await self._session.execute(stmt)

    async def set_state(
        self,
        item_id: str,
        state: ItemState,
        status_message: str,
        **fields
    ) -> None:
        values = _item_values(fields)
        values.update(
            status=state.status,
            current_step=state.current_step,
            status_message=status_message,
        )
        await self._update(item_id, values)

    async def update_fields(self, item_id: str, **fields) -> None:
        if fields:
            await self._update(item_id, _item_values(fields))

    async def reset_for_retry(self, item_id: str, status_message: str) -> None:
        await self.set_state(
            item_id,
            ItemState.queued(),
            status_message,
            error_message=None,
            extracted_text=None,
            extracted_metadata=None,
            ai_questions=[],
            review_notes=[],
            incident_id=None,
            postmortem_id=None,
        )

    async def acquire_lease(self, item_id: str, run_id: str) -> bool:
        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.id == _uuid(item_id),
                ImportItemModel.active_run_id.is_(None),
            )
            .values(active_run_id=run_id)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def release_lease(self, item_id: str, run_id: str) -> None:
        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.id == _uuid(item_id),
                ImportItemModel.active_run_id == run_id,
            )
            .values(active_run_id=None)
        )
        await self._session.execute(stmt)

    async def release_all_leases(self) -> List[str]:
        interrupted = or_(
            ImportItemModel.active_run_id.is_not(None),
            ImportItemModel.status.in_(PIPELINE_STEPS),
        )
        result = await self._session.execute(select(ImportItemModel.id).where(interrupted))
        item_ids = [str(item_id) for item_id in result.scalars().all()]
        if item_ids:
            await self._session.execute(
                update(ImportItemModel)
                .where(ImportItemModel.active_run_id.is_not(None))
                .values(active_run_id=None)
            )
        return item_ids


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Unit of work over one AsyncSession."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_maker()
        self.sessions = SQLAlchemyImportSessionRepository(self._session)
        self.items = SQLAlchemyImportItemRepository(self._session)
        self.incidents = SQLAlchemyIncidentRepository(self._session)
        self.postmortems = SQLAlchemyPostmortemRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self._session.commit()
            else:
                await self._session.rollback()
        finally:
            await self._session.close()
            self._session = None


def unit_of_work_factory(
    session_maker: async_sessionmaker[AsyncSession]
) -> Callable[[], IUnitOfWork]:
    """Callable producing a fresh unit of work per transaction."""
    def factory() -> IUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker)
    return factory
