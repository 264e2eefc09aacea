"""
Session Aggregation
===================

Keeps session status and counters in line with item statuses, and serves
the read side of the import API.
"""

from typing import Callable, List, Tuple

from watchtower.core import ResourceNotFoundException
from watchtower.bulk_import.application.interfaces import IUnitOfWork
from watchtower.bulk_import.domain import ImportItem, ImportSession, SessionSummary, summarize_session


async def refresh_session(uow: IUnitOfWork, session_id: str) -> SessionSummary:
    """Recompute and store a session's status from its items."""
    summary = summarize_session(await uow.items.list_statuses(session_id))
    await uow.sessions.save_summary(session_id, summary)
    return summary


class ImportQueryService:
    """Read access to sessions and items."""

    def __init__(self, uow_factory: Callable[[], IUnitOfWork]):
        self._uow_factory = uow_factory

    async def list_sessions(self, limit: int = 50) -> List[ImportSession]:
        async with self._uow_factory() as uow:
            return await uow.sessions.list_recent(limit)

    async def get_session(self, session_id: str) -> Tuple[ImportSession, List[ImportItem]]:
        async with self._uow_factory() as uow:
            session = await uow.sessions.get(session_id)
            if session is None:
                raise ResourceNotFoundException("Import session", session_id)
            items = await uow.items.list_for_session(session_id)
        return session, items

    async def get_item(self, item_id: str) -> ImportItem:
        async with self._uow_factory() as uow:
            item = await uow.items.get(item_id)
        if item is None:
            raise ResourceNotFoundException("Import item", item_id)
        return item
