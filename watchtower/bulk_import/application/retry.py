"""
Retry Controller
================

Re-drives failed import items from scratch, one at a time or for a whole
session. Items whose uploaded file is gone cannot be retried.
"""

from dataclasses import dataclass, field
from typing import Callable, List

from watchtower.config import ItemStatus
from watchtower.core import (
    ImportConflictException,
    ResourceNotFoundException,
    RetryBlockedException,
    ValidationException,
)
from watchtower.bulk_import.application.interfaces import IUnitOfWork, IUploadStorage
from watchtower.bulk_import.application.pipeline import ImportPipeline
from watchtower.bulk_import.application.sessions import refresh_session
from watchtower.bulk_import.domain import ImportItem
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

RETRY_MESSAGE = "Retrying - queued for processing"
MISSING_FILE_REASON = "File no longer exists"


@dataclass
class RetryReport:
    """Outcome of a session-wide retry."""

    session_id: str
    retried: List[str] = field(default_factory=list)
    skipped: List[dict] = field(default_factory=list)

    @property
    def retried_count(self) -> int:
        return len(self.retried)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


class RetryController:
    """Resets failed items and restarts their pipeline runs."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        storage: IUploadStorage,
        pipeline: ImportPipeline
    ):
        self._uow_factory = uow_factory
        self._storage = storage
        self._pipeline = pipeline

    async def retry_item(self, item_id: str) -> ImportItem:
        """
        Retry a single failed item.

        Raises:
            ResourceNotFoundException: Unknown item
            ValidationException: Item is not failed
            RetryBlockedException: Uploaded file is gone (item untouched)
            ImportConflictException: A run still holds the item
        """
        async with self._uow_factory() as uow:
            item = await uow.items.get(item_id)
            if item is None:
                raise ResourceNotFoundException("Import item", item_id)
            if item.status != ItemStatus.FAILED:
                raise ValidationException(
                    "Only failed items can be retried",
                    {"item_id": item_id, "status": item.status}
                )
            if not self._storage.exists(item.id, item.file_name):
                raise RetryBlockedException(item.id, item.file_name)
            if item.is_running:
                raise ImportConflictException(
                    "Item is already being processed",
                    {"item_id": item_id}
                )

            await uow.items.reset_for_retry(item_id, RETRY_MESSAGE)
            await refresh_session(uow, item.session_id)

        logger.info(
            "Retrying import item",
            extra={"item_id": item_id, "session_id": item.session_id, "file_name": item.file_name}
        )
        await self._pipeline.start(item_id)

        async with self._uow_factory() as uow:
            return await uow.items.get(item_id)

    async def retry_failed(self, session_id: str) -> RetryReport:
        """
        Retry every failed item of a session whose file still exists.

        Raises:
            ResourceNotFoundException: Unknown session
            ValidationException: Session has no failed items
        """
        report = RetryReport(session_id=session_id)

        async with self._uow_factory() as uow:
            session = await uow.sessions.get(session_id)
            if session is None:
                raise ResourceNotFoundException("Import session", session_id)

            failed = [
                item for item in await uow.items.list_for_session(session_id)
                if item.status == ItemStatus.FAILED
            ]
            if not failed:
                raise ValidationException(
                    "Session has no failed items to retry",
                    {"session_id": session_id}
                )

            for item in failed:
                if not self._storage.exists(item.id, item.file_name):
                    report.skipped.append({
                        "id": item.id,
                        "fileName": item.file_name,
                        "reason": MISSING_FILE_REASON,
                    })
                elif item.is_running:
                    report.skipped.append({
                        "id": item.id,
                        "fileName": item.file_name,
                        "reason": "Item is already being processed",
                    })
                else:
                    await uow.items.reset_for_retry(item.id, RETRY_MESSAGE)
                    report.retried.append(item.id)

            await refresh_session(uow, session_id)

        for item_id in report.retried:
            try:
                await self._pipeline.start(item_id)
            except ImportConflictException:
                logger.warning(
                    "Retried item already picked up by another run",
                    extra={"item_id": item_id, "session_id": session_id}
                )

        logger.info(
            "Retried failed items",
            extra={
                "session_id": session_id,
                "retried": report.retried_count,
                "skipped": report.skipped_count,
            }
        )
        return report
