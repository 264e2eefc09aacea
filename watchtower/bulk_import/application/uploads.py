"""
Upload Service
==============

Validates an uploaded batch, stores the files, creates the session and
its items and starts one pipeline run per item.
"""

import os
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from watchtower.config import ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES, Settings
from watchtower.core import ImportConflictException, ValidationException
from watchtower.bulk_import.application.interfaces import IUnitOfWork, IUploadStorage
from watchtower.bulk_import.application.pipeline import ImportPipeline
from watchtower.bulk_import.domain import ImportItem, ImportSession, ItemState
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

QUEUED_MESSAGE = "File uploaded - queued for processing"

MIME_TYPES_BY_EXTENSION = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
}


@dataclass
class UploadedFile:
    """A file received from the client, fully read into memory."""

    file_name: str
    content_type: Optional[str]
    content: bytes

    @property
    def extension(self) -> str:
        return os.path.splitext(self.file_name)[1].lower()

    @property
    def size(self) -> int:
        return len(self.content)


def resolve_file_type(upload: UploadedFile) -> Optional[str]:
    """MIME type of a supported upload, None when unsupported."""
    if upload.content_type in ALLOWED_MIME_TYPES:
        return upload.content_type
    if upload.extension in ALLOWED_EXTENSIONS:
        return MIME_TYPES_BY_EXTENSION[upload.extension]
    return None


class UploadService:
    """Entry point of a bulk import."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        storage: IUploadStorage,
        pipeline: ImportPipeline,
        settings: Settings
    ):
        self._uow_factory = uow_factory
        self._storage = storage
        self._pipeline = pipeline
        self._max_files = settings.max_files_per_upload
        self._max_size = settings.max_upload_size_bytes
        self._max_size_mb = settings.max_upload_size_mb

    def validate(self, files: List[UploadedFile]) -> List[str]:
        """
        Validate a batch and resolve the file type of each file.

        Raises:
            ValidationException: Empty batch, too many files, unsupported
                type or oversize file
        """
        if not files:
            raise ValidationException("No files uploaded")
        if len(files) > self._max_files:
            raise ValidationException(
                f"Too many files (max {self._max_files} per upload)",
                {"count": len(files), "max": self._max_files}
            )

        file_types = []
        for upload in files:
            file_type = resolve_file_type(upload)
            if file_type is None:
                raise ValidationException(
                    f"Unsupported file type: {upload.file_name}. Allowed: PDF, Word (.docx), plain text",
                    {"file_name": upload.file_name, "content_type": upload.content_type}
                )
            if upload.size > self._max_size:
                raise ValidationException(
                    f"File too large: {upload.file_name} (max {self._max_size_mb} MB)",
                    {"file_name": upload.file_name, "size": upload.size}
                )
            file_types.append(file_type)
        return file_types

    async def upload(
        self,
        files: List[UploadedFile],
        auto_publish: bool = False
    ) -> Tuple[ImportSession, List[ImportItem]]:
        """
        Create a session for a batch and start processing every file.

        Validation happens before anything is written. Processing runs
        detached; the returned items are still queued.
        """
        file_types = self.validate(files)

        session = ImportSession(id=str(uuid.uuid4()), auto_publish=auto_publish, total_files=len(files))
        queued = ItemState.queued()
        items = [
            ImportItem(
                id=str(uuid.uuid4()),
                session_id=session.id,
                file_name=upload.file_name,
                file_size=upload.size,
                file_type=file_type,
                status=queued.status,
                current_step=queued.current_step,
                status_message=QUEUED_MESSAGE,
            )
            for upload, file_type in zip(files, file_types)
        ]

        try:
            for item, upload in zip(items, files):
                await self._storage.save(item.id, item.file_name, upload.content)
            async with self._uow_factory() as uow:
                await uow.sessions.create(session)
                for item in items:
                    await uow.items.create(item)
        except Exception:
            for item in items:
                self._storage.delete(item.id, item.file_name)
            raise

        logger.info(
            "Bulk import session created",
            extra={
                "session_id": session.id,
                "total_files": session.total_files,
                "auto_publish": auto_publish,
            }
        )

        for item in items:
            try:
                await self._pipeline.start(item.id)
            except ImportConflictException:
                logger.warning("Uploaded item already running", extra={"item_id": item.id})

        return session, items
