"""
Bulk Import Ports
==================

Interfaces the import services depend on. Implementations live in the
infrastructure layer; tests substitute fakes.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from watchtower.bulk_import.domain import ImportItem, ImportSession, ItemState, SessionSummary
from watchtower.incidents.application import IIncidentRepository, IPostmortemRepository
from watchtower.incidents.domain import JournalEntry, TicketRecord


# ========== Repository Interfaces ==========

class IImportSessionRepository(ABC):
    """Interface for import session data access."""

    @abstractmethod
    async def create(self, session: ImportSession) -> None:
        """Store a new session."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ImportSession]:
        """Get session by ID."""

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> List[ImportSession]:
        """Sessions, newest first."""

    @abstractmethod
    async def save_summary(self, session_id: str, summary: SessionSummary) -> None:
        """Persist derived status and counters."""


class IImportItemRepository(ABC):
    """
    Interface for import item data access.

    status and current_step are only ever written through set_state.
    """

    @abstractmethod
    async def create(self, item: ImportItem) -> None:
        """Store a new item."""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[ImportItem]:
        """Get item by ID."""

    @abstractmethod
    async def list_for_session(self, session_id: str) -> List[ImportItem]:
        """Items of a session in upload order."""

    @abstractmethod
    async def list_statuses(self, session_id: str) -> List[str]:
        """Statuses of every item of a session."""

    @abstractmethod
    async def set_state(
        self,
        item_id: str,
        state: ItemState,
        status_message: str,
        **fields
    ) -> None:
        """Move an item to a new state, optionally updating other fields."""

    @abstractmethod
    async def update_fields(self, item_id: str, **fields) -> None:
        """Field-level update of step outputs."""

    @abstractmethod
    async def reset_for_retry(self, item_id: str, status_message: str) -> None:
        """Requeue a failed item and clear every step output."""

    @abstractmethod
    async def acquire_lease(self, item_id: str, run_id: str) -> bool:
        """Take the run lease if nobody holds it."""

    @abstractmethod
    async def release_lease(self, item_id: str, run_id: str) -> None:
        """Drop the run lease if run_id still holds it."""

    @abstractmethod
    async def release_all_leases(self) -> List[str]:
        """Drop every lease; returns the IDs of items that held one or were mid-step."""


class IUnitOfWork(ABC):
    """
    Groups repositories over one transaction.

    Commits when the block exits cleanly, rolls back otherwise.
    """

    sessions: IImportSessionRepository
    items: IImportItemRepository
    incidents: IIncidentRepository
    postmortems: IPostmortemRepository

    @abstractmethod
    async def __aenter__(self) -> "IUnitOfWork":
        """Open the transaction."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Commit or roll back."""


# ========== External Service Interfaces ==========

class IUploadStorage(ABC):
    """Interface for uploaded file storage."""

    @abstractmethod
    async def save(self, item_id: str, file_name: str, content: bytes) -> Path:
        """Store an upload for an item."""

    @abstractmethod
    def path_for(self, item_id: str, file_name: str) -> Path:
        """Location of an item's upload."""

    @abstractmethod
    def exists(self, item_id: str, file_name: str) -> bool:
        """Check whether an item's upload is still on disk."""

    @abstractmethod
    def delete(self, item_id: str, file_name: str) -> None:
        """Remove an item's upload if present."""


class ITextExtractor(ABC):
    """Interface for document text extraction."""

    @abstractmethod
    async def extract_text(self, path: Path, file_type: str) -> str:
        """Extract plain text from a stored document."""


class ITicketSystem(ABC):
    """Interface for the external ticket system."""

    @abstractmethod
    def is_enabled(self) -> bool:
        """True when the integration is configured."""

    @abstractmethod
    async def find_by_number(self, number: str) -> Optional[TicketRecord]:
        """Look up an incident by ticket number."""

    @abstractmethod
    async def find_by_correlation_id(self, correlation_id: str) -> Optional[TicketRecord]:
        """Look up an incident by correlation ID."""

    @abstractmethod
    async def get_activity(self, sys_id: str) -> List[JournalEntry]:
        """Work notes and comments of an incident, oldest first."""
