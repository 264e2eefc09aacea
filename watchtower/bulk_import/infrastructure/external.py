"""
Bulk Import External Service Adapters
======================================

Adapters for the services the import pipeline talks to: local upload
storage, document text extraction and the ServiceNow Table API.

Implements the interfaces defined in the application layer.
"""

import asyncio
import io
import time
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from watchtower.config import Settings, Severity
from watchtower.core import TextExtractionException, TicketSystemException
from watchtower.bulk_import.application.interfaces import ITextExtractor, ITicketSystem, IUploadStorage
from watchtower.bulk_import.domain import stored_file_name
from watchtower.incidents.domain import JournalEntry, TicketRecord
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Upload Storage ==========

class UploadStorage(IUploadStorage):
    """Stores uploads as <item_id>_<sanitised name> under one directory."""

    def __init__(self, upload_dir: Path):
        self._upload_dir = Path(upload_dir)
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, item_id: str, file_name: str) -> Path:
        return self._upload_dir / stored_file_name(item_id, file_name)

    async def save(self, item_id: str, file_name: str, content: bytes) -> Path:
        path = self.path_for(item_id, file_name)
        await asyncio.to_thread(path.write_bytes, content)
        logger.debug("Upload stored", extra={"item_id": item_id, "path": str(path), "size": len(content)})
        return path

    def exists(self, item_id: str, file_name: str) -> bool:
        return self.path_for(item_id, file_name).is_file()

    def delete(self, item_id: str, file_name: str) -> None:
        self.path_for(item_id, file_name).unlink(missing_ok=True)


# ========== Text Extraction ==========

PDF_TYPES = ("application/pdf",)
WORD_TYPES = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)


def _extract_pdf(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p.strip() for p in pages if p.strip())


def _extract_docx(content: bytes) -> str:
    document = Document(io.BytesIO(content))
    lines = [p.text for p in document.paragraphs if p.text.strip()]

    for table in document.tables:
        for row in table.rows:
            cells = []
            for cell in row.cells:
                text = cell.text.strip()
                # Merged cells repeat once per grid column
                if text and text not in cells:
                    cells.append(text)
            if cells:
                lines.append(" | ".join(cells))
    return "\n".join(lines)


class DocumentTextExtractor(ITextExtractor):
    """
    Plain text from PDF, Word and text files.

    Word means the OOXML .docx format, read with python-docx (body
    paragraphs, then table rows). Anything that is neither PDF nor Word is
    decoded as UTF-8.
    """

    def _extract(self, path: Path, file_type: str) -> str:
        content = path.read_bytes()
        suffix = path.suffix.lower()

        if file_type in PDF_TYPES or suffix == ".pdf":
            return _extract_pdf(content)
        if file_type in WORD_TYPES or suffix == ".docx":
            return _extract_docx(content)
        return content.decode("utf-8", errors="replace")

    async def extract_text(self, path: Path, file_type: str) -> str:
        """
        Extract text from a stored upload.

        Raises:
            TextExtractionException: Unreadable file or no text at all
        """
        try:
            text = await asyncio.to_thread(self._extract, Path(path), file_type)
        except (OSError, ValueError, PdfReadError, PackageNotFoundError, zipfile.BadZipFile, KeyError) as e:
            logger.error(
                "Text extraction failed",
                extra={"path": str(path), "file_type": file_type, "error": str(e)}
            )
            raise TextExtractionException(
                f"Text extraction failed: {e}",
                {"path": str(path), "file_type": file_type}
            )

        text = text.strip()
        if not text:
            raise TextExtractionException(
                "No text could be extracted from the document",
                {"path": str(path), "file_type": file_type}
            )

        logger.info(
            "Text extracted",
            extra={"path": str(path), "file_type": file_type, "characters": len(text)}
        )
        return text


# ========== ServiceNow ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.time() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.time()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


# ServiceNow priority (1-5) to dashboard severity
PRIORITY_SEVERITY = {
    "1": Severity.CRITICAL,
    "2": Severity.HIGH,
    "3": Severity.MEDIUM,
    "4": Severity.LOW,
    "5": Severity.LOW,
}

INCIDENT_FIELDS = (
    "sys_id,number,short_description,description,priority,"
    "opened_at,resolved_at,closed_at,correlation_id"
)
JOURNAL_ELEMENTS = ("work_notes", "comments")


def _parse_snow_time(value: Optional[str]) -> Optional[datetime]:
    """ServiceNow returns 'YYYY-MM-DD HH:MM:SS' in UTC."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _display(value: Any) -> Optional[str]:
    # Reference fields come back as {"value": ..., "display_value": ...}
    if isinstance(value, dict):
        value = value.get("display_value") or value.get("value")
    return str(value) if value not in (None, "") else None


class ServiceNowClient(ITicketSystem):
    """
    ServiceNow Table API client with circuit breaker and retry logic.

    Handles:
    - Incident lookup by number or correlation ID
    - Journal (work notes and comments) retrieval
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 3
    ):
        self._base_url = (settings.servicenow_instance_url or "").rstrip("/")
        self._auth = (settings.servicenow_username or "", settings.servicenow_password or "")
        self._timeout = settings.servicenow_timeout_seconds
        self._enabled = settings.servicenow_enabled
        self._transport = transport
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    def is_enabled(self) -> bool:
        return self._enabled

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth,
                timeout=self._timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    async def _get_records(self, table: str, params: Dict[str, Any]) -> List[dict]:
        if not self._enabled:
            raise TicketSystemException("ServiceNow integration is not configured")

        if not self._circuit_breaker.allow_request():
            raise TicketSystemException("Circuit breaker open", {"table": table})

        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.get(f"/api/now/table/{table}", params=params)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    return response.json().get("result", [])

                # Client errors are not worth retrying
                if 400 <= response.status_code < 500:
                    self._circuit_breaker.record_success()
                    raise TicketSystemException(
                        f"Table API returned {response.status_code}",
                        {"table": table, "status_code": response.status_code}
                    )

                last_error = f"Table API returned {response.status_code}"
                logger.warning(
                    "ServiceNow returned non-200",
                    extra={"table": table, "status_code": response.status_code, "attempt": attempt + 1}
                )

            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    "ServiceNow request failed",
                    extra={"table": table, "error": last_error, "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise TicketSystemException(last_error, {"table": table})

    def _to_ticket(self, record: dict) -> TicketRecord:
        priority = _display(record.get("priority"))
        return TicketRecord(
            sys_id=record["sys_id"],
            number=record.get("number", ""),
            title=_display(record.get("short_description")),
            description=_display(record.get("description")),
            severity=PRIORITY_SEVERITY.get((priority or "").split(" ")[0]),
            opened_at=_parse_snow_time(record.get("opened_at")),
            resolved_at=_parse_snow_time(record.get("resolved_at") or record.get("closed_at")),
            correlation_id=_display(record.get("correlation_id")),
        )

    async def _find_incident(self, query: str) -> Optional[TicketRecord]:
        records = await self._get_records("incident", {
            "sysparm_query": query,
            "sysparm_limit": 1,
            "sysparm_fields": INCIDENT_FIELDS,
        })
        return self._to_ticket(records[0]) if records else None

    async def find_by_number(self, number: str) -> Optional[TicketRecord]:
        return await self._find_incident(f"number={number}")

    async def find_by_correlation_id(self, correlation_id: str) -> Optional[TicketRecord]:
        return await self._find_incident(f"correlation_id={correlation_id}")

    async def get_activity(self, sys_id: str) -> List[JournalEntry]:
        """Work notes and comments of an incident, oldest first."""
        records = await self._get_records("sys_journal_field", {
            "sysparm_query": (
                f"element_id={sys_id}^elementIN{','.join(JOURNAL_ELEMENTS)}"
                "^ORDERBYsys_created_on"
            ),
            "sysparm_fields": "sys_id,element,value,sys_created_on,sys_created_by",
        })
        return [
            JournalEntry(
                sys_id=record["sys_id"],
                element=record.get("element", ""),
                value=record.get("value", ""),
                created_at=_parse_snow_time(record.get("sys_created_on")),
                created_by=record.get("sys_created_by"),
            )
            for record in records
        ]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
