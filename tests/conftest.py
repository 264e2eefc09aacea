"""
Shared fixtures: settings, an on-disk SQLite database, scripted model and
ServiceNow fakes, and a fully wired BulkImportServices.
"""

import asyncio
import json
from collections import defaultdict, deque
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from watchtower.config import Settings
from watchtower.infrastructure.database import build_engine, build_session_maker, create_tables
from watchtower.infrastructure.llm import CompletionResult, ICompletionClient
from watchtower.bulk_import.application import ITicketSystem, UploadedFile
from watchtower.bulk_import.infrastructure import UploadStorage
from watchtower.bulk_import.services import build_bulk_import_services
from watchtower.core import TicketSystemException
from watchtower.incidents.domain import JournalEntry, TicketRecord
from watchtower.shared.infrastructure.grafana import GrafanaOTLPExporter


DEFAULT_METADATA = {
    "incidentNumber": "INC0012345",
    "title": "Payment gateway timeouts",
    "description": "Card payments timed out for EU customers.",
    "severity": "high",
    "detectedAt": "2024-01-15T10:00:00Z",
    "resolvedAt": "2024-01-15T12:30:00Z",
    "affectedService": "payments",
    "affectedCountries": ["DE", "FR"],
    "summary": "Connection pool exhaustion in the gateway.",
    "hasActionItems": True,
    "actionItemCount": 2,
    "hasMitigationSteps": True,
    "hasBusinessImpact": True,
    "hasTimeline": True,
}

DEFAULT_POSTMORTEM = {
    "businessImpact": {
        "application": "payments",
        "startTime": "2024-01-15T10:00:00Z",
        "endTime": "2024-01-15T12:30:00Z",
        "duration": "PT2H30M",
        "description": "Card payments failed for 2.5 hours.",
        "affectedCountries": ["DE", "FR"],
        "regulatoryReporting": False,
        "regulatoryEntity": None,
    },
    "mitigation": {"description": "Gateway pods restarted and pool size raised."},
    "causalAnalysis": [
        {
            "interceptionLayer": "operate",
            "cause": "Capacity",
            "subCause": "Connection pool",
            "description": "Pool sized for half the peak load.",
            "actionItems": [{"description": "Autoscale the pool", "priority": "high"}],
        }
    ],
    "missingFields": [],
}

POSTMORTEM_DOCUMENT = b"""Postmortem INC0012345 - Payment gateway timeouts
Severity: high
Detected 2024-01-15 10:00 UTC, resolved 12:30 UTC.
Root cause: connection pool exhaustion.
"""


def completion(payload, stop_reason: str = "end_turn") -> CompletionResult:
    """A model answer; dicts are serialised as JSON."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return CompletionResult(text=text, stop_reason=stop_reason, model="scripted-model")


class ScriptedCompletionClient(ICompletionClient):
    """
    Completion client answering from per-operation queues.

    Operations containing "postmortem" read the postmortem queue, all
    others the metadata queue. An empty queue falls back to the default
    payloads. Queued exceptions are raised. Setting `hold` parks every
    call until the event is set.
    """

    def __init__(self):
        self.queues: Dict[str, deque] = defaultdict(deque)
        self.calls: List[tuple] = []
        self.prompts: List[tuple] = []
        self.hold: Optional[asyncio.Event] = None
        self.holding = asyncio.Event()
        self.defaults = {"metadata": DEFAULT_METADATA, "postmortem": DEFAULT_POSTMORTEM}

    @staticmethod
    def _kind(operation: str) -> str:
        return "postmortem" if "postmortem" in operation else "metadata"

    def queue(self, kind: str, *responses) -> None:
        self.queues[kind].extend(responses)

    def calls_for(self, kind: str) -> List[tuple]:
        return [c for c in self.calls if self._kind(c[0]) == kind]

    async def generate_completion(
        self,
        prompt: str,
        max_tokens: int,
        operation: str = "completion"
    ) -> CompletionResult:
        kind = self._kind(operation)
        self.calls.append((operation, max_tokens))
        self.prompts.append((operation, prompt))
        if self.hold is not None:
            self.holding.set()
            await self.hold.wait()
        if self.queues[kind]:
            response = self.queues[kind].popleft()
        else:
            response = completion(self.defaults[kind])
        if isinstance(response, Exception):
            raise response
        return response


class FakeTicketSystem(ITicketSystem):
    """In-memory ServiceNow."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.tickets: Dict[str, TicketRecord] = {}
        self.activity: Dict[str, List[JournalEntry]] = {}
        self.fail = False
        self.lookups: List[str] = []

    def is_enabled(self) -> bool:
        return self.enabled

    async def find_by_number(self, number: str) -> Optional[TicketRecord]:
        self.lookups.append(number)
        if self.fail:
            raise TicketSystemException("Table API returned 503")
        return self.tickets.get(number)

    async def find_by_correlation_id(self, correlation_id: str) -> Optional[TicketRecord]:
        if self.fail:
            raise TicketSystemException("Table API returned 503")
        for ticket in self.tickets.values():
            if ticket.correlation_id == correlation_id:
                return ticket
        return None

    async def get_activity(self, sys_id: str) -> List[JournalEntry]:
        return list(self.activity.get(sys_id, []))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        llm_provider="mock",
        upload_dir=tmp_path / "uploads",
        servicenow_instance_url=None,
        servicenow_username=None,
        servicenow_password=None,
        grafana_host=None,
        grafana_api_key=None,
        grafana_instance_id=None,
    )


@pytest.fixture
async def session_maker(tmp_path: Path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'watchtower.db'}")
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def llm() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def ticket_system() -> FakeTicketSystem:
    return FakeTicketSystem()


@pytest.fixture
def storage(settings: Settings) -> UploadStorage:
    return UploadStorage(settings.upload_dir)


@pytest.fixture
def services(settings, session_maker, llm, ticket_system, storage):
    return build_bulk_import_services(
        settings,
        session_maker,
        completion_client=llm,
        ticket_system=ticket_system,
        storage=storage,
        exporter=GrafanaOTLPExporter(),
    )


@pytest.fixture
def upload(services):
    """Upload text documents and wait for every run to settle."""
    async def _upload(*contents: bytes, auto_publish: bool = False):
        files = [
            UploadedFile(file_name=f"postmortem_{i}.txt", content_type="text/plain", content=content)
            for i, content in enumerate(contents or (POSTMORTEM_DOCUMENT,))
        ]
        session, items = await services.uploads.upload(files, auto_publish=auto_publish)
        await services.tasks.drain()
        return session, items
    return _upload
