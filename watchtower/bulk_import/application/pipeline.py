"""
Import Pipeline
===============

Drives one import item through text extraction, metadata extraction,
ticket lookup, incident creation and postmortem generation.

Every state change is persisted before the step runs, so a paused item
resumes at exactly the step it stopped at. Steps whose output is already
stored are skipped on resume.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from watchtower.config import (
    ItemStatus, PipelineStep, QuestionField, Settings, PIPELINE_STEPS,
)
from watchtower.core import ApplicationException, DomainException, ImportConflictException
from watchtower.bulk_import.application.incidents import IncidentResolver
from watchtower.bulk_import.application.interfaces import ITextExtractor, IUnitOfWork, IUploadStorage
from watchtower.bulk_import.application.metadata import MetadataExtractor
from watchtower.bulk_import.application.postmortems import PostmortemGenerator
from watchtower.bulk_import.application.sessions import refresh_session
from watchtower.bulk_import.domain import (
    AIQuestion, ImportItem, ImportSession, ItemState, is_negative_answer,
)
from watchtower.incidents.domain import IncidentRef, TicketRecord
from watchtower.shared.infrastructure.grafana import GrafanaOTLPExporter, get_grafana_exporter
from watchtower.shared.infrastructure.logging import get_logger, log_latency
from watchtower.shared.infrastructure.tasks import BackgroundTaskRunner

logger = get_logger(__name__)

GENERATE_KEYWORD = "generate"
INCIDENT_NUMBER_QUESTION = (
    "We could not find an incident number in this document. Please provide it "
    "(e.g. INC0012345), or answer \"generate\" to create one automatically."
)
PROCEED_WITHOUT_TICKET_QUESTION = (
    "Incident {number} was not found in ServiceNow. Should the import continue "
    "using only the data from the document? (yes/no)"
)
IMPORT_CANCELLED = "Import cancelled"

STEP_MESSAGES = {
    PipelineStep.EXTRACTING_TEXT: "Extracting text from document",
    PipelineStep.EXTRACTING_METADATA: "Extracting metadata with AI",
    PipelineStep.LOOKING_UP_TICKET: "Looking up incident in ServiceNow",
    PipelineStep.GENERATING_INCIDENT: "Creating incident",
    PipelineStep.GENERATING_POSTMORTEM: "Generating postmortem with AI",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass
class _Run:
    """Mutable state of one pipeline run."""

    item: ImportItem
    session: ImportSession
    step: str
    ticket: Optional[TicketRecord] = None
    ticket_checked: bool = False
    incident: Optional[IncidentRef] = None
    paused: bool = False

    @property
    def metadata(self) -> dict:
        return self.item.extracted_metadata or {}

    def answer_for(self, field_name: str) -> Optional[str]:
        answers = [q.answer for q in self.item.ai_questions if q.field == field_name and q.answered]
        return answers[-1] if answers else None

    @property
    def number_generated(self) -> bool:
        """True when the incident number was synthesized on request."""
        answer = self.answer_for(QuestionField.INCIDENT_NUMBER)
        return (answer or "").strip().lower() == GENERATE_KEYWORD


class ImportPipeline:
    """
    Per-item state machine.

    start() takes the item's run lease and schedules run() as a detached
    task; run() executes the remaining steps and releases the lease.
    """

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        storage: IUploadStorage,
        text_extractor: ITextExtractor,
        metadata_extractor: MetadataExtractor,
        incident_resolver: IncidentResolver,
        postmortem_generator: PostmortemGenerator,
        task_runner: BackgroundTaskRunner,
        settings: Settings,
        exporter: Optional[GrafanaOTLPExporter] = None
    ):
        self._uow_factory = uow_factory
        self._storage = storage
        self._text_extractor = text_extractor
        self._metadata_extractor = metadata_extractor
        self._resolver = incident_resolver
        self._generator = postmortem_generator
        self._tasks = task_runner
        self._extracted_text_limit = settings.extracted_text_limit
        self._exporter = exporter or get_grafana_exporter()
        self._steps = {
            PipelineStep.EXTRACTING_TEXT: self._extract_text,
            PipelineStep.EXTRACTING_METADATA: self._extract_metadata,
            PipelineStep.LOOKING_UP_TICKET: self._look_up_ticket,
            PipelineStep.GENERATING_INCIDENT: self._generate_incident,
            PipelineStep.GENERATING_POSTMORTEM: self._generate_postmortem,
        }

    # ========== Run lifecycle ==========

    async def start(self, item_id: str) -> str:
        """
        Acquire the run lease and schedule the run.

        Raises:
            ImportConflictException: If another run holds the lease
        """
        run_id = str(uuid.uuid4())
        async with self._uow_factory() as uow:
            acquired = await uow.items.acquire_lease(item_id, run_id)

        if not acquired:
            raise ImportConflictException(
                "Import item is already being processed",
                {"item_id": item_id}
            )

        self._tasks.spawn(self.run(item_id, run_id), name=f"import-item-{item_id}")
        logger.info("Pipeline run scheduled", extra={"item_id": item_id, "run_id": run_id})
        return run_id

    async def run(self, item_id: str, run_id: str) -> None:
        """
        Execute the item's remaining steps, then release the lease.

        A cancelled run keeps its lease so the next startup resumes the item.
        """
        cancelled = False
        try:
            run = await self._prepare(item_id)
            if run is not None:
                await self._execute(run)
        except asyncio.CancelledError:
            cancelled = True
            logger.warning(
                "Pipeline run cancelled, lease kept for restart",
                extra={"item_id": item_id, "run_id": run_id}
            )
            raise
        finally:
            if not cancelled:
                async with self._uow_factory() as uow:
                    await uow.items.release_lease(item_id, run_id)

    async def _prepare(self, item_id: str) -> Optional[_Run]:
        async with self._uow_factory() as uow:
            item = await uow.items.get(item_id)
            session = await uow.sessions.get(item.session_id) if item else None

        if item is None or session is None:
            logger.warning("Pipeline run for unknown item", extra={"item_id": item_id})
            return None

        if item.state.is_terminal or item.open_questions:
            logger.warning(
                "Pipeline run refused",
                extra={
                    "item_id": item_id,
                    "status": item.status,
                    "open_questions": len(item.open_questions),
                }
            )
            return None

        return _Run(item=item, session=session, step=item.state.resume_step)

    async def _execute(self, run: _Run) -> None:
        start = PIPELINE_STEPS.index(run.step)
        try:
            for step in PIPELINE_STEPS[start:]:
                run.step = step
                await self._steps[step](run)
                if run.paused:
                    return
            await self._complete(run)
        except Exception as e:
            await self._fail(run, e)

    # ========== Persistence helpers ==========

    async def _transition(self, run: _Run, state: ItemState, message: str, **fields) -> None:
        async with self._uow_factory() as uow:
            await uow.items.set_state(run.item.id, state, message, **fields)
            await refresh_session(uow, run.item.session_id)

        run.item.status = state.status
        run.item.current_step = state.current_step
        run.item.status_message = message
        for key, value in fields.items():
            setattr(run.item, key, value)

    async def _save(self, run: _Run, **fields) -> None:
        async with self._uow_factory() as uow:
            await uow.items.update_fields(run.item.id, **fields)
        for key, value in fields.items():
            setattr(run.item, key, value)

    async def _enter(self, run: _Run) -> None:
        await self._transition(run, ItemState.running(run.step), STEP_MESSAGES[run.step])

    async def _pause(self, run: _Run, questions: List[AIQuestion], message: str) -> None:
        await self._transition(
            run,
            ItemState.awaiting_input(run.step),
            message,
            ai_questions=run.item.ai_questions + questions,
        )
        run.paused = True
        logger.info(
            "Import item awaiting input",
            extra={
                "item_id": run.item.id,
                "session_id": run.item.session_id,
                "step": run.step,
                "fields": [q.field for q in questions],
            }
        )
        await self._exporter.export_import_outcome(ItemStatus.AWAITING_INPUT, run.item.file_type)

    async def _complete(self, run: _Run) -> None:
        await self._transition(run, ItemState.completed(), "Import completed")
        logger.info(
            "Import item completed",
            extra={
                "item_id": run.item.id,
                "session_id": run.item.session_id,
                "incident_id": run.item.incident_id,
                "postmortem_id": run.item.postmortem_id,
            }
        )
        await self._exporter.export_import_outcome(ItemStatus.COMPLETED, run.item.file_type)

    async def _fail(self, run: _Run, error: Exception) -> None:
        if isinstance(error, ApplicationException):
            message = error.message
        else:
            message = str(error) or type(error).__name__

        await self._transition(
            run,
            ItemState.failed(run.step),
            f"Failed: {message}",
            error_message=message,
            ai_questions=[q for q in run.item.ai_questions if q.answered],
        )
        logger.error(
            "Import item failed",
            extra={
                "item_id": run.item.id,
                "session_id": run.item.session_id,
                "step": run.step,
                "error_type": type(error).__name__,
                "error": message,
            }
        )
        await self._exporter.export_import_outcome(ItemStatus.FAILED, run.item.file_type)

    # ========== Steps ==========

    async def _extract_text(self, run: _Run) -> None:
        item = run.item
        if item.extracted_text:
            return

        await self._enter(run)
        path = self._storage.path_for(item.id, item.file_name)
        with log_latency(logger, "text_extraction", item_id=item.id, file_type=item.file_type):
            text = await self._text_extractor.extract_text(path, item.file_type)
        await self._save(run, extracted_text=text[:self._extracted_text_limit])

    async def _extract_metadata(self, run: _Run) -> None:
        item = run.item
        if item.extracted_metadata is not None:
            return

        await self._enter(run)
        metadata = await self._metadata_extractor.extract(item.extracted_text, item.id)
        await self._save(run, extracted_metadata=metadata)

    async def _look_up_ticket(self, run: _Run) -> None:
        if run.item.incident_id:
            return

        await self._enter(run)
        number = run.metadata.get("incidentNumber")
        if not number:
            await self._pause(
                run,
                [AIQuestion.ask(QuestionField.INCIDENT_NUMBER, INCIDENT_NUMBER_QUESTION)],
                "Incident number not found in document",
            )
            return

        # Synthesized numbers never exist in ServiceNow
        if run.number_generated:
            run.ticket_checked = True
            logger.info(
                "Ticket lookup skipped for generated incident number",
                extra={"item_id": run.item.id, "incident_number": number}
            )
            return

        run.ticket = await self._resolver.lookup(number)
        run.ticket_checked = True
        if run.ticket is not None or not self._resolver.ticket_system_enabled:
            return

        proceed = run.answer_for(QuestionField.PROCEED_WITHOUT_TICKET)
        if proceed is None:
            await self._pause(
                run,
                [AIQuestion.ask(
                    QuestionField.PROCEED_WITHOUT_TICKET,
                    PROCEED_WITHOUT_TICKET_QUESTION.format(number=number),
                )],
                f"Incident {number} not found in ServiceNow",
            )
        elif is_negative_answer(proceed):
            raise DomainException(IMPORT_CANCELLED, {"incident_number": number})

    async def _generate_incident(self, run: _Run) -> None:
        item = run.item
        if item.incident_id:
            return

        await self._enter(run)
        number = run.metadata.get("incidentNumber")
        if not run.ticket_checked and number and not run.number_generated:
            run.ticket = await self._resolver.lookup(number)

        resolved = await self._resolver.resolve(run.metadata, run.ticket, item.id)
        run.incident = resolved.incident
        await self._save(run, incident_id=resolved.incident.id)

    async def _generate_postmortem(self, run: _Run) -> None:
        item = run.item
        await self._enter(run)

        if run.incident is None and item.incident_id:
            async with self._uow_factory() as uow:
                run.incident = await uow.incidents.get(item.incident_id)

        known = dict(run.metadata)
        if run.incident is not None:
            known.update(
                incidentNumber=run.incident.incident_number,
                title=run.incident.title,
                severity=run.incident.severity,
                detectedAt=_iso(run.incident.detected_at) or known.get("detectedAt"),
                resolvedAt=_iso(run.incident.resolved_at) or known.get("resolvedAt"),
            )

        outcome = await self._generator.generate(
            item.incident_id,
            item.extracted_text,
            known,
            answered_fields=item.answered_fields,
            auto_publish=run.session.auto_publish,
            item_id=item.id,
        )

        fields = {"review_notes": outcome.review_notes}
        if item.postmortem_id is None:
            fields["postmortem_id"] = outcome.postmortem_id
        await self._save(run, **fields)

        if outcome.needs_input:
            await self._pause(
                run,
                outcome.questions,
                f"{len(outcome.questions)} question(s) need an answer before the postmortem is final",
            )
