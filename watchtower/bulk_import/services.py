"""
Bulk Import Services
====================

Wires the import services together. The application lifespan builds one
BulkImportServices and keeps it on app.state; tests build their own with
fake collaborators.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from watchtower.config import Settings
from watchtower.bulk_import.application import (
    ImportPipeline,
    ImportQueryService,
    IncidentResolver,
    ITextExtractor,
    ITicketSystem,
    IUnitOfWork,
    IUploadStorage,
    MetadataExtractor,
    PostmortemGenerator,
    QuestionResolver,
    RetryController,
    TruncationAwareCompletion,
    UploadService,
)
from watchtower.bulk_import.infrastructure import (
    DocumentTextExtractor,
    UploadStorage,
    unit_of_work_factory,
)
from watchtower.infrastructure.llm import ICompletionClient
from watchtower.shared.infrastructure.grafana import GrafanaOTLPExporter
from watchtower.shared.infrastructure.tasks import BackgroundTaskRunner


@dataclass
class BulkImportServices:
    """Everything the bulk import routes need."""

    uow_factory: Callable[[], IUnitOfWork]
    storage: IUploadStorage
    ticket_system: ITicketSystem
    tasks: BackgroundTaskRunner
    pipeline: ImportPipeline
    uploads: UploadService
    answers: QuestionResolver
    retries: RetryController
    queries: ImportQueryService
    incidents: IncidentResolver


def build_bulk_import_services(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    completion_client: ICompletionClient,
    ticket_system: ITicketSystem,
    storage: Optional[IUploadStorage] = None,
    text_extractor: Optional[ITextExtractor] = None,
    task_runner: Optional[BackgroundTaskRunner] = None,
    exporter: Optional[GrafanaOTLPExporter] = None
) -> BulkImportServices:
    """Build the import services over one database and one model client."""
    uow_factory = unit_of_work_factory(session_maker)
    storage = storage or UploadStorage(settings.upload_dir)
    tasks = task_runner or BackgroundTaskRunner()

    completion = TruncationAwareCompletion(
        completion_client,
        max_retries=settings.llm_max_retries,
        max_tokens_cap=settings.llm_max_tokens_cap,
    )
    incidents = IncidentResolver(uow_factory, ticket_system, tasks, settings)
    pipeline = ImportPipeline(
        uow_factory=uow_factory,
        storage=storage,
        text_extractor=text_extractor or DocumentTextExtractor(),
        metadata_extractor=MetadataExtractor(
            completion,
            text_limit=settings.metadata_text_limit,
            initial_max_tokens=settings.metadata_initial_max_tokens,
        ),
        incident_resolver=incidents,
        postmortem_generator=PostmortemGenerator(completion, uow_factory, settings),
        task_runner=tasks,
        settings=settings,
        exporter=exporter,
    )

    return BulkImportServices(
        uow_factory=uow_factory,
        storage=storage,
        ticket_system=ticket_system,
        tasks=tasks,
        pipeline=pipeline,
        uploads=UploadService(uow_factory, storage, pipeline, settings),
        answers=QuestionResolver(uow_factory, pipeline),
        retries=RetryController(uow_factory, storage, pipeline),
        queries=ImportQueryService(uow_factory),
        incidents=incidents,
    )
