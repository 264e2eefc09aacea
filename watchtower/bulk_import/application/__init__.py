"""
Bulk Import Application Layer
==============================

Application layer for the bulk import module.

Contains:
- Services: pipeline, uploads, answers, retry and queries
- Interfaces: repositories, unit of work and external services
- DTOs: Data transfer objects for API serialization
"""

from watchtower.bulk_import.application.answers import AnswerResult, QuestionResolver, apply_answers
from watchtower.bulk_import.application.completion import TruncationAwareCompletion
from watchtower.bulk_import.application.incidents import IncidentResolver, ResolvedIncident, merge_incident
from watchtower.bulk_import.application.interfaces import (
    IImportItemRepository,
    IImportSessionRepository,
    ITextExtractor,
    ITicketSystem,
    IUnitOfWork,
    IUploadStorage,
)
from watchtower.bulk_import.application.metadata import MetadataExtractor
from watchtower.bulk_import.application.pipeline import ImportPipeline
from watchtower.bulk_import.application.postmortems import PostmortemGenerator, PostmortemOutcome
from watchtower.bulk_import.application.retry import RetryController, RetryReport
from watchtower.bulk_import.application.sessions import ImportQueryService, refresh_session
from watchtower.bulk_import.application.uploads import UploadedFile, UploadService

__all__ = [
    # Services
    "ImportPipeline",
    "ImportQueryService",
    "IncidentResolver",
    "MetadataExtractor",
    "PostmortemGenerator",
    "QuestionResolver",
    "RetryController",
    "TruncationAwareCompletion",
    "UploadService",
    # Results
    "AnswerResult",
    "PostmortemOutcome",
    "ResolvedIncident",
    "RetryReport",
    "UploadedFile",
    # Helpers
    "apply_answers",
    "merge_incident",
    "refresh_session",
    # Interfaces
    "IImportItemRepository",
    "IImportSessionRepository",
    "ITextExtractor",
    "ITicketSystem",
    "IUnitOfWork",
    "IUploadStorage",
]
