"""
Bulk Import Infrastructure Layer
=================================

SQLAlchemy persistence and external service adapters for the import
pipeline.
"""

from watchtower.bulk_import.infrastructure.external import (
    CircuitBreaker,
    DocumentTextExtractor,
    ServiceNowClient,
    UploadStorage,
)
from watchtower.bulk_import.infrastructure.models import ImportItemModel, ImportSessionModel
from watchtower.bulk_import.infrastructure.repositories import (
    SQLAlchemyImportItemRepository,
    SQLAlchemyImportSessionRepository,
    SQLAlchemyUnitOfWork,
    unit_of_work_factory,
)

__all__ = [
    "CircuitBreaker",
    "DocumentTextExtractor",
    "ServiceNowClient",
    "UploadStorage",
    "ImportItemModel",
    "ImportSessionModel",
    "SQLAlchemyImportItemRepository",
    "SQLAlchemyImportSessionRepository",
    "SQLAlchemyUnitOfWork",
    "unit_of_work_factory",
]
