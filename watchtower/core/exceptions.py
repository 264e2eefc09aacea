"""
Core Exceptions
================

Exceptions raised by the import services.

Controllers turn them into HTTP errors; inside a detached pipeline run
every one of them ends up as the failed item's error message.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class DuplicateRecordException(RepositoryException):
    """A unique business key is already taken."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ImportConflictException(DomainException):
    """Raised when an import item is in the wrong state for the request."""


class RetryBlockedException(DomainException):
    """
    Permanent retry blocker.

    The uploaded source file is gone, so the item can never be re-run.
    """

    def __init__(self, item_id: str, file_name: str):
        self.item_id = item_id
        self.file_name = file_name
        super().__init__(
            "Uploaded file no longer exists on the server",
            {"item_id": item_id, "file_name": file_name}
        )


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class AIResponseException(ExternalServiceException):
    """The model answered, but the answer could not be turned into JSON."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("AI Response", message, details)


class TextExtractionException(ExternalServiceException):
    """Exception for document text extraction failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Text Extraction", message, details)


class TicketSystemException(ExternalServiceException):
    """Exception for ServiceNow API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("ServiceNow", message, details)
