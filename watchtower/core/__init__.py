"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from watchtower.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    DuplicateRecordException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ImportConflictException,
    RetryBlockedException,
    ExternalServiceException,
    LLMException,
    AIResponseException,
    TextExtractionException,
    TicketSystemException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "DuplicateRecordException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ImportConflictException",
    "RetryBlockedException",
    "ExternalServiceException",
    "LLMException",
    "AIResponseException",
    "TextExtractionException",
    "TicketSystemException",
]
