"""
Bulk Import Interfaces Layer
============================

Interface adapters (controllers) for the bulk import module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from watchtower.bulk_import.interfaces.controllers import bulk_import_router

__all__ = ["bulk_import_router"]
