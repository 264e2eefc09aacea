"""
Shared Kernel Module
====================

Generic infrastructure shared by every bounded context (bulk import,
incidents): logging, metrics export, background tasks, HTTP middleware.

DO NOT add import-pipeline business logic to the shared kernel.
"""
