"""
Bulk Import Module
==================

Bulk import of postmortem documents: upload, text and metadata
extraction, ticket reconciliation, incident creation and AI postmortem
generation, with human answers for missing data and per-item retry.
"""
