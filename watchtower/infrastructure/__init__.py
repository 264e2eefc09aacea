"""Shared infrastructure: database engine and completion clients."""
