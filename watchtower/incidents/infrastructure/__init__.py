"""
Incidents Infrastructure Layer
==============================

SQLAlchemy models and repositories for incidents and postmortems.
"""

from watchtower.incidents.infrastructure.models import (
    IncidentModel,
    IncidentRoleModel,
    TimelineEventModel,
    PostmortemModel,
)
from watchtower.incidents.infrastructure.repositories import (
    SQLAlchemyIncidentRepository,
    SQLAlchemyPostmortemRepository,
)

__all__ = [
    "IncidentModel",
    "IncidentRoleModel",
    "TimelineEventModel",
    "PostmortemModel",
    "SQLAlchemyIncidentRepository",
    "SQLAlchemyPostmortemRepository",
]
