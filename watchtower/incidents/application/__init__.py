"""
Incidents Application Layer
===========================

Repository interfaces implemented by the incidents infrastructure.
"""

from watchtower.incidents.application.interfaces import (
    IIncidentRepository,
    IPostmortemRepository,
)

__all__ = [
    "IIncidentRepository",
    "IPostmortemRepository",
]
