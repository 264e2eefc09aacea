"""
Watchtower
==========

Incident-management backend with a bulk postmortem import pipeline.
"""

__version__ = "1.0.0"
