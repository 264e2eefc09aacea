"""
Incidents Module
================

Incident, role, timeline and postmortem persistence written by the bulk
import pipeline. The incident CRUD REST surface lives elsewhere.
"""
