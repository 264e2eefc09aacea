"""
Prompt Templates
================

Prompts for metadata extraction and postmortem generation.
"""

from typing import Optional

from watchtower.incidents.domain import INTERCEPTION_LAYERS, ACTION_PRIORITIES


METADATA_PROMPT = """You are an expert at analyzing incident postmortem documents. Extract the following metadata from this document text. If you cannot find a field, set it to null.

DOCUMENT TEXT:
{text}

Extract and return a valid JSON object with these fields:
{{
  "incidentNumber": "The incident number (e.g., INC-12345, INC0012345) - look for INC followed by digits",
  "title": "A short descriptive title for the incident (max 200 chars)",
  "description": "A brief description of what happened (max 500 chars)",
  "severity": "One of: critical, high, medium, low - based on the impact described",
  "detectedAt": "ISO 8601 timestamp of when the incident was detected/started, or null",
  "resolvedAt": "ISO 8601 timestamp of when the incident was resolved, or null",
  "affectedService": "The primary service or application affected",
  "affectedCountries": ["Array of country codes affected, e.g. US, UK, DE"],
  "summary": "A 2-3 sentence summary of the entire postmortem",
  "hasActionItems": true,
  "actionItemCount": 0,
  "hasMitigationSteps": true,
  "hasBusinessImpact": true,
  "hasTimeline": true
}}

IMPORTANT: Return ONLY the JSON object, no other text or markdown formatting. Keep string values concise to avoid truncation."""


POSTMORTEM_PROMPT = """You are an expert Site Reliability Engineer. You are given the raw text of a postmortem document. Your job is to extract and structure all the information into our platform's postmortem format.

RAW POSTMORTEM DOCUMENT:
{text}

KNOWN METADATA:
- Incident Number: {incident_number}
- Title: {title}
- Severity: {severity}
- Detected At: {detected_at}
- Resolved At: {resolved_at}
- Affected Service: {affected_service}

Generate a structured postmortem in the following JSON format. Extract as much information as possible from the document. If information is not available, use null.

{{
  "businessImpact": {{
    "application": "Name of the affected application/service",
    "startTime": "ISO 8601 timestamp or null",
    "endTime": "ISO 8601 timestamp or null",
    "duration": "ISO 8601 duration (e.g. PT2H30M) or null",
    "description": "What users experienced, which features were unavailable, scope of impact. 2-3 paragraphs.",
    "affectedCountries": ["US", "UK"],
    "regulatoryReporting": false,
    "regulatoryEntity": null
  }},
  "mitigation": {{
    "description": "Immediate actions taken, resilience patterns applied, key decisions and rationale. 2-4 paragraphs."
  }},
  "causalAnalysis": [
    {{
      "interceptionLayer": "{layers}",
      "cause": "Short cause title",
      "subCause": "More specific sub-cause",
      "description": "Detailed description of this causal factor",
      "actionItems": [
        {{
          "description": "Specific actionable item to address this cause",
          "priority": "{priorities}"
        }}
      ]
    }}
  ],
  "missingFields": [
    {{
      "field": "fieldName",
      "question": "What should we put for X? The document doesn't mention..."
    }}
  ]
}}

IMPORTANT:
- Generate 3-5 causal analysis items across different interception layers
- Each causal analysis item must have 1-3 action items
- If you cannot determine incidentNumber, severity or detectedAt, add them to missingFields
- Valid interceptionLayer values: {layer_list}
- Valid priority values: {priority_list}
- Return ONLY the JSON, no markdown formatting"""


def _known(value: Optional[str]) -> str:
    return value if value else "Unknown"


def build_metadata_prompt(text: str, limit: int) -> str:
    return METADATA_PROMPT.format(text=text[:limit])


def build_postmortem_prompt(text: str, metadata: dict, limit: int) -> str:
    return POSTMORTEM_PROMPT.format(
        text=text[:limit],
        incident_number=_known(metadata.get("incidentNumber")),
        title=_known(metadata.get("title")),
        severity=_known(metadata.get("severity")),
        detected_at=_known(metadata.get("detectedAt")),
        resolved_at=_known(metadata.get("resolvedAt")),
        affected_service=_known(metadata.get("affectedService")),
        layers="|".join(INTERCEPTION_LAYERS),
        priorities="|".join(ACTION_PRIORITIES),
        layer_list=", ".join(INTERCEPTION_LAYERS),
        priority_list=", ".join(ACTION_PRIORITIES),
    )
