"""
Metadata Extraction
===================

Turns raw document text into an IncidentMetadata record using the model.
"""

from watchtower.bulk_import.application.completion import TruncationAwareCompletion
from watchtower.bulk_import.domain import IncidentMetadata
from watchtower.bulk_import.domain.prompts import build_metadata_prompt
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class MetadataExtractor:
    """
    Best-effort metadata extraction.

    Undeterminable fields come back as None; a missing incident number is
    not an error here.
    """

    def __init__(
        self,
        completion: TruncationAwareCompletion,
        text_limit: int = 15000,
        initial_max_tokens: int = 4096
    ):
        self._completion = completion
        self._text_limit = text_limit
        self._initial_max_tokens = initial_max_tokens

    async def extract(self, text: str, item_id: str) -> dict:
        """
        Extract metadata from document text.

        Returns:
            camelCase metadata dict (incidentNumber, title, severity, ...)

        Raises:
            AIResponseException, LLMException: When every attempt failed
        """
        raw = await self._completion.complete_json(
            build_metadata_prompt(text, self._text_limit),
            initial_max_tokens=self._initial_max_tokens,
            operation="metadata_extraction",
            log_context={"item_id": item_id},
        )
        metadata = IncidentMetadata.model_validate(raw).to_record()

        logger.info(
            "Metadata extracted",
            extra={
                "item_id": item_id,
                "incident_number": metadata["incidentNumber"],
                "severity": metadata["severity"],
            }
        )
        return metadata
