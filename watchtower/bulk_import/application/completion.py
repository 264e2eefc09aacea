"""
Truncation-Aware Completion
============================

Asks the model for a JSON object and copes with answers that were cut off
by the token limit: retry with a bigger budget while attempts remain, then
fall back to repairing the truncated JSON.
"""

import json
from typing import Optional

from watchtower.core import AIResponseException, ExternalServiceException
from watchtower.bulk_import.domain import is_truncated, repair_truncated_json, strip_code_fences
from watchtower.infrastructure.llm import ICompletionClient
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TruncationAwareCompletion:
    """
    JSON completion with escalating token budget.

    Attempt n (0-based) gets initial_max_tokens * 2**n tokens, capped at
    max_tokens_cap. Provider errors and unparseable answers are retried
    while attempts remain; the last error is raised otherwise.
    """

    def __init__(self, client: ICompletionClient, max_retries: int = 2, max_tokens_cap: int = 64000):
        self._client = client
        self._max_retries = max_retries
        self._max_tokens_cap = max_tokens_cap

    def budget_for(self, attempt: int, initial_max_tokens: int) -> int:
        return min(initial_max_tokens * 2 ** attempt, self._max_tokens_cap)

    async def complete_json(
        self,
        prompt: str,
        initial_max_tokens: int,
        operation: str,
        log_context: Optional[dict] = None
    ) -> dict:
        log_context = log_context or {}
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries + 1):
            max_tokens = self.budget_for(attempt, initial_max_tokens)
            has_more_attempts = attempt < self._max_retries

            try:
                result = await self._client.generate_completion(prompt, max_tokens, operation)
            except ExternalServiceException as e:
                last_error = e
                logger.warning(
                    "Completion request failed",
                    extra={**log_context, "operation": operation, "attempt": attempt + 1, "error": str(e)}
                )
                continue

            truncated = is_truncated(result.stop_reason)
            logger.info(
                "Completion received",
                extra={
                    **log_context,
                    "operation": operation,
                    "attempt": attempt + 1,
                    "stop_reason": result.stop_reason,
                    "max_tokens": max_tokens,
                    "completion_tokens": result.completion_tokens,
                    "response_length": len(result.text),
                }
            )

            if truncated and has_more_attempts:
                logger.warning(
                    "Completion truncated, retrying with a larger budget",
                    extra={**log_context, "operation": operation, "attempt": attempt + 1}
                )
                last_error = AIResponseException(
                    "Response truncated", {"stop_reason": result.stop_reason, "max_tokens": max_tokens}
                )
                continue

            try:
                return self._parse(result.text, truncated, log_context)
            except AIResponseException as e:
                last_error = e
                if has_more_attempts:
                    logger.warning(
                        "Completion could not be parsed, retrying",
                        extra={**log_context, "operation": operation, "attempt": attempt + 1, "error": e.message}
                    )

        logger.error(
            "Completion failed after all attempts",
            extra={**log_context, "operation": operation, "attempts": self._max_retries + 1}
        )
        raise last_error

    def _parse(self, text: str, truncated: bool, log_context: dict) -> dict:
        cleaned = strip_code_fences(text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            if truncated or not cleaned.endswith("}"):
                repaired = repair_truncated_json(cleaned)
                if repaired is not None:
                    logger.info(
                        "Truncated JSON repaired",
                        extra={**log_context, "truncated": truncated, "response_length": len(cleaned)}
                    )
                    return repaired
            raise AIResponseException(
                f"Could not parse model response as JSON: {e.msg}",
                {"position": e.pos, "truncated": truncated}
            )

        if not isinstance(data, dict):
            raise AIResponseException("Model response is not a JSON object")
        return data
