"""
LLM Client Infrastructure
==========================

Completion clients (OpenAI, Anthropic, mock) behind one interface.

The import pipeline only ever needs a single-prompt completion together with
the provider's stop reason, so it can tell a truncated answer from a
finished one.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from watchtower.config import Settings, settings as default_settings
from watchtower.core import ConfigurationException, LLMException
from watchtower.shared.infrastructure.grafana import get_grafana_exporter
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CompletionResult:
    """Result of a single completion call."""

    def __init__(
        self,
        text: str,
        stop_reason: Optional[str],
        model: str,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        latency_ms: int = 0
    ):
        self.text = text
        self.stop_reason = stop_reason
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms

    @property
    def usage(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


class ICompletionClient(ABC):
    """Interface for completion providers."""

    @abstractmethod
    async def generate_completion(
        self,
        prompt: str,
        max_tokens: int,
        operation: str = "completion"
    ) -> CompletionResult:
        """Generate a completion for a single user prompt."""


async def _export_usage(result: CompletionResult, operation: str) -> None:
    exporter = get_grafana_exporter()
    if exporter.is_enabled():
        await exporter.export_llm_metrics(
            model=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            latency_ms=result.latency_ms,
            operation=operation
        )


class OpenAICompletionClient(ICompletionClient):
    """
    OpenAI chat completions client.

    Also serves OpenAI-compatible providers (Groq and similar) through
    `openai_base_url`. The stop reason is the choice's finish_reason.
    """

    def __init__(self, api_key: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(api_key=self._api_key, base_url=settings.openai_base_url)
        self._model = settings.llm_model
        self._temperature = settings.llm_temperature

    async def generate_completion(
        self,
        prompt: str,
        max_tokens: int,
        operation: str = "completion"
    ) -> CompletionResult:
        start_time = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        choice = response.choices[0]
        usage = response.usage
        result = CompletionResult(
            text=choice.message.content or "",
            stop_reason=choice.finish_reason,
            model=self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        await _export_usage(result, operation)
        return result


class AnthropicCompletionClient(ICompletionClient):
    """
    Anthropic Messages API client.

    Text blocks of the response are concatenated; the stop reason is the
    message's stop_reason ("end_turn", "max_tokens", ...).
    """

    def __init__(self, api_key: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self._api_key = api_key or settings.anthropic_api_key
        if not self._api_key:
            raise ConfigurationException("Anthropic API key not configured")

        self._client = AsyncAnthropic(api_key=self._api_key)
        self._model = settings.llm_model
        self._temperature = settings.llm_temperature

    async def generate_completion(
        self,
        prompt: str,
        max_tokens: int,
        operation: str = "completion"
    ) -> CompletionResult:
        start_time = time.perf_counter()

        try:
            message = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=self._temperature,
                messages=[{"role": "user", "content": prompt}]
            )
        except Exception as e:
            raise LLMException(f"Message creation failed: {str(e)}")

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        result = CompletionResult(
            text=text,
            stop_reason=message.stop_reason,
            model=self._model,
            prompt_tokens=message.usage.input_tokens,
            completion_tokens=message.usage.output_tokens,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        await _export_usage(result, operation)
        return result


MOCK_METADATA = {
    "incidentNumber": "INC0000001",
    "title": "Mock imported incident",
    "description": "Mock: metadata produced without calling a model.",
    "severity": "medium",
    "detectedAt": "2024-01-01T00:00:00Z",
    "resolvedAt": "2024-01-01T01:00:00Z",
    "affectedService": "mock-service",
    "affectedCountries": [],
    "summary": "Mock summary.",
    "hasActionItems": False,
    "actionItemCount": 0,
    "hasMitigationSteps": False,
    "hasBusinessImpact": False,
    "hasTimeline": False,
}

MOCK_POSTMORTEM = {
    "businessImpact": {
        "application": "mock-service",
        "startTime": "2024-01-01T00:00:00Z",
        "endTime": "2024-01-01T01:00:00Z",
        "duration": "PT1H",
        "description": "Mock: business impact produced without calling a model.",
        "affectedCountries": [],
        "regulatoryReporting": False,
        "regulatoryEntity": None,
    },
    "mitigation": {"description": "Mock mitigation."},
    "causalAnalysis": [],
    "missingFields": [],
}


class MockCompletionClient(ICompletionClient):
    """
    Mock completion client for local runs.

    Returns predictable JSON without calling external APIs.
    """

    async def generate_completion(
        self,
        prompt: str,
        max_tokens: int,
        operation: str = "completion"
    ) -> CompletionResult:
        payload = MOCK_POSTMORTEM if "postmortem" in operation.lower() else MOCK_METADATA
        content = f"```json\n{json.dumps(payload, indent=2)}\n```"
        return CompletionResult(
            text=content,
            stop_reason="end_turn",
            model="mock-model",
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(content.split()),
            latency_ms=1
        )


def create_completion_client(settings: Optional[Settings] = None) -> ICompletionClient:
    """Build the completion client selected by settings.llm_provider."""
    settings = settings or default_settings
    provider = settings.llm_provider

    if provider == "openai":
        client: ICompletionClient = OpenAICompletionClient(settings=settings)
    elif provider == "anthropic":
        client = AnthropicCompletionClient(settings=settings)
    else:
        client = MockCompletionClient()

    logger.info(
        "Completion client configured",
        extra={"provider": provider, "model": settings.llm_model}
    )
    return client
