"""
Grafana OTLP Metrics Exporter
==============================

Pushes pipeline metrics to Grafana Cloud via OTLP/HTTP.

Metrics exported:
- llm_tokens_total / llm_prompt_tokens / llm_completion_tokens
- llm_latency_ms
- import_items_total: item outcomes (completed, failed, awaiting_input)
"""

import base64
import time
from typing import Any, Dict, List, Optional

import httpx

from watchtower.config import settings
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _attribute(key: str, value: Any) -> dict:
    return {"key": key, "value": {"stringValue": str(value)}}


def _gauge(name: str, unit: str, description: str, value: int, attributes: list) -> dict:
    return {
        "name": name,
        "unit": unit,
        "description": description,
        "gauge": {
            "dataPoints": [
                {
                    "asInt": value,
                    "timeUnixNano": time.time_ns(),
                    "attributes": attributes,
                }
            ]
        },
    }


class GrafanaOTLPExporter:
    """
    Export metrics to Grafana Cloud via the OTLP HTTP endpoint.

    Disabled (every export is a no-op returning False) unless host,
    API key and instance id are all configured.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._transport = transport
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            if "/otlp/v1/metrics" in self._host:
                self._url = self._host
            else:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.debug("Grafana OTLP exporter not configured; metrics will not be exported")

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def _payload(self, metrics: List[dict]) -> dict:
        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            _attribute("service.name", settings.app_name),
                            _attribute("service.version", settings.app_version),
                            _attribute("deployment.environment", settings.environment),
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}],
                }
            ]
        }

    async def _push(self, metrics: List[dict]) -> bool:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id),
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self._url, headers=headers, json=self._payload(metrics))
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={"status_code": response.status_code, "response": response.text[:500]}
        )
        return False

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "completion",
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export LLM usage metrics.

        Args:
            model: LLM model name
            prompt_tokens: Number of prompt tokens used
            completion_tokens: Number of completion tokens generated
            latency_ms: Request latency in milliseconds
            operation: metadata_extraction or postmortem_generation
            attributes: Additional attributes to attach to metrics
        """
        if not self._enabled:
            return False

        attrs = [
            _attribute("model", model),
            _attribute("operation", operation),
            _attribute("service", settings.app_name),
        ]
        attrs.extend(_attribute(k, v) for k, v in (attributes or {}).items())

        return await self._push([
            _gauge("llm_tokens_total", "1", "Total tokens used in LLM requests",
                   prompt_tokens + completion_tokens, attrs),
            _gauge("llm_prompt_tokens", "1", "Prompt tokens in LLM requests", prompt_tokens, attrs),
            _gauge("llm_completion_tokens", "1", "Completion tokens generated",
                   completion_tokens, attrs),
            _gauge("llm_latency_ms", "ms", "LLM request latency in milliseconds", latency_ms, attrs),
        ])

    async def export_import_outcome(self, outcome: str, file_type: str = "unknown") -> bool:
        """Export one import item outcome."""
        if not self._enabled:
            return False

        attrs = [
            _attribute("outcome", outcome),
            _attribute("file_type", file_type),
            _attribute("service", settings.app_name),
        ]
        return await self._push([
            _gauge("import_items_total", "1", "Import items reaching an outcome", 1, attrs),
        ])


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> GrafanaOTLPExporter:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter
