import io
import json
from datetime import datetime, timezone

import httpx
import pytest
from docx import Document

from watchtower.config import Settings
from watchtower.core import TextExtractionException, TicketSystemException
from watchtower.bulk_import.infrastructure import DocumentTextExtractor, ServiceNowClient, UploadStorage
from watchtower.shared.infrastructure.grafana import GrafanaOTLPExporter

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _docx(*paragraphs: str, table=None) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if table:
        grid = document.add_table(rows=len(table), cols=len(table[0]))
        for row, values in zip(grid.rows, table):
            for cell, value in zip(row.cells, values):
                cell.text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


# ========== Upload storage ==========

async def test_storage_keeps_uploads_under_sanitised_names(tmp_path):
    storage = UploadStorage(tmp_path / "uploads")

    path = await storage.save("item-1", "my report (v2).txt", b"hello")

    assert path == tmp_path / "uploads" / "item-1_my_report__v2_.txt"
    assert path.read_bytes() == b"hello"
    assert storage.exists("item-1", "my report (v2).txt")

    storage.delete("item-1", "my report (v2).txt")
    assert not storage.exists("item-1", "my report (v2).txt")
    storage.delete("item-1", "my report (v2).txt")


# ========== Text extraction ==========

async def test_plain_text_is_decoded(tmp_path):
    path = tmp_path / "doc.txt"
    path.write_bytes("Postmortem für INC1\n".encode("utf-8"))

    text = await DocumentTextExtractor().extract_text(path, "text/plain")

    assert text == "Postmortem für INC1"


async def test_word_paragraphs_are_joined(tmp_path):
    path = tmp_path / "doc.docx"
    path.write_bytes(_docx("Postmortem INC0012345", "", "Root cause: pool exhaustion"))

    text = await DocumentTextExtractor().extract_text(path, DOCX_TYPE)

    assert text == "Postmortem INC0012345\nRoot cause: pool exhaustion"


async def test_word_tables_are_read_after_paragraphs(tmp_path):
    path = tmp_path / "doc.docx"
    path.write_bytes(_docx(
        "Timeline",
        table=[["10:00", "Alerts fired"], ["12:30", "Pool size raised"]],
    ))

    text = await DocumentTextExtractor().extract_text(path, DOCX_TYPE)

    assert text == "Timeline\n10:00 | Alerts fired\n12:30 | Pool size raised"


async def test_broken_word_file_raises(tmp_path):
    path = tmp_path / "doc.docx"
    path.write_bytes(b"this is not a zip archive")

    with pytest.raises(TextExtractionException):
        await DocumentTextExtractor().extract_text(path, DOCX_TYPE)


async def test_broken_pdf_raises(tmp_path):
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4 truncated garbage")

    with pytest.raises(TextExtractionException):
        await DocumentTextExtractor().extract_text(path, "application/pdf")


async def test_empty_document_raises(tmp_path):
    path = tmp_path / "doc.txt"
    path.write_bytes(b"  \n\t ")

    with pytest.raises(TextExtractionException, match="No text could be extracted"):
        await DocumentTextExtractor().extract_text(path, "text/plain")


async def test_missing_file_raises(tmp_path):
    with pytest.raises(TextExtractionException):
        await DocumentTextExtractor().extract_text(tmp_path / "gone.txt", "text/plain")


# ========== ServiceNow ==========

def _servicenow_settings() -> Settings:
    return Settings(
        _env_file=None,
        servicenow_instance_url="https://acme.service-now.com/",
        servicenow_username="importer",
        servicenow_password="secret",
    )


def _client(handler, max_retries: int = 1) -> ServiceNowClient:
    return ServiceNowClient(
        _servicenow_settings(),
        transport=httpx.MockTransport(handler),
        max_retries=max_retries,
    )


INCIDENT_RECORD = {
    "sys_id": "a1b2c3",
    "number": "INC0012345",
    "short_description": "Gateway outage",
    "description": "Payments failing",
    "priority": "1 - Critical",
    "opened_at": "2024-01-15 09:55:00",
    "resolved_at": "",
    "closed_at": "2024-01-15 12:45:00",
    "correlation_id": "",
}


async def test_incident_is_found_by_number():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"result": [INCIDENT_RECORD]})

    client = _client(handler)
    ticket = await client.find_by_number("INC0012345")
    await client.close()

    assert ticket.sys_id == "a1b2c3"
    assert ticket.title == "Gateway outage"
    assert ticket.severity == "critical"
    assert ticket.opened_at == datetime(2024, 1, 15, 9, 55, tzinfo=timezone.utc)
    assert ticket.resolved_at == datetime(2024, 1, 15, 12, 45, tzinfo=timezone.utc)
    assert ticket.correlation_id is None
    assert requests[0].url.path == "/api/now/table/incident"
    assert requests[0].url.params["sysparm_query"] == "number=INC0012345"
    assert requests[0].headers["Authorization"].startswith("Basic ")


async def test_no_match_returns_none():
    client = _client(lambda request: httpx.Response(200, json={"result": []}))

    assert await client.find_by_correlation_id("CORR-1") is None


async def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, json={"error": {"message": "forbidden"}})

    client = _client(handler, max_retries=3)

    with pytest.raises(TicketSystemException):
        await client.find_by_number("INC1")
    assert len(calls) == 1


async def test_repeated_server_errors_open_the_circuit():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    client = _client(handler, max_retries=1)
    for _ in range(5):
        with pytest.raises(TicketSystemException):
            await client.find_by_number("INC1")

    with pytest.raises(TicketSystemException, match="Circuit breaker open"):
        await client.find_by_number("INC1")
    assert len(calls) == 5


async def test_journal_entries_are_read_oldest_first():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"result": [
            {"sys_id": "j1", "element": "work_notes", "value": "Restarted pods",
             "sys_created_on": "2024-01-15 10:30:00", "sys_created_by": "oncall"},
            {"sys_id": "j2", "element": "comments", "value": "Customers notified",
             "sys_created_on": "2024-01-15 11:00:00", "sys_created_by": "support"},
        ]})

    client = _client(handler)
    entries = await client.get_activity("a1b2c3")

    assert [e.sys_id for e in entries] == ["j1", "j2"]
    assert entries[0].label == "Work Note"
    assert entries[1].label == "Comment"
    assert entries[0].created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
    assert requests[0].url.path == "/api/now/table/sys_journal_field"
    assert requests[0].url.params["sysparm_query"].startswith("element_id=a1b2c3^")


async def test_unconfigured_client_is_disabled():
    client = ServiceNowClient(Settings(_env_file=None))

    assert not client.is_enabled()
    with pytest.raises(TicketSystemException):
        await client.find_by_number("INC1")


# ========== Grafana metrics ==========

async def test_import_outcome_is_pushed_as_otlp_gauge():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200)

    exporter = GrafanaOTLPExporter(
        host="https://otlp.grafana.example",
        api_key="key",
        instance_id="42",
        transport=httpx.MockTransport(handler),
    )

    assert await exporter.export_import_outcome("completed", "application/pdf") is True

    request = requests[0]
    assert request.url.path == "/otlp/v1/metrics"
    assert request.headers["X-Grafana-Org-Id"] == "42"
    metric = json.loads(request.content)["resourceMetrics"][0]["scopeMetrics"][0]["metrics"][0]
    assert metric["name"] == "import_items_total"
    attributes = {a["key"]: a["value"]["stringValue"] for a in metric["gauge"]["dataPoints"][0]["attributes"]}
    assert attributes["outcome"] == "completed"
    assert attributes["file_type"] == "application/pdf"


async def test_rejected_metrics_push_reports_failure():
    exporter = GrafanaOTLPExporter(
        host="https://otlp.grafana.example/otlp/v1/metrics",
        api_key="key",
        instance_id="42",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, text="unauthorized")),
    )

    assert await exporter.export_import_outcome("failed") is False
