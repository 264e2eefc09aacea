import uuid

import httpx
import pytest
from fastapi import FastAPI

from watchtower.bulk_import.interfaces import bulk_import_router
from watchtower.shared.api.middleware import CorrelationIDMiddleware

from tests.conftest import DEFAULT_METADATA, POSTMORTEM_DOCUMENT, completion


@pytest.fixture
async def api(services):
    app = FastAPI()
    app.add_middleware(CorrelationIDMiddleware)
    app.include_router(bulk_import_router)
    app.state.bulk_import = services

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _upload(api, services, files=None, auto_publish: bool = False):
    files = files or [("files", ("INC0012345.txt", POSTMORTEM_DOCUMENT, "text/plain"))]
    response = await api.post(
        "/bulk-import/upload",
        files=files,
        data={"autoPublish": "true" if auto_publish else "false"},
    )
    await services.tasks.drain()
    return response


async def test_upload_creates_a_session_and_processes_it(api, services):
    response = await _upload(api, services)

    assert response.status_code == 201
    body = response.json()
    assert body["totalFiles"] == 1
    assert body["items"][0]["fileName"] == "INC0012345.txt"
    assert body["items"][0]["fileType"] == "text/plain"
    assert body["items"][0]["status"] == "uploading"
    assert "X-Correlation-ID" in response.headers

    session = (await api.get(f"/bulk-import/sessions/{body['sessionId']}")).json()
    assert session["status"] == "completed"
    assert session["completedFiles"] == 1
    assert session["items"][0]["status"] == "completed"
    assert session["items"][0]["extractedMetadata"]["incidentNumber"] == "INC0012345"
    assert "extractedText" not in session["items"][0]

    listing = (await api.get("/bulk-import/sessions")).json()
    assert listing["total"] == 1
    assert listing["sessions"][0]["id"] == body["sessionId"]


async def test_upload_type_is_resolved_from_extension(api, services):
    files = [("files", ("report.docx", b"PK", "application/octet-stream"))]

    response = await _upload(api, services, files=files)

    assert response.status_code == 201
    assert response.json()["items"][0]["fileType"] == (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )


async def test_upload_rejects_unsupported_files(api, services):
    files = [("files", ("malware.exe", b"MZ", "application/x-msdownload"))]

    response = await _upload(api, services, files=files)

    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]
    assert (await api.get("/bulk-import/sessions")).json()["total"] == 0


async def test_upload_rejects_legacy_word_files(api, services):
    files = [("files", ("report.doc", b"\xd0\xcf\x11\xe0", "application/msword"))]

    response = await _upload(api, services, files=files)

    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]


async def test_upload_without_files_is_rejected(api):
    response = await api.post("/bulk-import/upload", data={"autoPublish": "false"})

    assert response.status_code == 400


async def test_unknown_ids_return_404(api):
    missing = str(uuid.uuid4())

    assert (await api.get(f"/bulk-import/sessions/{missing}")).status_code == 404
    assert (await api.get(f"/bulk-import/items/{missing}")).status_code == 404
    assert (await api.post(f"/bulk-import/items/{missing}/retry")).status_code == 404
    assert (await api.post(f"/bulk-import/sessions/{missing}/retry-failed")).status_code == 404


async def test_answer_flow(api, services, llm):
    llm.queue("metadata", completion({**DEFAULT_METADATA, "incidentNumber": None}))
    body = (await _upload(api, services)).json()
    item_id = body["items"][0]["id"]

    item = (await api.get(f"/bulk-import/items/{item_id}")).json()
    assert item["status"] == "awaiting_input"
    assert item["currentStep"] == "looking_up_ticket"
    question = item["aiQuestions"][0]
    assert question["field"] == "incidentNumber"
    assert question["answered"] is False

    response = await api.post(
        f"/bulk-import/items/{item_id}/answer",
        json={"answers": [{"questionId": question["id"], "answer": "generate"}]},
    )
    await services.tasks.drain()

    assert response.status_code == 200
    assert response.json()["status"] == "resuming"
    assert response.json()["remainingQuestions"] == 0
    item = (await api.get(f"/bulk-import/items/{item_id}")).json()
    assert item["status"] == "completed"
    assert item["extractedMetadata"]["incidentNumber"].startswith("IMP-")


async def test_answering_a_completed_item_conflicts(api, services):
    body = (await _upload(api, services)).json()
    item_id = body["items"][0]["id"]

    response = await api.post(
        f"/bulk-import/items/{item_id}/answer",
        json={"answers": [{"questionId": "q", "answer": "a"}]},
    )

    assert response.status_code == 409


async def test_empty_answer_list_is_invalid(api, services):
    body = (await _upload(api, services)).json()

    response = await api.post(f"/bulk-import/items/{body['items'][0]['id']}/answer", json={"answers": []})

    assert response.status_code == 422


async def test_retry_endpoints(api, services, llm, storage):
    llm.queue("metadata", *[completion("not json") for _ in range(6)])
    files = [
        ("files", ("first.txt", b"first postmortem", "text/plain")),
        ("files", ("second.txt", b"second postmortem", "text/plain")),
    ]
    body = (await _upload(api, services, files=files)).json()
    first, second = body["items"]

    storage.delete(first["id"], first["fileName"])
    response = await api.post(f"/bulk-import/items/{first['id']}/retry")
    assert response.status_code == 410
    assert (await api.get(f"/bulk-import/items/{first['id']}")).json()["status"] == "failed"

    response = await api.post(f"/bulk-import/sessions/{body['sessionId']}/retry-failed")
    await services.tasks.drain()

    assert response.status_code == 200
    report = response.json()
    assert report["status"] == "retrying"
    assert report["retriedCount"] == 1
    assert report["skippedCount"] == 1
    assert report["skipped"][0] == {"id": first["id"], "fileName": "first.txt", "reason": "File no longer exists"}
    assert (await api.get(f"/bulk-import/items/{second['id']}")).json()["status"] == "completed"

    response = await api.post(f"/bulk-import/items/{second['id']}/retry")
    assert response.status_code == 400
