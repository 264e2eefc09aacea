import asyncio
from datetime import datetime, timezone

import pytest

from watchtower.core import ImportConflictException
from watchtower.bulk_import.application import UploadedFile
from watchtower.bulk_import.domain import ItemState
from watchtower.incidents.domain import JournalEntry, TicketRecord

from tests.conftest import DEFAULT_METADATA, DEFAULT_POSTMORTEM, POSTMORTEM_DOCUMENT, completion


async def _answer_all(services, item, answer: str):
    answers = {q.id: answer for q in item.open_questions}
    result = await services.answers.submit_answers(item.id, answers)
    await services.tasks.drain()
    return result


async def test_document_with_incident_number_completes(services, upload):
    session, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "completed"
    assert item.current_step == "completed"
    assert item.status_message == "Import completed"
    assert item.extracted_text.startswith("Postmortem INC0012345")
    assert item.extracted_metadata["incidentNumber"] == "INC0012345"
    assert item.incident_id is not None
    assert item.postmortem_id is not None
    assert not item.is_running

    async with services.uow_factory() as uow:
        incident = await uow.incidents.get_by_number("INC0012345")
        postmortem = await uow.postmortems.get_by_incident(item.incident_id)
    assert incident.id == item.incident_id
    assert incident.title == "Payment gateway timeouts"
    assert incident.severity == "high"
    assert postmortem["id"] == item.postmortem_id
    assert postmortem["status"] == "draft"
    assert postmortem["business_impact_duration"] == 150

    stored, _ = await services.queries.get_session(session.id)
    assert stored.status == "completed"
    assert stored.completed_files == 1
    assert stored.failed_files == 0


async def test_missing_incident_number_asks_and_generate_synthesizes_one(services, upload, llm):
    llm.queue("metadata", completion({**DEFAULT_METADATA, "incidentNumber": None}))

    session, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "awaiting_input"
    assert item.current_step == "looking_up_ticket"
    assert [q.field for q in item.ai_questions] == ["incidentNumber"]
    assert item.incident_id is None
    stored, _ = await services.queries.get_session(session.id)
    assert stored.status == "awaiting_input"

    result = await _answer_all(services, item, "generate")

    assert result.status == "resuming"
    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    number = item.extracted_metadata["incidentNumber"]
    assert number.startswith("IMP-")
    async with services.uow_factory() as uow:
        incident = await uow.incidents.get_by_number(number)
    assert incident.id == item.incident_id


async def test_generated_number_is_not_looked_up_in_servicenow(services, upload, llm, ticket_system):
    ticket_system.enabled = True
    llm.queue("metadata", completion({**DEFAULT_METADATA, "incidentNumber": None}))
    _, items = await upload()
    item = await services.queries.get_item(items[0].id)
    assert [q.field for q in item.open_questions] == ["incidentNumber"]

    await _answer_all(services, item, "generate")

    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    assert item.open_questions == []
    assert "proceedWithoutTicket" not in [q.field for q in item.ai_questions]
    assert item.extracted_metadata["incidentNumber"].startswith("IMP-")
    assert ticket_system.lookups == []


async def test_provided_incident_number_is_used(services, upload, llm):
    llm.queue("metadata", completion({**DEFAULT_METADATA, "incidentNumber": None}))
    _, items = await upload()
    item = await services.queries.get_item(items[0].id)

    await _answer_all(services, item, "INC0077777")

    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    assert item.extracted_metadata["incidentNumber"] == "INC0077777"


async def test_postmortem_pause_resumes_at_the_same_step(services, upload, llm):
    llm.queue("postmortem", completion({
        **DEFAULT_POSTMORTEM,
        "missingFields": [
            {"field": "severity", "question": "How severe was the incident?"},
            {"field": "regulatoryEntity", "question": "Which regulator was notified?"},
        ],
    }))

    _, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "awaiting_input"
    assert item.current_step == "generating_postmortem"
    assert [q.field for q in item.open_questions] == ["severity"]
    assert item.review_notes == [{"field": "regulatoryEntity", "question": "Which regulator was notified?"}]
    incident_id, postmortem_id = item.incident_id, item.postmortem_id
    assert len(llm.calls_for("metadata")) == 1

    await _answer_all(services, item, "Critical")

    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    assert item.extracted_metadata["severity"] == "critical"
    assert item.incident_id == incident_id
    assert item.postmortem_id == postmortem_id
    assert item.review_notes == []
    # Earlier steps are not run again
    assert len(llm.calls_for("metadata")) == 1
    assert len(llm.calls_for("postmortem")) == 2


async def test_auto_publish_publishes_the_postmortem(services, upload):
    _, items = await upload(auto_publish=True)

    item = await services.queries.get_item(items[0].id)
    async with services.uow_factory() as uow:
        postmortem = await uow.postmortems.get_by_incident(item.incident_id)
    assert postmortem["status"] == "published"
    assert postmortem["published_at"] is not None


async def test_unknown_ticket_asks_whether_to_proceed(services, upload, ticket_system):
    ticket_system.enabled = True

    _, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "awaiting_input"
    assert item.current_step == "looking_up_ticket"
    assert [q.field for q in item.open_questions] == ["proceedWithoutTicket"]
    assert "INC0012345" in item.open_questions[0].question

    await _answer_all(services, item, "yes")

    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    assert "proceedWithoutTicket" not in item.extracted_metadata


async def test_declining_to_proceed_without_ticket_cancels_the_import(services, upload, ticket_system):
    ticket_system.enabled = True
    session, items = await upload()
    item = await services.queries.get_item(items[0].id)

    await _answer_all(services, item, "no")

    item = await services.queries.get_item(item.id)
    assert item.status == "failed"
    assert item.current_step == "looking_up_ticket"
    assert item.error_message == "Import cancelled"
    assert item.status_message == "Failed: Import cancelled"
    assert item.incident_id is None
    stored, _ = await services.queries.get_session(session.id)
    assert stored.status == "completed"
    assert stored.failed_files == 1


async def test_ticket_data_wins_and_activity_is_synced(services, upload, ticket_system):
    ticket_system.enabled = True
    ticket_system.tickets["INC0012345"] = TicketRecord(
        sys_id="a1b2c3",
        number="INC0012345",
        title="Gateway outage",
        severity="critical",
        opened_at=datetime(2024, 1, 15, 9, 55, tzinfo=timezone.utc),
    )
    ticket_system.activity["a1b2c3"] = [
        JournalEntry(sys_id="j1", element="work_notes", value="Restarted pods",
                     created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc), created_by="oncall"),
        JournalEntry(sys_id="j2", element="comments", value="Customers notified"),
    ]

    _, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "completed"
    assert ticket_system.lookups == ["INC0012345"]
    async with services.uow_factory() as uow:
        incident = await uow.incidents.get_by_number("INC0012345")
        synced = await uow.incidents.list_timeline_refs(item.incident_id)
    assert incident.title == "Gateway outage"
    assert incident.severity == "critical"
    assert incident.external_sys_id == "a1b2c3"
    assert synced == {"j1", "j2"}

    # A second sync adds nothing
    assert await services.incidents.sync_activity(item.incident_id, "a1b2c3") == 0


async def test_resumed_postmortem_still_sees_ticket_data(services, upload, llm, ticket_system):
    ticket_system.enabled = True
    ticket_system.tickets["INC0012345"] = TicketRecord(
        sys_id="a1b2c3",
        number="INC0012345",
        title="Gateway outage",
        severity="critical",
    )
    llm.queue("postmortem", completion({
        **DEFAULT_POSTMORTEM,
        "missingFields": [{"field": "severity", "question": "How severe was the incident?"}],
    }))

    _, items = await upload()
    item = await services.queries.get_item(items[0].id)
    assert item.status == "awaiting_input"
    assert item.current_step == "generating_postmortem"

    await _answer_all(services, item, "High")

    item = await services.queries.get_item(item.id)
    assert item.status == "completed"
    prompts = [prompt for operation, prompt in llm.prompts if "postmortem" in operation]
    assert len(prompts) == 2
    for prompt in prompts:
        assert "Title: Gateway outage" in prompt
        assert "Severity: critical" in prompt


async def test_documents_with_the_same_number_share_one_incident(services, upload):
    _, first = await upload()
    _, second = await upload()

    first_item = await services.queries.get_item(first[0].id)
    second_item = await services.queries.get_item(second[0].id)
    assert first_item.status == second_item.status == "completed"
    assert first_item.incident_id == second_item.incident_id


async def test_every_file_of_a_batch_is_processed(services, upload, llm):
    llm.queue(
        "metadata",
        completion({**DEFAULT_METADATA, "incidentNumber": "INC0000001"}),
        completion({**DEFAULT_METADATA, "incidentNumber": "INC0000002"}),
    )

    session, items = await upload(b"first postmortem", b"second postmortem")

    stored, stored_items = await services.queries.get_session(session.id)
    assert stored.total_files == 2
    assert stored.completed_files == 2
    assert stored.status == "completed"
    numbers = {i.extracted_metadata["incidentNumber"] for i in stored_items}
    assert numbers == {"INC0000001", "INC0000002"}
    assert len({i.incident_id for i in stored_items}) == 2


async def test_unreadable_document_fails_the_item(services, upload):
    session, items = await upload(b"   \n  ")

    item = await services.queries.get_item(items[0].id)
    assert item.status == "failed"
    assert item.current_step == "extracting_text"
    assert item.status_message.startswith("Failed: ")
    assert "No text could be extracted" in item.error_message
    stored, _ = await services.queries.get_session(session.id)
    assert stored.status == "completed"
    assert stored.failed_files == 1


async def test_model_failure_fails_the_item_at_metadata_step(services, upload, llm):
    llm.queue("metadata", *[completion("not json at all") for _ in range(3)])

    _, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "failed"
    assert item.current_step == "extracting_metadata"
    assert item.extracted_text is not None
    assert item.extracted_metadata is None


async def test_start_refuses_an_item_held_by_another_run(services, upload):
    _, items = await upload()
    async with services.uow_factory() as uow:
        assert await uow.items.acquire_lease(items[0].id, "other-run")

    with pytest.raises(ImportConflictException):
        await services.pipeline.start(items[0].id)


async def test_truncated_metadata_is_retried_until_complete(services, upload, llm):
    llm.queue(
        "metadata",
        completion('{"incidentNumber": "INC0012345", "title": "Paym', stop_reason="length"),
        completion('{"incidentNumber": "INC0012345", "title": "Payment gateway', stop_reason="length"),
        completion({**DEFAULT_METADATA, "title": "Third attempt title"}),
    )

    _, items = await upload()

    item = await services.queries.get_item(items[0].id)
    assert item.status == "completed"
    assert item.error_message is None
    assert item.extracted_metadata["title"] == "Third attempt title"
    assert [max_tokens for _, max_tokens in llm.calls_for("metadata")] == [4096, 8192, 16384]


async def test_interrupted_run_restarts_from_its_stored_step(services, upload, llm):
    _, items = await upload()
    item_id = items[0].id
    async with services.uow_factory() as uow:
        await uow.items.set_state(item_id, ItemState.running("generating_postmortem"), "Generating postmortem with AI")
        assert await uow.items.acquire_lease(item_id, "dead-run")

    async with services.uow_factory() as uow:
        interrupted = await uow.items.release_all_leases()
    assert interrupted == [item_id]

    await services.pipeline.start(item_id)
    await services.tasks.drain()

    item = await services.queries.get_item(item_id)
    assert item.status == "completed"
    assert len(llm.calls_for("metadata")) == 1
    assert len(llm.calls_for("postmortem")) == 2


async def test_shutdown_mid_step_keeps_the_item_for_restart(services, llm):
    llm.hold = asyncio.Event()
    document = UploadedFile(file_name="postmortem.txt", content_type="text/plain", content=POSTMORTEM_DOCUMENT)
    _, items = await services.uploads.upload([document])
    item_id = items[0].id
    await asyncio.wait_for(llm.holding.wait(), timeout=5)

    await services.tasks.shutdown()

    item = await services.queries.get_item(item_id)
    assert item.status == "extracting_metadata"
    assert item.is_running

    async with services.uow_factory() as uow:
        interrupted = await uow.items.release_all_leases()
    assert interrupted == [item_id]

    llm.hold = None
    await services.pipeline.start(item_id)
    await services.tasks.drain()

    item = await services.queries.get_item(item_id)
    assert item.status == "completed"
    assert not item.is_running


async def test_mid_step_item_without_a_lease_is_resumed(services, upload):
    _, items = await upload()
    item_id = items[0].id
    async with services.uow_factory() as uow:
        await uow.items.set_state(item_id, ItemState.running("generating_incident"), "Creating incident")

    async with services.uow_factory() as uow:
        interrupted = await uow.items.release_all_leases()
    assert interrupted == [item_id]
