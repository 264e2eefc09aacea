from datetime import datetime, timezone

from watchtower.bulk_import.application import merge_incident
from watchtower.incidents.domain import TicketRecord, parse_timestamp

from tests.conftest import DEFAULT_METADATA


def test_document_only_merge_uses_metadata():
    incident = merge_incident(DEFAULT_METADATA, None)

    assert incident.incident_number == "INC0012345"
    assert incident.title == "Payment gateway timeouts"
    assert incident.severity == "high"
    assert incident.detected_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert incident.status == "resolved"
    assert incident.source == "bulk_import"
    assert incident.external_sys_id is None


def test_ticket_wins_for_identity_and_document_for_content():
    ticket = TicketRecord(
        sys_id="a1b2c3",
        number="INC0012345",
        title="Gateway outage",
        description="Ticket description",
        severity="critical",
        opened_at=datetime(2024, 1, 15, 9, 55, tzinfo=timezone.utc),
    )

    incident = merge_incident(DEFAULT_METADATA, ticket)

    assert incident.title == "Gateway outage"
    assert incident.severity == "critical"
    assert incident.detected_at == ticket.opened_at
    assert incident.description == DEFAULT_METADATA["description"]
    assert incident.impact == DEFAULT_METADATA["summary"]
    assert incident.source == "servicenow"
    assert incident.external_sys_id == "a1b2c3"


def test_empty_metadata_falls_back_to_defaults():
    incident = merge_incident({}, None)

    assert incident.incident_number.startswith("IMP-")
    assert incident.title == "Imported Incident"
    assert incident.severity == "medium"
    assert incident.description == "Imported from postmortem document"
    assert incident.status == "active"


async def test_lookup_falls_back_to_correlation_id(services, ticket_system):
    ticket_system.enabled = True
    ticket_system.tickets["INC0099999"] = TicketRecord(
        sys_id="s1", number="INC0099999", correlation_id="PM-2024-7"
    )

    ticket = await services.incidents.lookup("PM-2024-7")

    assert ticket.number == "INC0099999"


async def test_lookup_failure_is_treated_as_not_found(services, ticket_system):
    ticket_system.enabled = True
    ticket_system.fail = True

    assert await services.incidents.lookup("INC0012345") is None


async def test_disabled_ticket_system_is_not_called(services, ticket_system):
    assert await services.incidents.lookup("INC0012345") is None
    assert ticket_system.lookups == []


async def test_existing_incident_is_reused(services):
    first = await services.incidents.resolve(DEFAULT_METADATA, None, item_id="item-1")
    second = await services.incidents.resolve({**DEFAULT_METADATA, "title": "Other"}, None, item_id="item-2")

    assert first.created is True
    assert second.created is False
    assert second.incident.id == first.incident.id
    assert second.incident.title == "Payment gateway timeouts"


async def test_incident_can_be_loaded_by_id(services):
    resolved = await services.incidents.resolve(DEFAULT_METADATA, None, item_id="item-1")

    async with services.uow_factory() as uow:
        loaded = await uow.incidents.get(resolved.incident.id)

    assert loaded.incident_number == "INC0012345"
    assert loaded.title == "Payment gateway timeouts"


def test_timestamps_parse_to_utc():
    assert parse_timestamp("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-15 10:00:00") == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None
