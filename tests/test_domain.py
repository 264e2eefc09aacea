import re

import pytest

from watchtower.bulk_import.domain import (
    ItemState,
    is_negative_answer,
    normalize_severity,
    parse_duration_minutes,
    sanitize_file_name,
    stored_file_name,
    summarize_session,
    synthesize_incident_number,
)


def test_session_is_processing_while_an_item_runs():
    summary = summarize_session(["completed", "generating_postmortem", "uploading"])

    assert summary.status == "processing"
    assert summary.completed_files == 1
    assert summary.failed_files == 0


def test_session_waits_for_input_when_any_item_waits():
    assert summarize_session(["generating_postmortem", "awaiting_input"]).status == "awaiting_input"

    summary = summarize_session(["completed", "awaiting_input", "failed"])

    assert summary.status == "awaiting_input"
    assert summary.completed_files == 1
    assert summary.failed_files == 1


def test_session_completes_when_every_item_is_terminal_even_with_failures():
    summary = summarize_session(["completed", "failed", "failed"])

    assert summary.status == "completed"
    assert summary.completed_files + summary.failed_files == 3


def test_queued_item_keeps_session_processing():
    assert summarize_session(["uploading"]).status == "processing"


def test_running_state_pairs_status_and_step():
    state = ItemState.running("extracting_metadata")

    assert state.status == "extracting_metadata"
    assert state.current_step == "extracting_metadata"
    assert state.resume_step == "extracting_metadata"


def test_queued_item_resumes_at_first_step():
    assert ItemState.queued().resume_step == "extracting_text"


def test_pause_is_only_allowed_at_question_steps():
    assert ItemState.awaiting_input("looking_up_ticket").current_step == "looking_up_ticket"
    assert ItemState.awaiting_input("generating_postmortem").status == "awaiting_input"
    with pytest.raises(ValueError):
        ItemState.awaiting_input("extracting_text")


def test_terminal_states():
    assert ItemState.completed().is_terminal
    assert ItemState.failed("generating_incident").is_terminal
    assert ItemState.failed("generating_incident").current_step == "generating_incident"
    assert not ItemState.running("extracting_text").is_terminal


def test_unknown_step_is_rejected():
    with pytest.raises(ValueError):
        ItemState.running("publishing")


def test_file_names_are_sanitised_for_storage():
    assert sanitize_file_name("Q1 post-mortem (final).pdf") == "Q1_post-mortem__final_.pdf"
    assert stored_file_name("abc", "../etc/passwd") == "abc_.._etc_passwd"


@pytest.mark.parametrize("value, expected", [
    ("High", "high"),
    ("P1", "critical"),
    ("sev-3", "medium"),
    ("minor", "low"),
    ("catastrophic", None),
    (None, None),
])
def test_severity_normalisation(value, expected):
    assert normalize_severity(value) == expected


@pytest.mark.parametrize("duration, start, end, expected", [
    ("PT21H17M", None, None, 1277),
    ("P1DT2H30M", None, None, 1590),
    (45, None, None, 45),
    ("90", None, None, 90),
    (None, "2024-01-15T10:00:00Z", "2024-01-15T12:30:00Z", 150),
    ("unknown", "2024-01-15T12:00:00Z", "2024-01-15T10:00:00Z", None),
    (None, None, None, None),
])
def test_duration_minutes(duration, start, end, expected):
    assert parse_duration_minutes(duration, start, end) == expected


def test_negative_answers():
    assert is_negative_answer("No")
    assert is_negative_answer(" cancel ")
    assert not is_negative_answer("yes")
    assert not is_negative_answer(None)


def test_synthesized_incident_number_format():
    assert re.fullmatch(r"IMP-\d{13}", synthesize_incident_number())
