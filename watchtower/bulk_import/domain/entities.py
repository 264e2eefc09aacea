"""
Bulk Import Domain Entities
============================

Pure Python entities for the bulk postmortem import pipeline.

An ImportSession groups the files of one upload; every file becomes an
ImportItem that moves through the pipeline on its own.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from watchtower.config import (
    ItemStatus, PipelineStep, SessionStatus,
    PIPELINE_STEPS, PAUSABLE_STEPS, TERMINAL_STATUSES,
)


@dataclass
class AIQuestion:
    """A question about a missing field that blocks an item until answered."""

    id: str
    question: str
    field: str
    answered: bool = False
    answer: Optional[str] = None

    @classmethod
    def ask(cls, field_name: str, question: str) -> "AIQuestion":
        return cls(id=str(uuid.uuid4()), question=question, field=field_name)

    def answer_with(self, answer: str) -> None:
        self.answer = answer
        self.answered = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "field": self.field,
            "answered": self.answered,
            "answer": self.answer,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AIQuestion":
        return cls(
            id=data["id"],
            question=data.get("question", ""),
            field=data.get("field", ""),
            answered=bool(data.get("answered", False)),
            answer=data.get("answer"),
        )


@dataclass(frozen=True)
class ItemState:
    """
    Position of an item in the pipeline.

    The status and the resume point are one value: callers build states
    through the factory methods and the repository writes both columns
    from it, so they can never drift apart.
    """

    status: str
    current_step: str

    @classmethod
    def queued(cls) -> "ItemState":
        return cls(ItemStatus.UPLOADING, PipelineStep.UPLOADING)

    @classmethod
    def running(cls, step: str) -> "ItemState":
        if step not in PIPELINE_STEPS:
            raise ValueError(f"Unknown pipeline step: {step}")
        return cls(step, step)

    @classmethod
    def awaiting_input(cls, step: str) -> "ItemState":
        if step not in PAUSABLE_STEPS:
            raise ValueError(f"Pipeline cannot pause at step: {step}")
        return cls(ItemStatus.AWAITING_INPUT, step)

    @classmethod
    def completed(cls) -> "ItemState":
        return cls(ItemStatus.COMPLETED, PipelineStep.COMPLETED)

    @classmethod
    def failed(cls, step: str) -> "ItemState":
        return cls(ItemStatus.FAILED, step)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def resume_step(self) -> str:
        """First step to execute when the item is (re)started."""
        if self.current_step == PipelineStep.UPLOADING:
            return PIPELINE_STEPS[0]
        return self.current_step


@dataclass
class ImportItem:
    """One uploaded document and its pipeline progress."""

    id: str
    session_id: str
    file_name: str
    file_size: int
    file_type: str
    status: str = ItemStatus.UPLOADING
    current_step: str = PipelineStep.UPLOADING
    status_message: Optional[str] = None
    extracted_text: Optional[str] = None
    extracted_metadata: Optional[dict] = None
    ai_questions: List[AIQuestion] = field(default_factory=list)
    review_notes: List[dict] = field(default_factory=list)
    incident_id: Optional[str] = None
    postmortem_id: Optional[str] = None
    error_message: Optional[str] = None
    active_run_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def state(self) -> ItemState:
        return ItemState(self.status, self.current_step)

    @property
    def open_questions(self) -> List[AIQuestion]:
        return [q for q in self.ai_questions if not q.answered]

    @property
    def answered_fields(self) -> set:
        return {q.field for q in self.ai_questions if q.answered}

    @property
    def is_running(self) -> bool:
        return self.active_run_id is not None


@dataclass
class ImportSession:
    """A batch of files uploaded together."""

    id: str
    auto_publish: bool = False
    status: str = SessionStatus.PROCESSING
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SessionSummary:
    """Session status and counters derived from its items."""

    status: str
    completed_files: int
    failed_files: int


def summarize_session(statuses: Iterable[str]) -> SessionSummary:
    """
    Derive a session's status from the statuses of its items.

    A batch counts as completed once every item reached a terminal state,
    even when some of them failed.
    """
    statuses = list(statuses)
    completed = sum(1 for s in statuses if s == ItemStatus.COMPLETED)
    failed = sum(1 for s in statuses if s == ItemStatus.FAILED)

    if completed + failed == len(statuses):
        status = SessionStatus.COMPLETED
    elif any(s == ItemStatus.AWAITING_INPUT for s in statuses):
        status = SessionStatus.AWAITING_INPUT
    else:
        status = SessionStatus.PROCESSING

    return SessionSummary(status=status, completed_files=completed, failed_files=failed)
