"""
Bulk Import Application DTOs
=============================

Data Transfer Objects for the bulk import API layer.

Pydantic models for request/response validation. Fields are exposed in
camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from watchtower.bulk_import.domain import AIQuestion, ImportItem, ImportSession


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request DTOs ==========

class AnswerInput(_CamelModel):
    """One answer to an AI question."""
    question_id: str = Field(..., min_length=1, description="ID of the question being answered")
    answer: str = Field(..., min_length=1, description="Answer text")


class AnswerRequest(_CamelModel):
    """Request model for answering an item's questions."""
    answers: List[AnswerInput] = Field(..., min_length=1)

    def as_mapping(self) -> Dict[str, str]:
        return {a.question_id: a.answer for a in self.answers}


# ========== Response DTOs ==========

class AIQuestionResponse(_CamelModel):
    """Question blocking an item."""
    id: str
    question: str
    field: str
    answered: bool
    answer: Optional[str] = None

    @classmethod
    def from_domain(cls, question: AIQuestion) -> "AIQuestionResponse":
        return cls(**question.to_dict())


class ReviewNoteResponse(_CamelModel):
    """Non-blocking gap to check in the generated postmortem."""
    field: str
    question: str


class ImportItemResponse(_CamelModel):
    """Response model for one import item."""
    id: str
    session_id: str
    file_name: str
    file_size: int
    file_type: str
    status: str
    current_step: str
    status_message: Optional[str] = None
    extracted_metadata: Optional[Dict[str, Any]] = None
    ai_questions: List[AIQuestionResponse] = []
    review_notes: List[ReviewNoteResponse] = []
    incident_id: Optional[str] = None
    postmortem_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, item: ImportItem) -> "ImportItemResponse":
        return cls(
            id=item.id,
            session_id=item.session_id,
            file_name=item.file_name,
            file_size=item.file_size,
            file_type=item.file_type,
            status=item.status,
            current_step=item.current_step,
            status_message=item.status_message,
            extracted_metadata=item.extracted_metadata,
            ai_questions=[AIQuestionResponse.from_domain(q) for q in item.ai_questions],
            review_notes=[
                ReviewNoteResponse(field=n.get("field", ""), question=n.get("question", ""))
                for n in item.review_notes
            ],
            incident_id=item.incident_id,
            postmortem_id=item.postmortem_id,
            error_message=item.error_message,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class ImportSessionResponse(_CamelModel):
    """Response model for an import session."""
    id: str
    status: str
    auto_publish: bool
    total_files: int
    completed_files: int
    failed_files: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, session: ImportSession) -> "ImportSessionResponse":
        return cls(
            id=session.id,
            status=session.status,
            auto_publish=session.auto_publish,
            total_files=session.total_files,
            completed_files=session.completed_files,
            failed_files=session.failed_files,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class SessionDetailResponse(ImportSessionResponse):
    """Session together with its items."""
    items: List[ImportItemResponse] = []


class SessionListResponse(_CamelModel):
    """Response model for the session listing."""
    sessions: List[ImportSessionResponse]
    total: int


class UploadResponse(_CamelModel):
    """Response model for a bulk upload."""
    session_id: str
    total_files: int
    message: str
    items: List[ImportItemResponse]


class AnswerResponse(_CamelModel):
    """Response model for answer submission."""
    item_id: str
    status: str = Field(..., description="partial or resuming")
    remaining_questions: int
    message: str


class SkippedItem(_CamelModel):
    """Failed item left out of a bulk retry."""
    id: str
    file_name: str
    reason: str


class RetryFailedResponse(_CamelModel):
    """Response model for a session-wide retry."""
    session_id: str
    status: str = "retrying"
    retried_count: int
    skipped_count: int
    retried: List[str] = []
    skipped: List[SkippedItem] = []
