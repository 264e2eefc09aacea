"""
Question/Answer Resolution
==========================

Records answers to the questions that block an import item and resumes
the item once nothing is left open.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from watchtower.config import ItemStatus, QuestionField
from watchtower.core import ImportConflictException, ResourceNotFoundException
from watchtower.bulk_import.application.interfaces import IUnitOfWork
from watchtower.bulk_import.application.pipeline import GENERATE_KEYWORD, ImportPipeline
from watchtower.bulk_import.domain import (
    AIQuestion,
    normalize_severity,
    parse_timestamp,
    synthesize_incident_number,
)
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AnswerResult:
    """Outcome of one answer submission."""

    item_id: str
    status: str
    remaining_questions: int

    @property
    def message(self) -> str:
        if self.status == "resuming":
            return "All questions answered - resuming import"
        return f"{self.remaining_questions} question(s) still need an answer"


def apply_answers(metadata: Optional[dict], questions: List[AIQuestion]) -> dict:
    """
    Copy answered questions into the working metadata.

    "generate" as an incidentNumber answer synthesizes a number unless one
    was already filled in. proceedWithoutTicket is a decision, not a field,
    and is never copied.
    """
    record = dict(metadata or {})

    for question in questions:
        if not question.answered or question.answer is None:
            continue
        answer = question.answer.strip()

        if question.field == QuestionField.PROCEED_WITHOUT_TICKET:
            continue
        if question.field == QuestionField.INCIDENT_NUMBER:
            if answer.lower() != GENERATE_KEYWORD:
                record["incidentNumber"] = answer
            elif not record.get("incidentNumber"):
                record["incidentNumber"] = synthesize_incident_number()
        elif question.field == QuestionField.SEVERITY:
            record["severity"] = normalize_severity(answer) or record.get("severity")
        elif question.field == QuestionField.DETECTED_AT:
            detected_at = parse_timestamp(answer)
            record["detectedAt"] = detected_at.isoformat() if detected_at else record.get("detectedAt")
        else:
            record[question.field] = answer

    return record


class QuestionResolver:
    """Applies user answers and restarts the pipeline."""

    def __init__(self, uow_factory: Callable[[], IUnitOfWork], pipeline: ImportPipeline):
        self._uow_factory = uow_factory
        self._pipeline = pipeline

    async def submit_answers(self, item_id: str, answers: Dict[str, str]) -> AnswerResult:
        """
        Mark questions answered; resume the item when none remain open.

        Args:
            item_id: Import item ID
            answers: Mapping of question ID to answer text

        Raises:
            ResourceNotFoundException: Unknown item
            ImportConflictException: Item is not waiting for input or a run
                is in progress
        """
        async with self._uow_factory() as uow:
            item = await uow.items.get(item_id)
            if item is None:
                raise ResourceNotFoundException("Import item", item_id)
            if item.status != ItemStatus.AWAITING_INPUT:
                raise ImportConflictException(
                    "Item is not awaiting input",
                    {"item_id": item_id, "status": item.status}
                )
            if item.is_running:
                raise ImportConflictException(
                    "Item is already being processed",
                    {"item_id": item_id}
                )

            questions = {q.id: q for q in item.ai_questions}
            accepted = 0
            for question_id, answer in answers.items():
                question = questions.get(question_id)
                if question is None or question.answered:
                    logger.warning(
                        "Ignoring answer for unknown or answered question",
                        extra={"item_id": item_id, "question_id": question_id}
                    )
                    continue
                question.answer_with(answer.strip())
                accepted += 1

            remaining = len(item.open_questions)
            fields = {"ai_questions": item.ai_questions}
            if remaining:
                fields["status_message"] = f"Waiting for {remaining} answer(s)"
            else:
                fields["extracted_metadata"] = apply_answers(item.extracted_metadata, item.ai_questions)
                fields["status_message"] = "Answers received - resuming"
            await uow.items.update_fields(item_id, **fields)

        logger.info(
            "Answers submitted",
            extra={
                "item_id": item_id,
                "session_id": item.session_id,
                "accepted": accepted,
                "remaining": remaining,
            }
        )

        if remaining:
            return AnswerResult(item_id=item_id, status="partial", remaining_questions=remaining)

        await self._pipeline.start(item_id)
        return AnswerResult(item_id=item_id, status="resuming", remaining_questions=0)
