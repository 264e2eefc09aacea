"""
Postmortem Generation
=====================

Generates the structured postmortem of an incident from document text and
splits the fields the model could not determine into blocking questions
and review notes.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from watchtower.config import CRITICAL_POSTMORTEM_FIELDS, PostmortemStatus, Settings
from watchtower.bulk_import.application.completion import TruncationAwareCompletion
from watchtower.bulk_import.application.interfaces import IUnitOfWork
from watchtower.bulk_import.domain import AIQuestion, parse_duration_minutes
from watchtower.bulk_import.domain.prompts import build_postmortem_prompt
from watchtower.incidents.domain import PostmortemDraft
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PostmortemOutcome:
    """Result of one generation."""

    postmortem_id: str
    status: str
    duration_minutes: Optional[int] = None
    questions: List[AIQuestion] = field(default_factory=list)
    review_notes: List[dict] = field(default_factory=list)

    @property
    def needs_input(self) -> bool:
        return bool(self.questions)


class PostmortemGenerator:
    """AI postmortem generation with upsert by incident."""

    def __init__(
        self,
        completion: TruncationAwareCompletion,
        uow_factory: Callable[[], IUnitOfWork],
        settings: Settings
    ):
        self._completion = completion
        self._uow_factory = uow_factory
        self._text_limit = settings.postmortem_text_limit
        self._initial_max_tokens = settings.postmortem_initial_max_tokens
        self._actor_id = settings.system_actor_id

    async def generate(
        self,
        incident_id: str,
        text: str,
        metadata: dict,
        answered_fields: Iterable[str],
        auto_publish: bool,
        item_id: str
    ) -> PostmortemOutcome:
        """
        Generate, persist and triage missing fields.

        Critical missing fields (incidentNumber, severity, detectedAt) become
        questions; everything else becomes a review note. Fields already
        answered on the item are ignored.
        """
        raw = await self._completion.complete_json(
            build_postmortem_prompt(text, metadata, self._text_limit),
            initial_max_tokens=self._initial_max_tokens,
            operation="postmortem_generation",
            log_context={"item_id": item_id, "incident_id": incident_id},
        )
        draft = PostmortemDraft.from_model_output(raw)
        impact = draft.business_impact
        duration = parse_duration_minutes(impact.duration, impact.start_time, impact.end_time)
        status = PostmortemStatus.PUBLISHED if auto_publish else PostmortemStatus.DRAFT

        async with self._uow_factory() as uow:
            postmortem_id = await uow.postmortems.upsert(
                incident_id,
                draft,
                duration_minutes=duration,
                status=status,
                created_by_id=self._actor_id,
            )

        outcome = PostmortemOutcome(postmortem_id=postmortem_id, status=status, duration_minutes=duration)
        answered = set(answered_fields)
        seen = set()
        for missing in draft.missing_fields:
            if missing.field in answered or missing.field in seen:
                continue
            seen.add(missing.field)
            if missing.field in CRITICAL_POSTMORTEM_FIELDS:
                outcome.questions.append(AIQuestion.ask(missing.field, missing.question))
            else:
                outcome.review_notes.append({"field": missing.field, "question": missing.question})

        logger.info(
            "Postmortem generated",
            extra={
                "item_id": item_id,
                "incident_id": incident_id,
                "postmortem_id": postmortem_id,
                "status": status,
                "causal_factors": len(draft.causal_analysis),
                "questions": len(outcome.questions),
                "review_notes": len(outcome.review_notes),
            }
        )
        return outcome
