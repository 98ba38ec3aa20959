from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from skillquiz.core.errors import InvalidAnswer, InvalidSessionState, QuizError, SelectionIncomplete, UpstreamError
from skillquiz.core.security import CallerContext
from skillquiz.models.quiz import OPTION_LABELS, SkillLevel
from skillquiz.services.attempt_store import AttemptStore, QuestionRecord
from skillquiz.services.question_generator import GeneratedQuestion

logger = logging.getLogger("skillquiz.session")

PAYLOAD_VERSION = 1


class SessionState(str, enum.Enum):
    initializing = "initializing"
    loading = "loading"
    in_progress = "in_progress"
    submitting = "submitting"
    complete = "complete"
    failed = "failed"


class QuestionSource(Protocol):
    async def generate(
        self, subjects: Sequence[str], skill_level: SkillLevel | str, count: int
    ) -> list[GeneratedQuestion]: ...


@dataclass(frozen=True)
class SessionResult:
    attempt_id: uuid.UUID
    score: int
    total: int


def compute_score(questions: Sequence[GeneratedQuestion], answers: Mapping[int, str]) -> int:
    """Number of positions whose recorded label equals the correct label exactly."""
    score = 0
    for i, q in enumerate(questions):
        given = answers.get(i)
        if given is not None and given == q.correct_answer:
            score += 1
    return score


class QuizSession:
    """One quiz run: generation, navigation, answering and submission."""

    def __init__(
        self,
        owner: CallerContext,
        *,
        skill_level: SkillLevel | str | None = None,
        subjects: Sequence[str] | None = None,
        question_count: int | None = None,
    ):
        self.owner = owner
        self.skill_level = skill_level
        self.subjects = list(subjects or [])
        self.question_count = question_count

        self.state = SessionState.initializing
        self.questions: list[GeneratedQuestion] = []
        self.cursor = 0
        self.answers: dict[int, str] = {}
        self.attempt_id: uuid.UUID | None = None
        self.error: QuizError | None = None
        self.result: SessionResult | None = None

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def is_last(self) -> bool:
        return self.total > 0 and self.cursor == self.total - 1

    @property
    def current_question(self) -> GeneratedQuestion:
        self._require(SessionState.in_progress)
        return self.questions[self.cursor]

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise InvalidSessionState(f"quiz is {self.state.value}")

    def _validate_selection(self) -> None:
        try:
            level = SkillLevel(self.skill_level) if self.skill_level else None
        except ValueError:
            level = None
        subjects = [str(s).strip() for s in self.subjects if str(s or "").strip()]
        try:
            count = int(self.question_count or 0)
        except (TypeError, ValueError):
            count = 0

        if level is None or not subjects or count <= 0:
            raise SelectionIncomplete()

        self.skill_level = level
        self.subjects = subjects
        self.question_count = count

    async def start(self, generator: QuestionSource, store: AttemptStore) -> None:
        self._require(SessionState.initializing)
        self._validate_selection()

        self.state = SessionState.loading
        try:
            questions = await generator.generate(self.subjects, self.skill_level, self.question_count)
            if not questions:
                raise UpstreamError("AI returned no questions. Please try again.")
            attempt_id = await store.create_attempt(
                self.owner,
                skill_level=self.skill_level,
                subjects=self.subjects,
                question_count=self.question_count,
                total_questions=len(questions),
            )
        except QuizError as e:
            self.state = SessionState.failed
            self.error = e
            logger.warning("quiz generation failed user_id=%s error=%s", self.owner.user_id, e.error_code)
            raise

        self.questions = list(questions)
        self.attempt_id = attempt_id
        self.cursor = 0
        self.answers = {}
        self.state = SessionState.in_progress

    def next(self) -> None:
        self._require(SessionState.in_progress)
        if self.cursor < self.total - 1:
            self.cursor += 1

    def previous(self) -> None:
        self._require(SessionState.in_progress)
        if self.cursor > 0:
            self.cursor -= 1

    def answer(self, label: str) -> None:
        self._require(SessionState.in_progress)
        if label not in OPTION_LABELS:
            raise InvalidAnswer()
        self.answers[self.cursor] = label

    async def submit(self, store: AttemptStore) -> SessionResult:
        self._require(SessionState.in_progress)
        if not self.is_last:
            raise InvalidSessionState("move to the last question before submitting")
        if self.attempt_id is None:
            raise InvalidSessionState("quiz has no stored attempt")

        self.state = SessionState.submitting
        score = compute_score(self.questions, self.answers)
        records = [
            QuestionRecord(
                question_text=q.question,
                options=q.options.as_dict(),
                correct_answer=q.correct_answer,
                user_answer=self.answers.get(i),
                explanation=q.explanation or None,
            )
            for i, q in enumerate(self.questions)
        ]

        try:
            await store.record_submission(self.owner, self.attempt_id, records, score)
        except QuizError as e:
            self.state = SessionState.failed
            self.error = e
            logger.error("quiz submission failed attempt_id=%s error=%s", self.attempt_id, e.error_code)
            raise

        self.state = SessionState.complete
        self.result = SessionResult(attempt_id=self.attempt_id, score=score, total=self.total)
        return self.result

    def to_payload(self) -> dict[str, Any]:
        self._require(SessionState.in_progress)
        return {
            "version": PAYLOAD_VERSION,
            "user_id": str(self.owner.user_id),
            "attempt_id": str(self.attempt_id),
            "skill_level": SkillLevel(self.skill_level).value,
            "subjects": list(self.subjects),
            "question_count": int(self.question_count or 0),
            "cursor": int(self.cursor),
            "answers": {str(i): label for i, label in self.answers.items()},
            "questions": [q.model_dump() for q in self.questions],
        }

    @classmethod
    def from_payload(cls, owner: CallerContext, payload: Mapping[str, Any]) -> "QuizSession":
        if int(payload.get("version") or 0) != PAYLOAD_VERSION:
            raise ValueError("unsupported session payload version")
        if str(payload.get("user_id")) != str(owner.user_id):
            raise ValueError("session belongs to another user")

        session = cls(
            owner,
            skill_level=SkillLevel(payload["skill_level"]),
            subjects=list(payload.get("subjects") or []),
            question_count=int(payload.get("question_count") or 0),
        )
        session.questions = [GeneratedQuestion.model_validate(q) for q in payload.get("questions") or []]
        if not session.questions:
            raise ValueError("session has no questions")
        session.attempt_id = uuid.UUID(str(payload["attempt_id"]))
        session.cursor = min(max(0, int(payload.get("cursor") or 0)), session.total - 1)
        session.answers = {
            int(i): str(label)
            for i, label in (payload.get("answers") or {}).items()
            if str(label) in OPTION_LABELS and 0 <= int(i) < session.total
        }
        session.state = SessionState.in_progress
        return session
