from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from skillquiz.core.errors import AttemptAlreadySubmitted, AttemptNotFound, PersistenceError
from skillquiz.core.security import CallerContext
from skillquiz.models.quiz import OPTION_LABELS, QuizAttempt, QuizQuestion, SkillLevel

logger = logging.getLogger("skillquiz.store")


@dataclass(frozen=True)
class QuestionRecord:
    """Content of one answered (or unanswered) question, ready to be stored."""

    question_text: str
    options: Mapping[str, str]
    correct_answer: str
    user_answer: str | None
    explanation: str | None = None


def _check_record(record: QuestionRecord) -> None:
    if set(record.options) != set(OPTION_LABELS):
        raise ValueError("options must contain exactly the labels A, B, C, D")
    if record.correct_answer not in record.options:
        raise ValueError("correct_answer must be one of the option labels")
    if record.user_answer is not None and record.user_answer not in record.options:
        raise ValueError("user_answer must be one of the option labels")


class AttemptStore:
    """Persistence of quiz attempts and their questions, scoped to one owner per call."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _unit_of_work(self, stage: str) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("store operation failed stage=%s", stage)
            raise PersistenceError(stage=stage) from e
        except Exception:
            await self.db.rollback()
            raise

    async def _owned_attempt(
        self, owner: CallerContext, attempt_id: uuid.UUID, *, for_update: bool = False
    ) -> QuizAttempt:
        stmt = select(QuizAttempt).where(QuizAttempt.id == attempt_id, QuizAttempt.user_id == owner.user_id)
        if for_update:
            stmt = stmt.with_for_update()
        attempt = await self.db.scalar(stmt)
        if attempt is None:
            raise AttemptNotFound()
        return attempt

    def _add_question(self, attempt_id: uuid.UUID, record: QuestionRecord, *, position: int) -> QuizQuestion:
        _check_record(record)
        row = QuizQuestion(
            attempt_id=attempt_id,
            position=int(position),
            question_text=record.question_text,
            options={label: record.options[label] for label in OPTION_LABELS},
            correct_answer=record.correct_answer,
            user_answer=record.user_answer,
            explanation=record.explanation,
        )
        self.db.add(row)
        return row

    @staticmethod
    def _set_score(attempt: QuizAttempt, score: int) -> None:
        if not 0 <= int(score) <= int(attempt.total_questions):
            raise ValueError(f"score {score} outside 0..{attempt.total_questions}")
        attempt.score = int(score)

    async def create_attempt(
        self,
        owner: CallerContext,
        *,
        skill_level: SkillLevel | str,
        subjects: Sequence[str],
        question_count: int,
        total_questions: int,
    ) -> uuid.UUID:
        subjects = [str(s) for s in subjects]
        if not subjects:
            raise ValueError("subjects must not be empty")

        attempt = QuizAttempt(
            user_id=owner.user_id,
            skill_level=SkillLevel(skill_level),
            subjects=subjects,
            question_count=int(question_count),
            total_questions=int(total_questions),
            score=0,
        )
        async with self._unit_of_work("loading"):
            self.db.add(attempt)
            await self.db.flush()
        logger.info("attempt created id=%s user_id=%s total=%d", attempt.id, owner.user_id, attempt.total_questions)
        return attempt.id

    async def get_attempt(self, owner: CallerContext, attempt_id: uuid.UUID) -> QuizAttempt:
        try:
            return await self._owned_attempt(owner, attempt_id)
        except SQLAlchemyError as e:
            raise PersistenceError(stage="review") from e

    async def insert_question(
        self,
        owner: CallerContext,
        attempt_id: uuid.UUID,
        record: QuestionRecord,
        *,
        position: int = 0,
    ) -> uuid.UUID:
        async with self._unit_of_work("submitting"):
            await self._owned_attempt(owner, attempt_id)
            row = self._add_question(attempt_id, record, position=position)
            await self.db.flush()
        return row.id

    async def update_attempt_score(self, owner: CallerContext, attempt_id: uuid.UUID, score: int) -> None:
        async with self._unit_of_work("submitting"):
            attempt = await self._owned_attempt(owner, attempt_id)
            self._set_score(attempt, score)

    async def record_submission(
        self,
        owner: CallerContext,
        attempt_id: uuid.UUID,
        questions: Sequence[QuestionRecord],
        score: int,
    ) -> None:
        """Store every question of the attempt and its final score in one transaction."""
        async with self._unit_of_work("submitting"):
            # Row lock: a concurrent submit of the same attempt waits here, then sees the rows.
            attempt = await self._owned_attempt(owner, attempt_id, for_update=True)
            existing = await self.db.scalar(
                select(func.count(QuizQuestion.id)).where(QuizQuestion.attempt_id == attempt.id)
            )
            if existing:
                raise AttemptAlreadySubmitted()

            for position, record in enumerate(questions):
                self._add_question(attempt.id, record, position=position)
            await self.db.flush()
            self._set_score(attempt, score)

        logger.info("attempt submitted id=%s score=%d/%d", attempt_id, score, len(questions))

    async def list_attempts(self, owner: CallerContext) -> list[QuizAttempt]:
        try:
            rows = await self.db.scalars(
                select(QuizAttempt)
                .where(QuizAttempt.user_id == owner.user_id)
                .order_by(QuizAttempt.created_at.desc())
            )
            return list(rows)
        except SQLAlchemyError as e:
            raise PersistenceError(stage="history") from e

    async def list_questions(self, owner: CallerContext, attempt_id: uuid.UUID) -> list[QuizQuestion]:
        try:
            rows = await self.db.scalars(
                select(QuizQuestion)
                .join(QuizAttempt, QuizAttempt.id == QuizQuestion.attempt_id)
                .where(QuizQuestion.attempt_id == attempt_id, QuizAttempt.user_id == owner.user_id)
                .order_by(QuizQuestion.created_at.asc(), QuizQuestion.position.asc())
            )
            return list(rows)
        except SQLAlchemyError as e:
            raise PersistenceError(stage="review") from e

    async def delete_attempts(self, owner: CallerContext) -> int:
        owned = select(QuizAttempt.id).where(QuizAttempt.user_id == owner.user_id)
        async with self._unit_of_work("clear_history"):
            # Explicit cascade: SQLite only honours ON DELETE CASCADE with foreign_keys enabled.
            await self.db.execute(
                delete(QuizQuestion)
                .where(QuizQuestion.attempt_id.in_(owned))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(
                delete(QuizAttempt)
                .where(QuizAttempt.user_id == owner.user_id)
                .execution_options(synchronize_session=False)
            )
        deleted = int(result.rowcount or 0)
        logger.info("history cleared user_id=%s attempts=%d", owner.user_id, deleted)
        return deleted
