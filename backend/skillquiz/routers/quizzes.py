from __future__ import annotations

import json
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from skillquiz.core.config import settings
from skillquiz.core.errors import QuizError, SessionNotFound
from skillquiz.core.rate_limit import rate_limit
from skillquiz.core.redis_client import get_redis
from skillquiz.core.security import CallerContext, get_current_caller
from skillquiz.db.session import get_db
from skillquiz.models.quiz import SkillLevel
from skillquiz.schemas.quiz import (
    QuizAnswerRequest,
    QuizOptionsResponse,
    QuizResultsResponse,
    QuizSessionView,
    QuizStartRequest,
    QuizSubmitResponse,
)
from skillquiz.services.attempt_store import AttemptStore
from skillquiz.services.performance import percentage, performance_band
from skillquiz.services.question_generator import QuestionGenerator, get_question_generator
from skillquiz.services.quiz_session import QuizSession, SessionState

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

SUBJECTS = [
    "Mathematics",
    "Science",
    "Computer Networks",
    "Operating Systems",
    "Data Structures",
    "DBMS",
    "Java",
]
QUESTION_COUNTS = [5, 10, 20, 30]


def _session_key(user_id: str, attempt_id: str) -> str:
    return f"quiz_session:{user_id}:{attempt_id}"


def _parse_attempt_id(attempt_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(attempt_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="invalid attempt id") from e


async def _save_session(r, session: QuizSession) -> None:
    key = _session_key(str(session.owner.user_id), str(session.attempt_id))
    await r.set(key, json.dumps(session.to_payload()), ex=int(settings.quiz_session_ttl_seconds))


async def _load_session(r, caller: CallerContext, attempt_id: str) -> QuizSession:
    attempt_uuid = _parse_attempt_id(attempt_id)
    key = _session_key(str(caller.user_id), str(attempt_uuid))
    raw = await r.get(key)
    if raw is None:
        raise SessionNotFound()
    try:
        return QuizSession.from_payload(caller, json.loads(raw))
    except (ValueError, KeyError, TypeError) as e:
        # Corrupted session: drop it, the user starts over from selection.
        await r.delete(key)
        raise SessionNotFound() from e


def _view(session: QuizSession) -> QuizSessionView:
    q = session.current_question
    return QuizSessionView(
        attempt_id=str(session.attempt_id),
        state=session.state.value,
        skill_level=SkillLevel(session.skill_level).value,
        subjects=list(session.subjects),
        total_questions=session.total,
        cursor=session.cursor,
        is_last=session.is_last,
        answered=len(session.answers),
        answers=dict(session.answers),
        current_question={
            "index": session.cursor,
            "question": q.question,
            "options": q.options.as_dict(),
        },
    )


@router.get("/options", response_model=QuizOptionsResponse)
async def quiz_options(caller: CallerContext = Depends(get_current_caller)):
    return QuizOptionsResponse(
        subjects=list(SUBJECTS),
        skill_levels=[lvl.value for lvl in SkillLevel],
        question_counts=list(QUESTION_COUNTS),
    )


@router.post("/start", response_model=QuizSessionView)
async def start_quiz(
    body: QuizStartRequest,
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_current_caller),
    generator: QuestionGenerator = Depends(get_question_generator),
    _: object = rate_limit(
        key_prefix="quiz_start",
        limit=settings.generate_rate_limit,
        window_seconds=settings.generate_rate_window_seconds,
    ),
):
    session = QuizSession(
        caller,
        skill_level=body.skill_level,
        subjects=body.subjects,
        question_count=body.question_count,
    )
    await session.start(generator, AttemptStore(db))

    await _save_session(get_redis(), session)
    return _view(session)


@router.get("/{attempt_id}/session", response_model=QuizSessionView)
async def get_session(attempt_id: str, caller: CallerContext = Depends(get_current_caller)):
    session = await _load_session(get_redis(), caller, attempt_id)
    return _view(session)


@router.post("/{attempt_id}/answer", response_model=QuizSessionView)
async def answer_question(
    attempt_id: str,
    body: QuizAnswerRequest,
    caller: CallerContext = Depends(get_current_caller),
):
    r = get_redis()
    session = await _load_session(r, caller, attempt_id)
    session.answer(body.label)
    await _save_session(r, session)
    return _view(session)


@router.post("/{attempt_id}/next", response_model=QuizSessionView)
async def next_question(attempt_id: str, caller: CallerContext = Depends(get_current_caller)):
    r = get_redis()
    session = await _load_session(r, caller, attempt_id)
    session.next()
    await _save_session(r, session)
    return _view(session)


@router.post("/{attempt_id}/previous", response_model=QuizSessionView)
async def previous_question(attempt_id: str, caller: CallerContext = Depends(get_current_caller)):
    r = get_redis()
    session = await _load_session(r, caller, attempt_id)
    session.previous()
    await _save_session(r, session)
    return _view(session)


@router.post("/{attempt_id}/submit", response_model=QuizSubmitResponse)
async def submit_quiz(
    attempt_id: str,
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_current_caller),
):
    r = get_redis()
    session = await _load_session(r, caller, attempt_id)
    key = _session_key(str(caller.user_id), str(session.attempt_id))

    try:
        result = await session.submit(AttemptStore(db))
    except QuizError:
        if session.state is SessionState.failed:
            await r.delete(key)
        raise

    await r.delete(key)
    return QuizSubmitResponse(
        attempt_id=str(result.attempt_id),
        score=result.score,
        total=result.total,
        percentage=percentage(result.score, result.total),
    )


@router.get("/{attempt_id}/results", response_model=QuizResultsResponse)
async def quiz_results(
    attempt_id: str,
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_current_caller),
):
    attempt_uuid = _parse_attempt_id(attempt_id)
    store = AttemptStore(db)
    attempt = await store.get_attempt(caller, attempt_uuid)
    questions = await store.list_questions(caller, attempt_uuid)

    pct = percentage(attempt.score, attempt.total_questions)
    band = performance_band(pct)
    return QuizResultsResponse(
        attempt_id=str(attempt.id),
        skill_level=attempt.skill_level.value,
        subjects=list(attempt.subjects or []),
        score=int(attempt.score),
        total=int(attempt.total_questions),
        percentage=pct,
        band=band.key,
        message=band.message,
        questions=[
            {
                "question_text": q.question_text,
                "options": dict(q.options or {}),
                "correct_answer": q.correct_answer,
                "user_answer": q.user_answer,
                "explanation": q.explanation,
                "is_correct": q.is_correct,
            }
            for q in questions
        ],
    )
