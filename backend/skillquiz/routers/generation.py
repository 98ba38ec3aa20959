from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from skillquiz.core.config import settings
from skillquiz.core.errors import PaymentRequired, QuizError, RateLimited
from skillquiz.core.rate_limit import rate_limit
from skillquiz.core.security import CallerContext, get_current_caller
from skillquiz.schemas.generation import GenerateQuizRequest, GenerateQuizResponse
from skillquiz.services.question_generator import QuestionGenerator, get_question_generator

router = APIRouter(tags=["generation"])

logger = logging.getLogger("skillquiz.generation")

INVALID_REQUEST_MESSAGE = "Invalid request: subject, skillLevel and questionCount are required"


@router.post(
    "/generate-quiz",
    response_model=GenerateQuizResponse,
    responses={402: {"description": "payment required"}, 429: {"description": "rate limited"}},
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": GenerateQuizRequest.model_json_schema(by_alias=True)}},
        }
    },
)
async def generate_quiz(
    request: Request,
    caller: CallerContext = Depends(get_current_caller),
    generator: QuestionGenerator = Depends(get_question_generator),
    _: object = rate_limit(
        key_prefix="generate_quiz",
        limit=settings.generate_rate_limit,
        window_seconds=settings.generate_rate_window_seconds,
    ),
):
    try:
        body = GenerateQuizRequest.model_validate(await request.json())
    except (json.JSONDecodeError, ValidationError):
        return JSONResponse(status_code=500, content={"error": INVALID_REQUEST_MESSAGE})

    try:
        questions = await generator.generate([body.subject], body.skill_level, body.question_count)
    except (RateLimited, PaymentRequired) as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except QuizError as e:
        logger.error("Error in generate-quiz user_id=%s: %s", caller.user_id, e.message)
        return JSONResponse(status_code=500, content={"error": e.message})

    return {
        "questions": [
            {
                "question": q.question,
                "options": q.options.as_dict(),
                "correct_answer": q.correct_answer,
                "explanation": q.explanation,
            }
            for q in questions
        ]
    }
