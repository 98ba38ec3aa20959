from __future__ import annotations

from pydantic import BaseModel, Field

from skillquiz.models.quiz import SkillLevel


class QuizOptionsResponse(BaseModel):
    subjects: list[str]
    skill_levels: list[str]
    question_counts: list[int]


class QuizStartRequest(BaseModel):
    # Optional so that an incomplete selection is reported as a quiz error, not a 422.
    skill_level: SkillLevel | None = None
    subjects: list[str] = Field(default_factory=list)
    question_count: int | None = None


class QuizQuestionPublic(BaseModel):
    index: int
    question: str
    options: dict[str, str]


class QuizSessionView(BaseModel):
    attempt_id: str
    state: str
    skill_level: str
    subjects: list[str]
    total_questions: int
    cursor: int
    is_last: bool
    answered: int
    answers: dict[int, str]
    current_question: QuizQuestionPublic


class QuizAnswerRequest(BaseModel):
    label: str


class QuizSubmitResponse(BaseModel):
    attempt_id: str
    score: int
    total: int
    percentage: int


class QuizReviewQuestion(BaseModel):
    question_text: str
    options: dict[str, str]
    correct_answer: str
    user_answer: str | None
    explanation: str | None
    is_correct: bool


class QuizResultsResponse(BaseModel):
    attempt_id: str
    skill_level: str
    subjects: list[str]
    score: int
    total: int
    percentage: int
    band: str
    message: str
    questions: list[QuizReviewQuestion]
