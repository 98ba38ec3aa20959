from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from skillquiz.models.quiz import SkillLevel


class GenerateQuizRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(min_length=1)
    skill_level: SkillLevel = Field(validation_alias="skillLevel")
    question_count: int = Field(gt=0, le=50, validation_alias="questionCount")


class GeneratedQuestionOut(BaseModel):
    question: str
    options: dict[str, str]
    correct_answer: str
    explanation: str


class GenerateQuizResponse(BaseModel):
    questions: list[GeneratedQuestionOut]
