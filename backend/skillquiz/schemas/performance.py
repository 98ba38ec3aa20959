from __future__ import annotations

from pydantic import BaseModel


class PerformanceSummaryOut(BaseModel):
    count: int
    average_percentage: int
    best_percentage: int


class AttemptHistoryItem(BaseModel):
    attempt_id: str
    skill_level: str
    subjects: list[str]
    score: int
    total_questions: int
    percentage: int
    band: str
    created_at: str | None


class PerformanceResponse(BaseModel):
    summary: PerformanceSummaryOut
    history: list[AttemptHistoryItem]


class ClearHistoryResponse(BaseModel):
    deleted: int
