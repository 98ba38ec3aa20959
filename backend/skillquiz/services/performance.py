from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from skillquiz.core.security import CallerContext
from skillquiz.models.quiz import QuizAttempt
from skillquiz.services.attempt_store import AttemptStore


class ScoredAttempt(Protocol):
    score: int
    total_questions: int


@dataclass(frozen=True)
class PerformanceSummary:
    count: int
    average_percentage: int
    best_percentage: int


@dataclass(frozen=True)
class PerformanceBand:
    key: str
    message: str


_BANDS: tuple[tuple[int, PerformanceBand], ...] = (
    (80, PerformanceBand("excellent", "Excellent work!")),
    (60, PerformanceBand("good", "Good job!")),
    (40, PerformanceBand("fair", "Keep practicing!")),
)
_POOR = PerformanceBand("poor", "Don't give up!")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage(score: int, total: int) -> int:
    if not total:
        return 0
    return _round_half_up(100 * int(score) / int(total))


def performance_band(pct: int) -> PerformanceBand:
    for threshold, band in _BANDS:
        if pct >= threshold:
            return band
    return _POOR


def summarize(attempts: Sequence[ScoredAttempt]) -> PerformanceSummary:
    """Count, weighted average percentage and best single-attempt percentage."""
    if not attempts:
        return PerformanceSummary(count=0, average_percentage=0, best_percentage=0)

    total_score = sum(int(a.score) for a in attempts)
    total_questions = sum(int(a.total_questions) for a in attempts)
    return PerformanceSummary(
        count=len(attempts),
        average_percentage=percentage(total_score, total_questions),
        best_percentage=max(percentage(a.score, a.total_questions) for a in attempts),
    )


class PerformanceService:
    def __init__(self, store: AttemptStore):
        self.store = store

    async def history(self, owner: CallerContext) -> list[QuizAttempt]:
        return await self.store.list_attempts(owner)

    async def overview(self, owner: CallerContext) -> tuple[PerformanceSummary, list[QuizAttempt]]:
        attempts = await self.history(owner)
        return summarize(attempts), attempts

    async def clear_history(self, owner: CallerContext) -> int:
        # Irreversible; the front end asks the user to confirm first.
        return await self.store.delete_attempts(owner)
