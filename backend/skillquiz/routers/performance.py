from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillquiz.core.security import CallerContext, get_current_caller
from skillquiz.db.session import get_db
from skillquiz.schemas.performance import ClearHistoryResponse, PerformanceResponse
from skillquiz.services.attempt_store import AttemptStore
from skillquiz.services.performance import PerformanceService, percentage, performance_band

router = APIRouter(prefix="/performance", tags=["performance"])


@router.get("", response_model=PerformanceResponse)
async def my_performance(
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_current_caller),
):
    summary, attempts = await PerformanceService(AttemptStore(db)).overview(caller)

    history: list[dict] = []
    for a in attempts:
        pct = percentage(a.score, a.total_questions)
        history.append(
            {
                "attempt_id": str(a.id),
                "skill_level": a.skill_level.value,
                "subjects": list(a.subjects or []),
                "score": int(a.score),
                "total_questions": int(a.total_questions),
                "percentage": pct,
                "band": performance_band(pct).key,
                "created_at": a.created_at.isoformat() if a.created_at else None,
            }
        )

    return {
        "summary": {
            "count": summary.count,
            "average_percentage": summary.average_percentage,
            "best_percentage": summary.best_percentage,
        },
        "history": history,
    }


@router.delete("/history", response_model=ClearHistoryResponse)
async def clear_history(
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_current_caller),
):
    deleted = await PerformanceService(AttemptStore(db)).clear_history(caller)
    return {"deleted": deleted}
