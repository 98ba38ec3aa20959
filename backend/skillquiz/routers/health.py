from fastapi import APIRouter, HTTPException
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skillquiz.core.redis_client import get_redis
from skillquiz.db import session as session_module

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/live")
async def live():
    return {"status": "live"}


@router.get("/health/ready")
async def ready():
    try:
        async with session_module.SessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        r = get_redis()
        await r.ping()
    except (RedisError, OSError) as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e

    return {"status": "ready"}
