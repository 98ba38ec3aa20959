import asyncio
import os
import sys
import tempfile
import time
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from skillquiz.core.errors import QuizError
from skillquiz.core.security import CallerContext, create_access_token
from skillquiz.db.base import Base
from skillquiz.db import session as session_module
from skillquiz.main import create_app
from skillquiz.services import question_generator as generator_module
from skillquiz.services.question_generator import GeneratedQuestion

# Import models so that they are registered in Base.metadata before create_all.
from skillquiz.models.quiz import QuizAttempt, QuizQuestion  # noqa: F401


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}
        self.closed = False

    def clear(self) -> None:
        self._data.clear()
        self.closed = False

    async def aclose(self):
        self.closed = True

    async def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    async def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ex: int | None = None):
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    async def delete(self, key: str):
        return 1 if self._data.pop(key, None) is not None else 0

    async def incr(self, key: str):
        entry = self._get_entry(key)
        n = int(entry[0] if entry else 0) + 1
        exp = entry[1] if entry else None
        self._data[key] = (str(n), exp)
        return n

    async def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    async def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))


# Configure the test DB (SQLite file, one connection per checkout) at import time so
# every module reading skillquiz.db.session.SessionLocal gets the patched factory.
# NullPool keeps connections from leaking between the event loops of pytest-asyncio
# and TestClient.
_db_path = os.path.join(tempfile.mkdtemp(prefix="skillquiz-tests-"), "test.db")
_engine = create_async_engine(f"sqlite+aiosqlite:///{_db_path}", poolclass=NullPool)


async def _create_all() -> None:
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


asyncio.run(_create_all())
session_module.engine = _engine
session_module.SessionLocal = async_sessionmaker(
    _engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
)


# Stub Redis at import time (rate limiting + quiz sessions): get_redis() hands out the shared client.
_mem_redis = _MemoryRedis()
import skillquiz.core.redis_client as redis_client_module

redis_client_module._client = _mem_redis


def make_question(i: int, correct: str = "A") -> GeneratedQuestion:
    return GeneratedQuestion.model_validate(
        {
            "question": f"Question {i}?",
            "options": {"A": f"a{i}", "B": f"b{i}", "C": f"c{i}", "D": f"d{i}"},
            "correct_answer": correct,
            "explanation": f"Because {correct}.",
        }
    )


class FakeGenerator:
    """Stands in for the oracle client: returns canned questions or raises."""

    def __init__(self, questions: list[GeneratedQuestion] | None = None, error: QuizError | None = None):
        self.questions = questions
        self.error = error
        self.calls: list[tuple[list[str], str, int]] = []

    async def generate(self, subjects, skill_level, count):
        self.calls.append((list(subjects), str(getattr(skill_level, "value", skill_level)), int(count)))
        if self.error is not None:
            raise self.error
        if self.questions is not None:
            return list(self.questions)
        return [make_question(i, "ABCD"[i % 4]) for i in range(int(count))]


@pytest.fixture(autouse=True)
def _reset_redis():
    _mem_redis.clear()
    redis_client_module._client = _mem_redis
    yield
    _mem_redis.clear()


@pytest.fixture()
def memory_redis():
    return _mem_redis


@pytest.fixture()
def fake_generator():
    return FakeGenerator()


@pytest.fixture()
def client(fake_generator):
    app = create_app()

    # Ensure app dependencies use our session factory.
    async def _get_db_override():
        async with session_module.SessionLocal() as db:
            yield db

    app.dependency_overrides[session_module.get_db] = _get_db_override
    app.dependency_overrides[generator_module.get_question_generator] = lambda: fake_generator
    return TestClient(app)


@pytest.fixture()
async def db():
    async with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def caller():
    return CallerContext(user_id=uuid.uuid4())


@pytest.fixture()
def other_caller():
    return CallerContext(user_id=uuid.uuid4())


@pytest.fixture()
def auth_headers(caller):
    token = create_access_token(user_id=str(caller.user_id))
    return {"Authorization": f"Bearer {token}"}
