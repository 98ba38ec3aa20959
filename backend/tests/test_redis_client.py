import redis.asyncio as redis
from fastapi.testclient import TestClient

import skillquiz.core.redis_client as redis_client_module
from skillquiz.core.redis_client import close_redis, get_redis
from skillquiz.main import create_app


async def test_get_redis_reuses_one_client(monkeypatch):
    monkeypatch.setattr(redis_client_module, "_client", None)

    client = get_redis()
    assert isinstance(client, redis.Redis)
    assert get_redis() is client

    await close_redis()
    assert redis_client_module._client is None

    replacement = get_redis()
    assert replacement is not client
    await close_redis()


async def test_close_redis_without_client_is_noop(monkeypatch):
    monkeypatch.setattr(redis_client_module, "_client", None)
    await close_redis()
    assert redis_client_module._client is None


def test_app_shutdown_closes_shared_client(memory_redis):
    with TestClient(create_app()) as c:
        assert c.get("/health").status_code == 200
        assert memory_redis.closed is False

    assert memory_redis.closed is True
    assert redis_client_module._client is None
