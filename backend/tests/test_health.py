import pytest

from app.core.config import settings

pytestmark = pytest.mark.integration


class FakeRedis:
    def __init__(self, healthy):
        self.healthy = healthy

    def health_check(self):
        return self.healthy


@pytest.mark.anyio
async def test_health(client):
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "service": settings.APP_NAME}


@pytest.mark.anyio
async def test_ready_db_ok(client):
    res = await client.get("/ready")
    assert res.status_code == 200
    assert res.json() == {"status": "ready"}


@pytest.mark.anyio
async def test_ready_skips_redis_when_disabled(monkeypatch, client):
    monkeypatch.setattr(settings, "REDIS_ENABLED", False)
    monkeypatch.setattr("app.api.health.redis_client", FakeRedis(False))

    res = await client.get("/ready")
    assert res.status_code == 200


@pytest.mark.anyio
async def test_ready_fails_when_redis_bad_and_enabled(monkeypatch, client):
    monkeypatch.setattr(settings, "REDIS_ENABLED", True)
    monkeypatch.setattr("app.api.health.redis_client", FakeRedis(False))

    res = await client.get("/ready")
    assert res.status_code == 503
