import pytest
from fastapi.testclient import TestClient

from app.api.v1.push import get_push_limiter
from app.core.security import create_access_token
from app.db.session import get_db
from app.infrastructure.ratelimit.redis_fixed_window import RedisFixedWindowLimiter
from app.main import app
from tests.conftest import FakeRedis, make_user


@pytest.fixture
def limiter():
    return RedisFixedWindowLimiter(FakeRedis(), prefix="sync:push:rl", max_requests=2, window_sec=60)


@pytest.fixture
def client(testing_session, limiter):
    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_limiter] = lambda: limiter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def auth(user):
    token = create_access_token({"user_id": user.id, "username": user.username})
    return {"Authorization": f"Bearer {token}"}
