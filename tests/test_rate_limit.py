# Request budgets: counted per caller and window in Redis, let through when Redis fails.
from collections import Counter

import pytest
import redis
from fastapi.testclient import TestClient

from roomledger import rate_limit


class _Pipeline:
    def __init__(self, store: Counter, broken: bool):
        self.store = store
        self.broken = broken
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key))

    def execute(self):
        if self.broken:
            raise redis.ConnectionError("connection refused")
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.store[key] += 1
                results.append(self.store[key])
            else:
                results.append(True)
        return results


class CountingRedis:
    def __init__(self, broken: bool = False):
        self.store: Counter = Counter()
        self.broken = broken

    def pipeline(self):
        return _Pipeline(self.store, self.broken)


@pytest.fixture
def use_redis(monkeypatch):
    def _install(fake):
        monkeypatch.setattr(rate_limit, "is_redis_enabled", lambda: True)
        monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
        return fake

    return _install


def _bad_login(client: TestClient):
    return client.post("/auth/login", json={"username": "nobody", "password": "wrong-password"})


def test_login_budget_is_enforced(client: TestClient, use_redis):
    fake = use_redis(CountingRedis())
    for _ in range(10):
        assert _bad_login(client).status_code == 401

    r = _bad_login(client)
    assert r.status_code == 429
    body = r.json()
    assert body["code"] == "rate_limited"
    assert body["budget"] == "login"
    assert body["limit"] == 10
    assert 0 < body["retry_after"] <= body["window_seconds"]
    assert all(key.startswith("roomledger:rl:login:") for key in fake.store)


def test_budgets_are_counted_separately(client: TestClient, use_redis):
    fake = use_redis(CountingRedis())
    for _ in range(10):
        _bad_login(client)
    r = client.post("/auth/register", json={"username": "newbie", "password": "changeme123"})
    assert r.status_code != 429
    assert len(fake.store) == 2


def test_redis_failure_lets_requests_through(client: TestClient, use_redis):
    use_redis(CountingRedis(broken=True))
    for _ in range(12):
        assert _bad_login(client).status_code == 401
