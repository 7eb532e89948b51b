import threading

from fastapi.testclient import TestClient

from conftest import ScriptedClient
from idea_refiner.main import app
from idea_refiner.routers import refine as refine_module
from idea_refiner.services.dispatcher import Dispatcher
from idea_refiner.utils.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_limit_reached_reports_remaining_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=900, clock=clock)
    for expected_remaining in (2, 1, 0):
        d = limiter.hit("1.2.3.4")
        assert d.allowed
        assert d.remaining == expected_remaining

    clock.now += 100
    d = limiter.hit("1.2.3.4")
    assert not d.allowed
    assert d.retry_after == 800

    # other clients keep their own budget
    assert limiter.hit("5.6.7.8").allowed


def test_requests_succeed_again_after_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    assert limiter.hit("c").allowed
    clock.now += 30
    assert limiter.hit("c").allowed
    assert not limiter.hit("c").allowed

    # the first hit slides out of the window; the second is still inside
    clock.now += 30
    assert limiter.hit("c").allowed
    assert not limiter.hit("c").allowed


def test_retry_after_rounds_up():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)
    limiter.hit("c")
    clock.now += 9.5
    assert limiter.hit("c").retry_after == 1


def test_idle_clients_are_forgotten():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=1, clock=clock)
    for i in range(1000):
        limiter.hit(f"10.0.{i // 256}.{i % 256}")
    assert len(limiter) == 1000

    clock.now += 3600
    assert limiter.hit("192.168.1.1").allowed
    assert len(limiter) == 1


def test_sweep_keeps_clients_still_inside_the_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=10, clock=clock)
    limiter.hit("idle")
    clock.now += 6
    limiter.hit("busy")
    limiter.hit("busy")

    clock.now += 5
    limiter.hit("other")
    assert len(limiter) == 2
    d = limiter.hit("busy")
    assert not d.allowed
    assert d.retry_after == 5


def test_zero_budget_rejects_without_a_log():
    limiter = SlidingWindowRateLimiter(max_requests=0, window_seconds=30, clock=FakeClock())
    d = limiter.hit("c")
    assert not d.allowed
    assert d.retry_after == 30


def test_concurrent_hits_never_exceed_the_budget():
    limiter = SlidingWindowRateLimiter(max_requests=10, window_seconds=60)
    workers = 50
    barrier = threading.Barrier(workers)
    decisions = []
    decisions_lock = threading.Lock()

    def worker():
        barrier.wait()
        d = limiter.hit("same-client")
        with decisions_lock:
            decisions.append(d)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(decisions) == workers
    assert sum(d.allowed for d in decisions) == 10
    assert sorted(d.remaining for d in decisions if d.allowed) == list(range(10))


def test_endpoint_returns_429_with_retry_after(monkeypatch, plan_json):
    monkeypatch.setenv("RATE_LIMIT_MAX", "2")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "60000")
    scripted = ScriptedClient([plan_json, plan_json, plan_json])
    dispatcher = Dispatcher(scripted, sleep=lambda _delay: None)
    monkeypatch.setattr(refine_module, "get_dispatcher", lambda: dispatcher)
    client = TestClient(app)

    first = client.post("/api/refine", json={"idea": "A book swap app"})
    assert first.status_code == 200
    assert first.headers["RateLimit-Limit"] == "2"
    assert first.headers["RateLimit-Remaining"] == "1"
    assert client.post("/api/refine", json={"idea": "A book swap app"}).status_code == 200

    r = client.post("/api/refine", json={"idea": "A book swap app"})
    assert r.status_code == 429
    data = r.json()
    assert data["error"] == "Too many requests"
    assert 1 <= data["retryAfter"] <= 60
    assert r.headers["Retry-After"] == str(data["retryAfter"])
    # the limited request never reached the model
    assert len(scripted.calls) == 2


def test_forwarded_for_is_used_only_behind_trusted_proxy(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX", "1")
    monkeypatch.setenv("TRUST_PROXY", "true")
    client = TestClient(app)

    # invalid bodies still count against the limit, without needing a model
    r1 = client.post("/api/refine", json={"idea": ""}, headers={"X-Forwarded-For": "10.0.0.1"})
    r2 = client.post("/api/refine", json={"idea": ""}, headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"})
    r3 = client.post("/api/refine", json={"idea": ""}, headers={"X-Forwarded-For": "10.0.0.1"})
    assert r1.status_code == 400
    assert r2.status_code == 400
    assert r3.status_code == 429
