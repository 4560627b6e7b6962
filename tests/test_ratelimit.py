"""Tests for the fixed-window rate limiter."""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

import ratelimit
from ratelimit import RateLimiter, parse_window


class FakeClock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


class TestParseWindow:
    @pytest.mark.parametrize(
        "window,seconds", [("30s", 30), ("15m", 900), ("1h", 3600), ("2d", 172800)]
    )
    def test_units(self, window, seconds):
        assert parse_window(window) == seconds

    @pytest.mark.parametrize("window", ["", "15", "m", "1w", "-1m"])
    def test_invalid(self, window):
        with pytest.raises(ValueError):
            parse_window(window)


class TestRateLimiter:
    def test_allows_up_to_max_then_blocks(self):
        limiter = RateLimiter(3, "1m", "t", clock=FakeClock())
        results = [limiter.check("ip") for _ in range(4)]
        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(1, "1m", "t", clock=clock)
        assert limiter.check("ip").success
        assert not limiter.check("ip").success
        clock.now += 61
        result = limiter.check("ip")
        assert result.success
        assert result.remaining == 0

    def test_keys_are_independent(self):
        limiter = RateLimiter(1, "1m", "t", clock=FakeClock())
        assert limiter.check("a").success
        assert limiter.check("b").success

    def test_peek_does_not_count(self):
        limiter = RateLimiter(2, "1m", "t", clock=FakeClock())
        assert limiter.peek("ip").remaining == 2
        limiter.check("ip")
        assert limiter.peek("ip").remaining == 1
        assert limiter.peek("ip").remaining == 1

    def test_headers(self):
        result = RateLimiter(5, "1m", "t", clock=FakeClock()).check("ip")
        headers = result.headers()
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "4"


def test_presets():
    assert ratelimit.limiters["auth"].max_requests == 5
    assert ratelimit.limiters["auth"].window_seconds == 900
    assert ratelimit.limiters["newsletter"].window_seconds == 3600
    assert ratelimit.limiters["comment"].max_requests == 10


def test_dependency_returns_429_with_headers():
    app = FastAPI()

    @app.get("/limited", dependencies=[Depends(ratelimit.limit("newsletter"))])
    def limited():
        return {"ok": True}

    client = TestClient(app)
    for _ in range(3):
        assert client.get("/limited", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200

    response = client.get("/limited", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
    assert response.status_code == 429
    assert response.json()["detail"]["error"] == "Too many requests"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in response.headers

    # another client still has its own window
    assert client.get("/limited", headers={"X-Real-IP": "10.0.0.2"}).status_code == 200
