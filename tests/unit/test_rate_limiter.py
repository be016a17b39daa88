from __future__ import annotations

from unittest.mock import patch

import pytest
from flask import Blueprint, Flask

from lemon.middleware.rate_limit import init_rate_limiter, limiter
from lemon.services.rate_limiter import LOGIN, UPLOAD_PER_IP, RateLimiter, RateLimitRule


class Clock:
    def __init__(self, value=1000.0):
        self.value = value

    def __call__(self):
        return self.value


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def limiter_service(clock):
    return RateLimiter(clock=clock, sweep_interval=60)


def test_allows_until_limit_then_denies(limiter_service):
    results = [limiter_service.check("k", 60, 3) for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[0].reset_at == results[3].reset_at == 1060.0


def test_window_resets_after_expiry(limiter_service, clock):
    for _ in range(3):
        limiter_service.check("k", 60, 3)
    assert limiter_service.check("k", 60, 3).allowed is False

    clock.value += 60
    result = limiter_service.check("k", 60, 3)
    assert result.allowed is True
    assert result.remaining == 2
    assert result.reset_at == clock.value + 60


def test_keys_are_independent(limiter_service):
    limiter_service.check("a", 60, 1)
    assert limiter_service.check("a", 60, 1).allowed is False
    assert limiter_service.check("b", 60, 1).allowed is True


def test_retry_after_is_at_least_one_second(limiter_service, clock):
    limiter_service.check("k", 30, 1)
    denied = limiter_service.check("k", 30, 1)
    assert denied.retry_after(clock.value) == 30
    assert denied.retry_after(clock.value + 29.5) == 1
    assert denied.retry_after(clock.value + 100) == 1


def test_sweep_drops_expired_entries(limiter_service, clock):
    for key in ("a", "b", "c"):
        limiter_service.check(key, 10, 5)
    assert len(limiter_service) == 3

    clock.value += 61
    limiter_service.check("fresh", 10, 5)
    assert len(limiter_service) == 1


def test_rule_keys_and_hit(limiter_service):
    rule = RateLimitRule("delete-media", 2, 60)
    assert rule.key("user1", "203.0.113.9") == "delete-media:user1:203.0.113.9"

    assert limiter_service.hit(rule, "user1", "ip").allowed is True
    assert limiter_service.hit(rule, "user1", "ip").allowed is True
    assert limiter_service.hit(rule, "user1", "ip").allowed is False
    assert limiter_service.hit(rule, "user2", "ip").allowed is True


def test_default_rules():
    assert (UPLOAD_PER_IP.limit, UPLOAD_PER_IP.window_seconds) == (15, 60)
    assert (LOGIN.limit, LOGIN.window_seconds) == (10, 900)


@pytest.fixture
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


def test_limiter_initialization(app):
    """Test that rate limiter can be initialized with Flask app"""
    init_rate_limiter(app)

    assert hasattr(app, "extensions")
    assert "limiter" in app.extensions


@patch("lemon.middleware.rate_limit._get_rate_limit_key")
def test_limiter_uses_custom_key_func(mock_key_func, app):
    mock_key_func.return_value = "test-key-123"

    init_rate_limiter(app)

    with app.test_request_context():
        assert limiter._key_func() is not None


def test_limiter_default_limits_empty():
    """Per-route limits only"""
    assert limiter.limit_manager.default_limits == []


def test_limiter_can_exempt_routes(app):
    bp = Blueprint("exempt_test", __name__)

    @bp.route("/test")
    @limiter.exempt
    def test_route():
        return "OK"

    app.register_blueprint(bp)
    init_rate_limiter(app)

    client = app.test_client()
    resp = client.get("/test")
    assert resp.status_code == 200
